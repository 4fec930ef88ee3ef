from __future__ import annotations

import logging
from datetime import datetime

from truststartup.models.startup import Startup

logger = logging.getLogger(__name__)


def notify_sponsor_assigned(startup: Startup, source: str) -> None:
    logger.info(
        "sponsor_slot_assigned",
        extra={
            "startup_id": startup.id,
            "slot": startup.sponsor_slot,
            "months": startup.sponsor_duration_months,
            "expires_at": startup.sponsor_expires_at,
            "source": source,
        },
    )


def notify_sponsor_capacity_exceeded(startup_id: int, paid_months: int, max_slots: int) -> None:
    """Payment was captured but no slot is free; needs a manual grant or refund."""

    logger.critical(
        "sponsor_capacity_exceeded",
        extra={
            "startup_id": startup_id,
            "paid_months": paid_months,
            "max_slots": max_slots,
        },
    )


def notify_sponsor_extended(startup: Startup, previous_expiry: datetime | None, actor_id: int | None) -> None:
    logger.info(
        "sponsor_extended",
        extra={
            "startup_id": startup.id,
            "slot": startup.sponsor_slot,
            "old_expires_at": previous_expiry,
            "new_expires_at": startup.sponsor_expires_at,
            "actor_id": actor_id,
        },
    )


def notify_sponsor_cancelled(startup: Startup, released_slot: int | None, actor_id: int | None) -> None:
    logger.info(
        "sponsor_cancelled",
        extra={
            "startup_id": startup.id,
            "released_slot": released_slot,
            "actor_id": actor_id,
        },
    )


def notify_sponsor_expired(startup: Startup, released_slot: int | None) -> None:
    logger.info(
        "sponsor_expired",
        extra={
            "startup_id": startup.id,
            "released_slot": released_slot,
            "expired_at": startup.sponsor_expires_at,
        },
    )


def notify_payment_for_active_sponsor(startup_id: int, event_id: str, paid_months: int) -> None:
    """A distinct paid checkout arrived for a startup that already holds an active slot."""

    logger.warning(
        "sponsor_payment_for_active_slot",
        extra={
            "startup_id": startup_id,
            "event_id": event_id,
            "paid_months": paid_months,
        },
    )
