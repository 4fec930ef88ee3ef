"""Sponsor slot checkout and Stripe webhook handling.

Checkout sessions are created on the platform Stripe account. Slot assignment
happens later, when Stripe confirms the payment through the webhook. Every
webhook event is recorded once in ``stripe_events`` so redeliveries are
acknowledged without touching the allocator again.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

import stripe
from fastapi import HTTPException, status
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from truststartup.core.config import settings
from truststartup.models.stripe_event import StripeEvent
from truststartup.models.user import User
from truststartup.schemas.sponsorship import AssignRequest, CheckoutRequest, CheckoutResponse
from truststartup.services import notifications
from truststartup.services import sponsorships as sponsorships_service
from truststartup.services import startups as startups_service
from truststartup.services.sponsorships import (
    InvalidSponsorDuration,
    SponsorCapacityExceeded,
    SponsorSlotConflict,
    StartupNotFound,
)

logger = logging.getLogger(__name__)

CONFIRMATION_EVENTS = {"checkout.session.completed", "checkout.session.async_payment_succeeded"}
PAID_STATUSES = {"paid", "no_payment_required"}
RECLAIMABLE_STATUSES = {"received", "failed"}


class WebhookVerificationError(Exception):
    pass


@dataclass
class WebhookOutcome:
    status: str
    http_status: int = status.HTTP_200_OK
    detail: str | None = None


def sponsor_price_cents(months: int) -> int:
    return settings.SPONSOR_MONTHLY_PRICE_CENTS * months


def _init_stripe() -> None:
    if not settings.STRIPE_SECRET_KEY:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Payments are not configured")
    stripe.api_key = settings.STRIPE_SECRET_KEY


def create_sponsor_checkout(db: Session, payload: CheckoutRequest, user: User) -> CheckoutResponse:
    startup = startups_service.get_owned_startup(db, payload.startup_id, user)
    months = payload.months
    if months > settings.SPONSOR_MAX_MONTHS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"months must be between 1 and {settings.SPONSOR_MAX_MONTHS}",
        )
    if not sponsorships_service.has_free_slot(db):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="All sponsor slots are currently taken")

    _init_stripe()
    amount = sponsor_price_cents(months)
    plural = "s" if months > 1 else ""
    try:
        session = stripe.checkout.Session.create(
            mode="payment",
            payment_method_types=["card"],
            line_items=[
                {
                    "quantity": 1,
                    "price_data": {
                        "currency": settings.SPONSOR_CURRENCY,
                        "unit_amount": amount,
                        "product_data": {
                            "name": f"TrustStartup Sponsor Slot - {months} Month{plural}",
                            "description": f"Sidebar rotating sponsorship for {months} month{plural}.",
                        },
                    },
                }
            ],
            client_reference_id=str(startup.id),
            metadata={"startup_id": str(startup.id), "months": str(months)},
            success_url=f"{settings.APP_URL}/advertise/success",
            cancel_url=f"{settings.APP_URL}/advertise/cancel",
        )
    except stripe.StripeError as exc:
        logger.exception("sponsor_checkout_failed", extra={"startup_id": startup.id, "months": months})
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Checkout session creation failed") from exc

    logger.info(
        "sponsor_checkout_created",
        extra={"startup_id": startup.id, "months": months, "session_id": session.id, "amount": amount},
    )
    return CheckoutResponse(url=session.url, session_id=session.id, amount_cents=amount, months=months)


def parse_webhook_event(payload: bytes, signature: str | None) -> dict[str, Any]:
    secret = settings.STRIPE_WEBHOOK_SECRET
    if secret:
        if not signature:
            raise WebhookVerificationError("Missing Stripe signature")
        try:
            stripe.Webhook.construct_event(payload, signature, secret)
        except (ValueError, stripe.SignatureVerificationError) as exc:
            logger.warning("stripe_webhook_signature_failed", extra={"error": str(exc)})
            raise WebhookVerificationError("Signature verification failed") from exc
    elif settings.ENVIRONMENT == "production":
        raise WebhookVerificationError("Webhook secret is not configured")

    try:
        event = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise WebhookVerificationError("Invalid payload") from exc
    if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
        raise WebhookVerificationError("Invalid event")
    return event


def _finish(db: Session, record: StripeEvent, outcome: WebhookOutcome) -> WebhookOutcome:
    record.status = outcome.status
    record.detail = outcome.detail
    db.commit()
    return outcome


def _claim_event(db: Session, event: dict[str, Any]) -> StripeEvent | None:
    """Record the event; None means it was already handled.

    A row still ``received`` belongs to a delivery that never finished, so it is
    claimed again. Re-running the assignment is safe: an active sponsor is a no-op.
    """

    event_id = str(event["id"])[:120]
    existing = (
        db.query(StripeEvent)
        .filter(StripeEvent.event_id == event_id)
        .with_for_update()
        .first()
    )
    if existing is not None:
        if existing.status not in RECLAIMABLE_STATUSES:
            db.commit()
            return None
        logger.info("stripe_event_reclaimed", extra={"event_id": event_id, "previous_status": existing.status})
        existing.status = "received"
        existing.detail = None
        db.commit()
        return existing

    obj = (event.get("data") or {}).get("object") or {}
    record = StripeEvent(
        event_id=event_id,
        type=str(event.get("type"))[:120],
        livemode=bool(event.get("livemode") or False),
        object_id=str(obj.get("id") or "")[:120] or None,
        status="received",
    )
    db.add(record)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return None
    return record


def handle_stripe_event(db: Session, event: dict[str, Any]) -> WebhookOutcome:
    record = _claim_event(db, event)
    if record is None:
        logger.info("stripe_event_duplicate", extra={"event_id": event.get("id")})
        return WebhookOutcome(status="duplicate")

    etype = str(event.get("type") or "").lower()
    obj = (event.get("data") or {}).get("object") or {}
    if etype not in CONFIRMATION_EVENTS:
        return _finish(db, record, WebhookOutcome(status="ignored"))
    if obj.get("payment_status") and obj.get("payment_status") not in PAID_STATUSES:
        return _finish(db, record, WebhookOutcome(status="ignored", detail=f"payment_status={obj.get('payment_status')}"))

    metadata = obj.get("metadata") or {}
    try:
        request = AssignRequest(startup_id=metadata.get("startup_id"), paid_months=metadata.get("months") or 1)
    except ValidationError as exc:
        logger.error("stripe_event_invalid_metadata", extra={"event_id": record.event_id, "metadata": metadata})
        return _finish(db, record, WebhookOutcome(status="rejected", detail=str(exc)[:500]))

    record.startup_id = request.startup_id
    db.commit()
    try:
        result = sponsorships_service.assign_sponsor_slot(
            db,
            request.startup_id,
            request.paid_months,
            source="stripe_webhook",
        )
    except SponsorCapacityExceeded as exc:
        # Money has been captured; acknowledge so Stripe stops retrying and leave it to ops.
        return _finish(db, record, WebhookOutcome(status="capacity_exceeded", detail=str(exc)))
    except (StartupNotFound, InvalidSponsorDuration) as exc:
        logger.error("stripe_event_rejected", extra={"event_id": record.event_id, "error": str(exc)})
        return _finish(db, record, WebhookOutcome(status="rejected", detail=str(exc)))
    except (SponsorSlotConflict, SQLAlchemyError) as exc:
        db.rollback()
        logger.exception("stripe_event_failed", extra={"event_id": record.event_id})
        return _finish(
            db,
            record,
            WebhookOutcome(status="failed", http_status=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)[:500]),
        )

    if result.already_sponsored:
        notifications.notify_payment_for_active_sponsor(request.startup_id, record.event_id, request.paid_months)
    return _finish(db, record, WebhookOutcome(status="processed", detail=f"slot={result.slot}"))
