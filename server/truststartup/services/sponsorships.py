"""Sponsor slot allocation and lifecycle.

Slots ``1..SPONSOR_MAX_SLOTS`` are a shared pool. A slot is acquired only by
``assign_sponsor_slot`` (after a confirmed payment) and released only by
``cancel_sponsorship`` or the expiry sweep. ``startups.sponsor_slot`` carries a
unique constraint and is NULL whenever a startup is not sponsored, so two
sponsored startups can never hold the same slot. Racing assignments are
resolved by retrying the loser with a fresh occupancy scan.
"""

from __future__ import annotations

import calendar
import logging
from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from truststartup.core.config import settings
from truststartup.models.sponsor_audit import SponsorAudit
from truststartup.models.startup import Startup
from truststartup.models.user import User
from truststartup.schemas.sponsorship import (
    AssignResult,
    CancelResult,
    ExtendResult,
    SponsorAvailability,
    SweepResult,
)
from truststartup.services import notifications

logger = logging.getLogger(__name__)


class SponsorshipError(Exception):
    """Base class for sponsor slot failures."""


class StartupNotFound(SponsorshipError):
    def __init__(self, startup_id: int) -> None:
        super().__init__(f"Startup {startup_id} not found")
        self.startup_id = startup_id


class NotStartupOwner(SponsorshipError):
    def __init__(self, startup_id: int) -> None:
        super().__init__("Only the founder of this startup can change its sponsorship")
        self.startup_id = startup_id


class SponsorCapacityExceeded(SponsorshipError):
    def __init__(self, startup_id: int, max_slots: int) -> None:
        super().__init__(f"All {max_slots} sponsor slots are taken")
        self.startup_id = startup_id
        self.max_slots = max_slots


class StartupNotSponsored(SponsorshipError):
    def __init__(self, startup_id: int) -> None:
        super().__init__("Startup does not hold a sponsor slot")
        self.startup_id = startup_id


class SponsorSlotConflict(SponsorshipError):
    def __init__(self, startup_id: int, attempts: int) -> None:
        super().__init__(f"Could not claim a sponsor slot after {attempts} attempts")
        self.startup_id = startup_id
        self.attempts = attempts


class InvalidSponsorDuration(SponsorshipError):
    pass


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored is UTC."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def add_months(value: datetime, months: int) -> datetime:
    """Add calendar months, clamping to the last day of the target month."""

    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def first_free_slot(occupied: Iterable[int], max_slots: int) -> int | None:
    taken = sorted(set(occupied))
    candidate = 1
    for slot in taken:
        if slot < candidate:
            continue
        if slot > candidate:
            break
        candidate += 1
    if candidate > max_slots:
        return None
    return candidate


def _load_startup(db: Session, startup_id: int, *, lock: bool = False) -> Startup:
    query = db.query(Startup).filter(Startup.id == startup_id)
    if lock:
        query = query.with_for_update(of=Startup)
    startup = query.first()
    if not startup:
        raise StartupNotFound(startup_id)
    return startup


def _ensure_owner(startup: Startup, user: User | None) -> None:
    if user is None or startup.owner_id != user.id:
        raise NotStartupOwner(startup.id)


def _occupied_slots(db: Session, exclude_startup_id: int | None = None) -> list[int]:
    query = db.query(Startup.sponsor_slot).filter(Startup.sponsor_slot.isnot(None))
    if exclude_startup_id is not None:
        query = query.filter(Startup.id != exclude_startup_id)
    return sorted(slot for (slot,) in query.all())


def _audit(
    db: Session,
    startup: Startup,
    action: str,
    *,
    slot: int | None,
    months: int | None = None,
    expires_before: datetime | None = None,
    source: str | None = None,
    actor_id: int | None = None,
) -> None:
    db.add(
        SponsorAudit(
            startup_id=startup.id,
            action=action,
            slot=slot,
            months=months,
            expires_before=expires_before,
            expires_after=startup.sponsor_expires_at,
            source=source,
            actor_id=actor_id,
        )
    )


def get_availability(db: Session) -> SponsorAvailability:
    max_slots = settings.SPONSOR_MAX_SLOTS
    occupied = [slot for slot in _occupied_slots(db) if slot <= max_slots]
    return SponsorAvailability(max_slots=max_slots, occupied=occupied, available=max_slots - len(occupied))


def has_free_slot(db: Session) -> bool:
    return first_free_slot(_occupied_slots(db), settings.SPONSOR_MAX_SLOTS) is not None


def _assign_once(db: Session, startup_id: int, paid_months: int, now: datetime, source: str) -> AssignResult:
    max_slots = settings.SPONSOR_MAX_SLOTS
    startup = _load_startup(db, startup_id, lock=True)
    current_expiry = as_utc(startup.sponsor_expires_at)
    held_slot = startup.sponsor_slot

    if startup.is_sponsored and held_slot is not None and current_expiry is not None and current_expiry > now:
        result = AssignResult(
            startup_id=startup.id,
            slot=held_slot,
            since=as_utc(startup.sponsor_since) or now,
            expires_at=current_expiry,
            already_sponsored=True,
        )
        db.commit()
        logger.info("sponsor_assign_noop", extra={"startup_id": startup.id, "slot": held_slot})
        return result

    if held_slot is not None and held_slot <= max_slots:
        # Lapsed but not yet swept: the slot is still this startup's.
        slot = held_slot
    else:
        slot = first_free_slot(_occupied_slots(db, exclude_startup_id=startup.id), max_slots)
        if slot is None:
            db.rollback()
            notifications.notify_sponsor_capacity_exceeded(startup_id, paid_months, max_slots)
            raise SponsorCapacityExceeded(startup_id, max_slots)

    previous_expiry = current_expiry
    startup.is_sponsored = True
    startup.sponsor_slot = slot
    startup.sponsor_since = now
    startup.sponsor_duration_months = paid_months
    startup.sponsor_expires_at = add_months(now, paid_months)
    startup.ad_views = 0
    startup.ad_clicks = 0
    startup.ad_generated_revenue = 0
    _audit(
        db,
        startup,
        "Assigned",
        slot=slot,
        months=paid_months,
        expires_before=previous_expiry,
        source=source,
    )
    db.commit()
    notifications.notify_sponsor_assigned(startup, source)
    return AssignResult(
        startup_id=startup.id,
        slot=slot,
        since=now,
        expires_at=as_utc(startup.sponsor_expires_at),
    )


def assign_sponsor_slot(
    db: Session,
    startup_id: int,
    paid_months: int,
    *,
    now: datetime | None = None,
    source: str = "payment",
) -> AssignResult:
    """Claim the lowest free slot for a startup whose payment has been confirmed.

    Calling this again for a startup that already holds an active slot is a
    no-op that reports ``already_sponsored``; payment confirmations are
    delivered at least once.
    """

    if not 1 <= paid_months <= settings.SPONSOR_MAX_MONTHS:
        raise InvalidSponsorDuration(f"Sponsorship must be between 1 and {settings.SPONSOR_MAX_MONTHS} months")

    attempts = max(1, settings.SPONSOR_ASSIGN_MAX_ATTEMPTS)
    for attempt in range(1, attempts + 1):
        try:
            return _assign_once(db, startup_id, paid_months, now or now_utc(), source)
        except IntegrityError:
            db.rollback()
            logger.warning(
                "sponsor_slot_conflict",
                extra={"startup_id": startup_id, "attempt": attempt, "max_attempts": attempts},
            )
    raise SponsorSlotConflict(startup_id, attempts)


def extend_sponsorship(
    db: Session,
    startup_id: int,
    user: User | None,
    months: int,
    *,
    now: datetime | None = None,
) -> ExtendResult:
    if months < 1:
        raise InvalidSponsorDuration("Extension must be at least one month")

    startup = _load_startup(db, startup_id, lock=True)
    _ensure_owner(startup, user)
    if startup.sponsor_slot is None:
        raise StartupNotSponsored(startup.id)

    now = now or now_utc()
    current_expiry = as_utc(startup.sponsor_expires_at)
    base = current_expiry if current_expiry is not None and current_expiry > now else now

    startup.is_sponsored = True
    startup.sponsor_expires_at = add_months(base, months)
    startup.sponsor_duration_months = (startup.sponsor_duration_months or 0) + months
    if startup.sponsor_since is None:
        startup.sponsor_since = now
    _audit(
        db,
        startup,
        "Extended",
        slot=startup.sponsor_slot,
        months=months,
        expires_before=current_expiry,
        source="owner",
        actor_id=user.id if user else None,
    )
    db.commit()
    notifications.notify_sponsor_extended(startup, current_expiry, user.id if user else None)
    return ExtendResult(
        startup_id=startup.id,
        slot=startup.sponsor_slot,
        new_expires_at=as_utc(startup.sponsor_expires_at),
        duration_months=startup.sponsor_duration_months,
    )


def cancel_sponsorship(db: Session, startup_id: int, user: User | None) -> CancelResult:
    startup = _load_startup(db, startup_id, lock=True)
    _ensure_owner(startup, user)

    released_slot = startup.sponsor_slot
    was_sponsored = bool(startup.is_sponsored) or released_slot is not None
    previous_expiry = as_utc(startup.sponsor_expires_at)

    startup.is_sponsored = False
    startup.sponsor_slot = None
    startup.sponsor_since = None
    startup.sponsor_expires_at = None
    if was_sponsored:
        _audit(
            db,
            startup,
            "Cancelled",
            slot=released_slot,
            expires_before=previous_expiry,
            source="owner",
            actor_id=user.id if user else None,
        )
    db.commit()
    if was_sponsored:
        notifications.notify_sponsor_cancelled(startup, released_slot, user.id if user else None)
    return CancelResult(startup_id=startup.id, released_slot=released_slot)


def _expire_one(db: Session, startup_id: int, now: datetime) -> bool:
    startup = db.query(Startup).filter(Startup.id == startup_id).with_for_update(of=Startup).first()
    if startup is None:
        db.commit()
        return False

    # A concurrent assign/extend may have pushed the expiry forward since the scan.
    current_expiry = as_utc(startup.sponsor_expires_at)
    if current_expiry is None or current_expiry >= now:
        db.commit()
        return False
    if not startup.is_sponsored and startup.sponsor_slot is None:
        db.commit()
        return False

    released_slot = startup.sponsor_slot
    startup.is_sponsored = False
    startup.sponsor_slot = None
    _audit(db, startup, "Expired", slot=released_slot, expires_before=current_expiry, source="sweeper")
    db.commit()
    notifications.notify_sponsor_expired(startup, released_slot)
    return True


def expire_sponsorships(db: Session, *, now: datetime | None = None) -> SweepResult:
    """Release the slot of every startup whose sponsorship has run out."""

    now = now or now_utc()
    candidate_ids = [
        startup_id
        for (startup_id,) in db.query(Startup.id)
        .filter(Startup.sponsor_expires_at.isnot(None))
        .filter(Startup.sponsor_expires_at < now)
        .filter(or_(Startup.is_sponsored.is_(True), Startup.sponsor_slot.isnot(None)))
        .order_by(Startup.id)
        .all()
    ]
    db.commit()

    result = SweepResult(checked=len(candidate_ids))
    for startup_id in candidate_ids:
        try:
            expired = _expire_one(db, startup_id, now)
        except SQLAlchemyError:
            db.rollback()
            result.failed += 1
            logger.exception("sponsor_expiry_failed", extra={"startup_id": startup_id})
            continue
        if expired:
            result.expired += 1
            result.expired_startup_ids.append(startup_id)
    return result


def list_sponsored_startups(db: Session, limit: int | None = None) -> list[Startup]:
    max_slots = settings.SPONSOR_MAX_SLOTS
    limit = max_slots if limit is None else max(0, min(limit, max_slots))
    return (
        db.query(Startup)
        .filter(Startup.is_sponsored.is_(True))
        .filter(Startup.sponsor_slot.isnot(None))
        .order_by(Startup.sponsor_slot.asc(), Startup.revenue.desc())
        .limit(limit)
        .all()
    )


def _increment_counter(db: Session, startup_id: int, column) -> None:
    result = db.execute(
        update(Startup)
        .where(Startup.id == startup_id)
        .values({column: column + 1})
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        db.rollback()
        raise StartupNotFound(startup_id)
    db.commit()


def track_ad_view(db: Session, startup_id: int) -> None:
    _increment_counter(db, startup_id, Startup.ad_views)


def track_ad_click(db: Session, startup_id: int) -> None:
    _increment_counter(db, startup_id, Startup.ad_clicks)


def list_sponsor_history(db: Session, startup_id: int, user: User | None) -> list[SponsorAudit]:
    startup = _load_startup(db, startup_id)
    _ensure_owner(startup, user)
    return (
        db.query(SponsorAudit)
        .filter(SponsorAudit.startup_id == startup.id)
        .order_by(SponsorAudit.created_at.desc(), SponsorAudit.id.desc())
        .all()
    )
