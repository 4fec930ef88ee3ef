from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import HTTPException, status
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from truststartup.models.startup import Startup
from truststartup.models.user import User
from truststartup.schemas.startup import (
    RevenuePoint,
    StartupCreate,
    StartupOut,
    StartupUpdate,
    StripeKeyUpdate,
    StripeSummaryMetrics,
    SyncResult,
)
from truststartup.schemas.user import FounderSummary
from truststartup.services import stripe_metrics
from truststartup.services.stripe_metrics import StripeMetricsError

logger = logging.getLogger(__name__)

SEARCH_FIELDS = ("name", "company", "website", "category", "twitter", "bio")


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def serialize_startup(startup: Startup, viewer: User | None = None) -> StartupOut:
    founder = FounderSummary.from_orm(startup.owner) if startup.owner else None
    return StartupOut(
        id=startup.id,
        name=startup.name,
        company=startup.company,
        bio=startup.bio,
        avatar=startup.avatar,
        website=startup.website,
        category=startup.category,
        twitter=startup.twitter,
        revenue=startup.revenue or 0,
        last_30_days=startup.last_30_days or 0,
        mrr=startup.mrr or 0,
        created_at=startup.created_at,
        founder=founder,
        last_synced=startup.last_synced,
        is_sponsored=bool(startup.is_sponsored),
        sponsor_slot=startup.sponsor_slot,
        sponsor_since=startup.sponsor_since,
        sponsor_duration_months=startup.sponsor_duration_months or 0,
        sponsor_expires_at=startup.sponsor_expires_at,
        ad_views=startup.ad_views or 0,
        ad_clicks=startup.ad_clicks or 0,
        ad_generated_revenue=startup.ad_generated_revenue or 0,
        is_owner=viewer is not None and startup.owner_id == viewer.id,
    )


def get_startup(db: Session, startup_id: int) -> Startup:
    startup = db.query(Startup).filter(Startup.id == startup_id).first()
    if not startup:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Startup not found")
    return startup


def get_owned_startup(db: Session, startup_id: int, user: User) -> Startup:
    startup = get_startup(db, startup_id)
    if startup.owner_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Founder only")
    return startup


def _apply_metrics(startup: Startup, *, revenue: float, mrr: float) -> None:
    startup.revenue = revenue
    startup.mrr = mrr
    startup.last_synced = now_utc()


def create_startup(db: Session, payload: StartupCreate, owner: User) -> Startup:
    startup = Startup(
        owner_id=owner.id,
        name=payload.name.strip(),
        company=payload.company,
        website=payload.website,
        avatar=payload.avatar,
        bio=payload.bio,
        category=payload.category,
        twitter=payload.twitter,
        stripe_key=payload.stripe_key,
        is_sponsored=False,
        sponsor_duration_months=0,
        ad_views=0,
        ad_clicks=0,
        ad_generated_revenue=0,
    )
    try:
        metrics = stripe_metrics.fetch_stripe_metrics(payload.stripe_key)
    except StripeMetricsError:
        logger.warning("startup_initial_sync_failed", extra={"owner_id": owner.id, "startup_name": startup.name})
        _apply_metrics(startup, revenue=0, mrr=0)
    else:
        _apply_metrics(startup, revenue=metrics.revenue, mrr=metrics.mrr)

    db.add(startup)
    db.commit()
    db.refresh(startup)
    logger.info("startup_created", extra={"startup_id": startup.id, "owner_id": owner.id})
    return startup


def update_startup(db: Session, startup_id: int, payload: StartupUpdate, user: User) -> Startup:
    startup = get_owned_startup(db, startup_id, user)
    for field, value in payload.dict(exclude_unset=True).items():
        if field == "name" and value is None:
            continue
        setattr(startup, field, value)
    db.commit()
    db.refresh(startup)
    return startup


def _sync(startup: Startup) -> SyncResult:
    try:
        metrics = stripe_metrics.fetch_stripe_metrics(startup.stripe_key)
    except StripeMetricsError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    _apply_metrics(startup, revenue=metrics.revenue, mrr=metrics.mrr)
    return SyncResult(revenue=metrics.revenue, mrr=metrics.mrr, last_synced=startup.last_synced)


def update_stripe_key(db: Session, startup_id: int, payload: StripeKeyUpdate, user: User) -> SyncResult:
    startup = get_owned_startup(db, startup_id, user)
    startup.stripe_key = payload.stripe_key
    try:
        result = _sync(startup)
    except HTTPException:
        db.rollback()
        raise
    db.commit()
    return result


def sync_startup_revenue(db: Session, startup_id: int, user: User) -> SyncResult:
    startup = get_owned_startup(db, startup_id, user)
    result = _sync(startup)
    db.commit()
    return result


def delete_startup(db: Session, startup_id: int, user: User) -> None:
    startup = get_owned_startup(db, startup_id, user)
    released_slot = startup.sponsor_slot
    db.delete(startup)
    db.commit()
    logger.info("startup_deleted", extra={"startup_id": startup_id, "released_slot": released_slot})


def list_leaderboard(db: Session, category: str | None = None) -> list[Startup]:
    query = db.query(Startup)
    if category:
        query = query.filter(func.lower(Startup.category) == category.strip().lower())
    return query.order_by(Startup.revenue.desc(), Startup.created_at.desc(), Startup.id.desc()).all()


def search_startups(db: Session, q: str) -> list[Startup]:
    term = q.strip().lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    pattern = f"%{term}%"
    clauses = [func.lower(getattr(Startup, field)).like(pattern, escape="\\") for field in SEARCH_FIELDS]
    return db.query(Startup).filter(or_(*clauses)).order_by(Startup.revenue.desc(), Startup.id.desc()).all()


def list_founder_startups(db: Session, owner_id: int) -> list[Startup]:
    return (
        db.query(Startup)
        .filter(Startup.owner_id == owner_id)
        .order_by(Startup.created_at.desc(), Startup.id.desc())
        .all()
    )


def get_summary_metrics(db: Session, startup_id: int) -> StripeSummaryMetrics:
    startup = get_startup(db, startup_id)
    try:
        summary = stripe_metrics.fetch_summary_metrics(startup.stripe_key)
    except StripeMetricsError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    startup.revenue = summary.gmv_all_time
    startup.last_30_days = summary.last_30_days
    startup.mrr = summary.mrr
    startup.last_synced = now_utc()
    db.commit()
    return summary


def get_revenue_history(db: Session, startup_id: int, range_key: str) -> list[RevenuePoint]:
    startup = get_startup(db, startup_id)
    try:
        return stripe_metrics.fetch_revenue_history(startup.stripe_key, range_key)
    except StripeMetricsError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc


def refresh_all_metrics(db: Session) -> dict[str, int]:
    """Re-sync every startup; one bad key or store error does not stop the rest."""

    startup_ids = [startup_id for (startup_id,) in db.query(Startup.id).order_by(Startup.id).all()]
    refreshed = 0
    failed = 0
    for startup_id in startup_ids:
        startup = db.get(Startup, startup_id)
        if startup is None or not startup.stripe_key:
            continue
        try:
            metrics = stripe_metrics.fetch_stripe_metrics(startup.stripe_key)
            _apply_metrics(startup, revenue=metrics.revenue, mrr=metrics.mrr)
            db.commit()
        except StripeMetricsError:
            failed += 1
            logger.warning("startup_metrics_refresh_failed", extra={"startup_id": startup_id})
        except SQLAlchemyError:
            db.rollback()
            failed += 1
            logger.exception("startup_metrics_refresh_failed", extra={"startup_id": startup_id})
        else:
            refreshed += 1
    return {"total": len(startup_ids), "refreshed": refreshed, "failed": failed}
