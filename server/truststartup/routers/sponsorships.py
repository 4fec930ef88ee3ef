from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from truststartup.auth.deps import get_current_user
from truststartup.core.config import settings
from truststartup.core.db import get_db
from truststartup.models.user import User
from truststartup.schemas.sponsorship import (
    CancelResult,
    ExtendRequest,
    ExtendResult,
    SponsorAuditOut,
    SponsorAvailability,
)
from truststartup.schemas.startup import StartupOut
from truststartup.services import sponsorships as sponsorships_service
from truststartup.services import startups as startups_service
from truststartup.services.sponsorships import (
    InvalidSponsorDuration,
    NotStartupOwner,
    SponsorshipError,
    StartupNotFound,
)

router = APIRouter(prefix="/sponsorships", tags=["sponsorships"])


def _to_http(exc: SponsorshipError) -> HTTPException:
    if isinstance(exc, StartupNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, NotStartupOwner):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, InvalidSponsorDuration):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


@router.get("/sponsored", response_model=list[StartupOut])
def list_sponsored(
    limit: int = Query(settings.SPONSOR_MAX_SLOTS, ge=1, le=settings.SPONSOR_MAX_SLOTS),
    db: Session = Depends(get_db),
) -> list[StartupOut]:
    startups = sponsorships_service.list_sponsored_startups(db, limit=limit)
    return [startups_service.serialize_startup(startup) for startup in startups]


@router.get("/availability", response_model=SponsorAvailability)
def availability(db: Session = Depends(get_db)) -> SponsorAvailability:
    return sponsorships_service.get_availability(db)


@router.post("/{startup_id:int}/extend", response_model=ExtendResult)
def extend_sponsorship(
    startup_id: int,
    payload: ExtendRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ExtendResult:
    try:
        return sponsorships_service.extend_sponsorship(db, startup_id, current_user, payload.months)
    except SponsorshipError as exc:
        raise _to_http(exc) from exc


@router.post("/{startup_id:int}/cancel", response_model=CancelResult)
def cancel_sponsorship(
    startup_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> CancelResult:
    try:
        return sponsorships_service.cancel_sponsorship(db, startup_id, current_user)
    except SponsorshipError as exc:
        raise _to_http(exc) from exc


@router.get("/{startup_id:int}/history", response_model=list[SponsorAuditOut])
def sponsorship_history(
    startup_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[SponsorAuditOut]:
    try:
        audits = sponsorships_service.list_sponsor_history(db, startup_id, current_user)
    except SponsorshipError as exc:
        raise _to_http(exc) from exc
    return [SponsorAuditOut.from_orm(audit) for audit in audits]


@router.post("/{startup_id:int}/view", status_code=status.HTTP_204_NO_CONTENT)
def track_view(startup_id: int, db: Session = Depends(get_db)) -> None:
    try:
        sponsorships_service.track_ad_view(db, startup_id)
    except SponsorshipError as exc:
        raise _to_http(exc) from exc


@router.post("/{startup_id:int}/click", status_code=status.HTTP_204_NO_CONTENT)
def track_click(startup_id: int, db: Session = Depends(get_db)) -> None:
    try:
        sponsorships_service.track_ad_click(db, startup_id)
    except SponsorshipError as exc:
        raise _to_http(exc) from exc
