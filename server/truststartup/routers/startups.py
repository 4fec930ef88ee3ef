from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from truststartup.auth.deps import get_current_user, get_optional_user
from truststartup.core.db import get_db
from truststartup.models.user import User
from truststartup.schemas.startup import (
    RevenuePoint,
    RevenueRange,
    StartupCreate,
    StartupCreateResponse,
    StartupOut,
    StartupUpdate,
    StripeKeyUpdate,
    StripeSummaryMetrics,
    SyncResult,
)
from truststartup.services import startups as startups_service

router = APIRouter(prefix="/startups", tags=["startups"])


@router.get("", response_model=list[StartupOut], status_code=status.HTTP_200_OK)
def leaderboard(
    category: str | None = Query(None),
    db: Session = Depends(get_db),
    viewer: User | None = Depends(get_optional_user),
) -> list[StartupOut]:
    startups = startups_service.list_leaderboard(db, category=category)
    return [startups_service.serialize_startup(startup, viewer) for startup in startups]


@router.post("", response_model=StartupCreateResponse, status_code=status.HTTP_201_CREATED)
def create_startup(
    payload: StartupCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> StartupCreateResponse:
    startup = startups_service.create_startup(db, payload, current_user)
    return StartupCreateResponse(startup_id=startup.id)


@router.get("/search", response_model=list[StartupOut])
def search_startups(
    q: str = Query(..., min_length=1, max_length=120),
    db: Session = Depends(get_db),
    viewer: User | None = Depends(get_optional_user),
) -> list[StartupOut]:
    return [startups_service.serialize_startup(startup, viewer) for startup in startups_service.search_startups(db, q)]


@router.get("/mine", response_model=list[StartupOut])
def my_startups(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[StartupOut]:
    startups = startups_service.list_founder_startups(db, current_user.id)
    return [startups_service.serialize_startup(startup, current_user) for startup in startups]


@router.get("/{startup_id:int}", response_model=StartupOut)
def get_startup(
    startup_id: int,
    db: Session = Depends(get_db),
    viewer: User | None = Depends(get_optional_user),
) -> StartupOut:
    return startups_service.serialize_startup(startups_service.get_startup(db, startup_id), viewer)


@router.patch("/{startup_id:int}", response_model=StartupOut)
def update_startup(
    startup_id: int,
    payload: StartupUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> StartupOut:
    startup = startups_service.update_startup(db, startup_id, payload, current_user)
    return startups_service.serialize_startup(startup, current_user)


@router.put("/{startup_id:int}/stripe-key", response_model=SyncResult)
def update_stripe_key(
    startup_id: int,
    payload: StripeKeyUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> SyncResult:
    return startups_service.update_stripe_key(db, startup_id, payload, current_user)


@router.post("/{startup_id:int}/sync", response_model=SyncResult)
def sync_revenue(
    startup_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> SyncResult:
    return startups_service.sync_startup_revenue(db, startup_id, current_user)


@router.delete("/{startup_id:int}", status_code=status.HTTP_204_NO_CONTENT)
def delete_startup(
    startup_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Response:
    startups_service.delete_startup(db, startup_id, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{startup_id:int}/metrics/summary", response_model=StripeSummaryMetrics)
def summary_metrics(startup_id: int, db: Session = Depends(get_db)) -> StripeSummaryMetrics:
    return startups_service.get_summary_metrics(db, startup_id)


@router.get("/{startup_id:int}/metrics/history", response_model=list[RevenuePoint])
def revenue_history(
    startup_id: int,
    range_key: RevenueRange = Query("30d", alias="range"),
    db: Session = Depends(get_db),
) -> list[RevenuePoint]:
    return startups_service.get_revenue_history(db, startup_id, range_key)
