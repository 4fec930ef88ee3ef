from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from truststartup.auth.deps import get_current_user, get_optional_user
from truststartup.core.db import get_db
from truststartup.models.user import User
from truststartup.schemas.startup import FounderPage
from truststartup.schemas.user import FounderProfileOut, FounderProfileUpdate
from truststartup.services import startups as startups_service
from truststartup.services import user_accounts

router = APIRouter(tags=["account"])


@router.get("/account/me", response_model=FounderProfileOut)
def get_my_profile(user: User = Depends(get_current_user)) -> FounderProfileOut:
    return FounderProfileOut.from_orm(user)


@router.patch("/account/me", response_model=FounderProfileOut)
def update_my_profile(
    payload: FounderProfileUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> FounderProfileOut:
    return FounderProfileOut.from_orm(user_accounts.update_profile(db, user, payload))


@router.get("/founders/{username}", response_model=FounderPage)
def get_founder_page(
    username: str,
    db: Session = Depends(get_db),
    viewer: User | None = Depends(get_optional_user),
) -> FounderPage:
    founder = user_accounts.get_founder_by_username(db, username)
    startups = startups_service.list_founder_startups(db, founder.id)
    return FounderPage(
        founder=FounderProfileOut.from_orm(founder),
        startups=[startups_service.serialize_startup(startup, viewer) for startup in startups],
    )
