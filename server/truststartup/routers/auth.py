from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from truststartup.auth.security import create_access_token
from truststartup.core.db import get_db
from truststartup.schemas.auth import LoginRequest, SignupRequest, TokenResponse
from truststartup.services import user_accounts

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/signup", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def signup(payload: SignupRequest, db: Session = Depends(get_db)) -> TokenResponse:
    user = user_accounts.register_founder(db, payload)
    return TokenResponse(access_token=create_access_token(subject=str(user.id)), user_id=user.id)


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, db: Session = Depends(get_db)) -> TokenResponse:
    user = user_accounts.authenticate(db, payload.email, payload.password)
    return TokenResponse(access_token=create_access_token(subject=str(user.id)), user_id=user.id)
