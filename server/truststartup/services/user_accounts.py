from __future__ import annotations

import re
from datetime import datetime, timezone

from fastapi import HTTPException, status
from sqlalchemy import and_, exists, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from truststartup.auth.security import hash_password, verify_password
from truststartup.models.user import User
from truststartup.schemas.auth import SignupRequest
from truststartup.schemas.user import FounderProfileUpdate

USERNAME_REGEX = re.compile(r"^[a-z0-9._-]{3,32}$")


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def normalize_username(username: str) -> str:
    return username.strip().lower()


def ensure_valid_username(username: str) -> None:
    if not USERNAME_REGEX.fullmatch(username):
        raise ValueError("Usernames must be 3-32 characters and use only lowercase letters, numbers, dots, dashes or underscores.")


def username_taken(db: Session, username: str, exclude_user_id: int | None = None) -> bool:
    clause = User.username == username
    if exclude_user_id is not None:
        clause = and_(clause, User.id != exclude_user_id)
    return bool(db.query(exists().where(clause)).scalar())


def register_founder(db: Session, payload: SignupRequest) -> User:
    email = payload.email.lower()
    username = normalize_username(payload.username)
    try:
        ensure_valid_username(username)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    if db.query(exists().where(func.lower(User.email) == email)).scalar():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")
    if username_taken(db, username):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username already taken, choose another")

    user = User(
        email=email,
        username=username,
        first_name=payload.first_name.strip(),
        last_name=payload.last_name.strip(),
        hashed_password=hash_password(payload.password),
        is_active=True,
        last_login_at=now_utc(),
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email or username already registered") from exc
    db.refresh(user)
    return user


def authenticate(db: Session, email: str, password: str) -> User:
    user = db.query(User).filter(func.lower(User.email) == email.lower()).first()
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    if not verify_password(password, user.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    user.last_login_at = now_utc()
    db.commit()
    return user


def update_profile(db: Session, user: User, payload: FounderProfileUpdate) -> User:
    username = normalize_username(payload.username)
    try:
        ensure_valid_username(username)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if username_taken(db, username, exclude_user_id=user.id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username already taken")

    user.first_name = payload.first_name.strip()
    user.last_name = payload.last_name.strip()
    user.username = username
    if payload.bio is not None:
        user.bio = payload.bio
    if payload.avatar is not None:
        user.avatar = payload.avatar
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username already taken") from exc
    db.refresh(user)
    return user


def get_founder_by_username(db: Session, username: str) -> User:
    user = db.query(User).filter(User.username == normalize_username(username)).first()
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Founder not found")
    return user
