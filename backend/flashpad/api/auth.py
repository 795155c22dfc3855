"""Auth endpoints for email/password accounts issuing bearer tokens."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..identity import create_token, hash_password, verify_password
from ..models import UserModel
from ..schemas import (
    AuthFeatureResponse,
    AuthSignInRequest,
    AuthSignUpRequest,
    AuthTokenResponse,
    UserResponse,
)
from .deps import get_db

router = APIRouter(prefix="/auth", tags=["auth"])


def _ensure_enabled() -> None:
    if not settings.auth_feature_enabled:
        raise HTTPException(status_code=503, detail="Auth is disabled.")


def user_response(user: UserModel) -> UserResponse:
    return UserResponse(user_id=user.id, email=user.email, username=user.username)


@router.get("/feature", response_model=AuthFeatureResponse)
def auth_feature() -> AuthFeatureResponse:
    return AuthFeatureResponse(enabled=settings.auth_feature_enabled)


@router.post("/sign-in", response_model=AuthTokenResponse)
def sign_in(payload: AuthSignInRequest, db: Session = Depends(get_db)) -> AuthTokenResponse:
    _ensure_enabled()
    user = db.query(UserModel).filter(UserModel.email == payload.email.lower()).first()
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    user.last_login_at = datetime.now(timezone.utc)
    db.add(user)
    db.commit()
    db.refresh(user)
    return AuthTokenResponse(token=create_token(user), user=user_response(user))


@router.post("/sign-up", response_model=AuthTokenResponse, status_code=201)
def sign_up(payload: AuthSignUpRequest, db: Session = Depends(get_db)) -> AuthTokenResponse:
    _ensure_enabled()
    email_normalized = payload.email.lower()
    existing = db.query(UserModel).filter(UserModel.email == email_normalized).first()
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")

    user = UserModel(
        email=email_normalized,
        username=payload.username,
        password_hash=hash_password(payload.password),
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Username already taken") from exc
    db.refresh(user)
    return AuthTokenResponse(token=create_token(user), user=user_response(user))
