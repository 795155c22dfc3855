"""User profile endpoints."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import UserModel
from ..schemas import ProfileUpdateRequest, UserResponse
from .auth import user_response
from .deps import get_current_user, get_db

router = APIRouter(prefix="/me", tags=["users"])


@router.get("", response_model=UserResponse)
def get_me(current_user: UserModel = Depends(get_current_user)) -> UserResponse:
    return user_response(current_user)


@router.patch("", response_model=UserResponse)
def update_profile(
    payload: ProfileUpdateRequest,
    current_user: UserModel = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> UserResponse:
    current_user.username = payload.username
    current_user.updated_at = datetime.now(timezone.utc)
    db.add(current_user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Username already taken") from exc
    db.refresh(current_user)
    return user_response(current_user)
