"""Credential verification and display-identity lookup."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import jwt
from passlib.context import CryptContext
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import settings
from .database import SessionLocal
from .errors import Unauthorized
from .models import UserModel

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(password, hashed)
    except Exception:
        return False


def create_token(user: UserModel) -> str:
    exp = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_exp_minutes)
    payload = {"sub": user.id, "email": user.email, "exp": exp}
    return jwt.encode(payload, settings.jwt_secret, algorithm="HS256")


def decode_token(token: str) -> str:
    """Return the account id carried by ``token`` or raise ``Unauthorized``."""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=["HS256"])
    except jwt.PyJWTError as exc:
        raise Unauthorized("Invalid token") from exc
    user_id = payload.get("sub")
    if not user_id:
        raise Unauthorized("Invalid token")
    return user_id


def resolve_user(db: Session, token: str) -> UserModel:
    user = db.get(UserModel, decode_token(token))
    if not user:
        raise Unauthorized("User not found")
    return user


def lookup_display_name(user_id: str) -> str | None:
    """Return the provisioned username for ``user_id``, or None.

    Lookup failures are logged and reported as absent so callers can fall
    back to the raw account identifier.
    """
    try:
        with SessionLocal() as db:
            user = db.get(UserModel, user_id)
            username = user.username if user else None
    except SQLAlchemyError as exc:
        logger.error(f"Display name lookup failed for {user_id}: {exc}")
        return None
    if not username:
        logger.warning(f"Username not provisioned for user {user_id}")
    return username
