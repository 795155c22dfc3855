"""Shared request dependencies."""

from __future__ import annotations

from typing import Iterator

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session
from starlette.requests import HTTPConnection

from ..database import SessionLocal
from ..errors import Unauthorized
from ..identity import resolve_user
from ..models import UserModel
from ..realtime import SessionRegistry


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_registry(connection: HTTPConnection) -> SessionRegistry:
    return connection.app.state.registry


def get_current_user(
    authorization: str | None = Header(default=None),
    db: Session = Depends(get_db),
) -> UserModel:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")
    token = authorization.split(" ", maxsplit=1)[1]
    try:
        return resolve_user(db, token)
    except Unauthorized as exc:
        raise exc.to_http() from exc
