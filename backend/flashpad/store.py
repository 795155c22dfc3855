"""Sandbox metadata repository backed by SQLAlchemy."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import List, Literal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .database import SessionLocal
from .errors import Conflict, Forbidden, InvalidRequest, NotFound
from .models import SandboxModel, SandboxShareModel, UserModel
from .schemas import SandboxResponse

MIN_NAME_LENGTH = 3
_INVALID_NAME_CHARS = re.compile(r"[^a-z0-9_-]")

Role = Literal["owner", "viewer"]


def normalize_sandbox_name(name: object) -> str:
    """Trim, lower-case and replace characters outside ``[a-z0-9_-]`` with ``-``."""
    if not isinstance(name, str) or len(name.strip()) < MIN_NAME_LENGTH:
        raise InvalidRequest(f"Invalid name (min {MIN_NAME_LENGTH} characters)")
    return _INVALID_NAME_CHARS.sub("-", name.strip().lower())


@dataclass
class SandboxRecord:
    id: str
    name: str
    owner_id: str
    created_at: datetime
    updated_at: datetime
    shared: bool = False

    @classmethod
    def from_model(cls, model: SandboxModel, shared: bool = False) -> "SandboxRecord":
        return cls(
            id=model.id,
            name=model.name,
            owner_id=model.owner_id,
            created_at=model.created_at,
            updated_at=model.updated_at,
            shared=shared,
        )

    def to_response(self) -> SandboxResponse:
        return SandboxResponse(
            id=self.id,
            name=self.name,
            owner_id=self.owner_id,
            shared=self.shared,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class SandboxRepository:
    def create_sandbox(self, name: object, owner_id: str) -> SandboxRecord:
        normalized = normalize_sandbox_name(name)
        with SessionLocal() as db:
            model = SandboxModel(name=normalized, owner_id=owner_id)
            db.add(model)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise Conflict("This name already exists") from exc
            db.refresh(model)
            return SandboxRecord.from_model(model)

    def list_visible(self, user_id: str) -> List[SandboxRecord]:
        with SessionLocal() as db:
            owned = db.scalars(
                select(SandboxModel)
                .where(SandboxModel.owner_id == user_id)
                .order_by(SandboxModel.created_at.desc())
            ).all()
            shared = db.scalars(
                select(SandboxModel)
                .join(SandboxShareModel, SandboxShareModel.sandbox_id == SandboxModel.id)
                .where(SandboxShareModel.user_id == user_id)
                .order_by(SandboxShareModel.created_at.desc())
            ).all()
            return [SandboxRecord.from_model(model) for model in owned] + [
                SandboxRecord.from_model(model, shared=True) for model in shared
            ]

    def get_sandbox(self, name: str) -> SandboxRecord:
        with SessionLocal() as db:
            return SandboxRecord.from_model(self._require(db, name))

    def check_access(self, name: str, user_id: str) -> Role:
        with SessionLocal() as db:
            sandbox = self._require(db, name)
            if sandbox.owner_id == user_id:
                return "owner"
            if self._find_share(db, sandbox.id, user_id) is None:
                raise Forbidden("Access denied")
            return "viewer"

    def share_sandbox(
        self,
        name: str,
        owner_id: str,
        *,
        username: str | None = None,
        email: str | None = None,
    ) -> UserModel:
        with SessionLocal() as db:
            sandbox = self._require(db, name)
            if sandbox.owner_id != owner_id:
                raise Forbidden("Only the owner can share")

            query = select(UserModel)
            if username:
                query = query.where(UserModel.username == username.lstrip("@"))
            else:
                query = query.where(UserModel.email == (email or "").lower())
            recipient = db.scalars(query).first()
            if recipient is None:
                raise NotFound("User not found")
            if recipient.id == owner_id:
                raise InvalidRequest("You cannot share a sandbox with yourself")

            db.add(SandboxShareModel(sandbox_id=sandbox.id, user_id=recipient.id))
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise Conflict("Already shared with this user") from exc
            return recipient

    def delete_sandbox(self, name: str, user_id: str) -> SandboxRecord:
        with SessionLocal() as db:
            sandbox = self._require(db, name)
            if sandbox.owner_id != user_id:
                raise Forbidden("Only the owner can delete")
            record = SandboxRecord.from_model(sandbox)
            db.delete(sandbox)
            db.commit()
            return record

    @staticmethod
    def _require(db: Session, name: str) -> SandboxModel:
        sandbox = db.scalars(select(SandboxModel).where(SandboxModel.name == name)).first()
        if sandbox is None:
            raise NotFound("Sandbox not found")
        return sandbox

    @staticmethod
    def _find_share(db: Session, sandbox_id: str, user_id: str) -> SandboxShareModel | None:
        return db.scalars(
            select(SandboxShareModel).where(
                SandboxShareModel.sandbox_id == sandbox_id,
                SandboxShareModel.user_id == user_id,
            )
        ).first()


store = SandboxRepository()
