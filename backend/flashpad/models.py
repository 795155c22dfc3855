"""SQLAlchemy models."""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import relationship

from .database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid4().hex


class UserModel(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=_new_id)
    email = Column(String, unique=True, index=True, nullable=False)
    username = Column(String, unique=True, index=True, nullable=True)
    password_hash = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    last_login_at = Column(DateTime(timezone=True), nullable=True)


class SandboxModel(Base):
    __tablename__ = "sandboxes"

    id = Column(String, primary_key=True, default=_new_id)
    name = Column(String, unique=True, index=True, nullable=False)
    owner_id = Column(String, ForeignKey("users.id"), index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    shares = relationship("SandboxShareModel", back_populates="sandbox", cascade="all, delete-orphan")


class SandboxShareModel(Base):
    __tablename__ = "sandbox_shares"
    __table_args__ = (UniqueConstraint("sandbox_id", "user_id", name="uq_sandbox_share"),)

    id = Column(String, primary_key=True, default=_new_id)
    sandbox_id = Column(String, ForeignKey("sandboxes.id", ondelete="CASCADE"), index=True, nullable=False)
    user_id = Column(String, ForeignKey("users.id"), index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    sandbox = relationship("SandboxModel", back_populates="shares")
