"""Sandbox management endpoints."""

from __future__ import annotations

import logging
from typing import Any, Callable, List, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Path
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from ..errors import SandboxError
from ..models import UserModel
from ..realtime import SessionRegistry
from ..schemas import (
    AccessResponse,
    DeleteResponse,
    SandboxCreateRequest,
    SandboxResponse,
    ShareRequest,
    ShareResponse,
)
from ..store import store
from ..telemetry import log_event
from .deps import get_current_user, get_registry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sandboxes", tags=["sandboxes"])

T = TypeVar("T")


def _run(action: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    try:
        return func(*args, **kwargs)
    except SandboxError as exc:
        raise exc.to_http() from exc
    except SQLAlchemyError as exc:
        logger.error(f"[API] {action} error: {exc}")
        raise HTTPException(status_code=500, detail="Server error") from exc


@router.get("", response_model=List[SandboxResponse])
def list_sandboxes(current_user: UserModel = Depends(get_current_user)) -> List[SandboxResponse]:
    records = _run("List", store.list_visible, current_user.id)
    return [record.to_response() for record in records]


@router.post("", response_model=SandboxResponse, status_code=201)
def create_sandbox(
    payload: SandboxCreateRequest,
    current_user: UserModel = Depends(get_current_user),
) -> SandboxResponse:
    record = _run("Create", store.create_sandbox, payload.name, current_user.id)
    log_event(record.name, "created", {"owner_id": current_user.id})
    return record.to_response()


@router.get("/{name}/access", response_model=AccessResponse)
def check_access(
    name: str = Path(..., description="Sandbox name"),
    current_user: UserModel = Depends(get_current_user),
) -> AccessResponse:
    role = _run("Access check", store.check_access, name, current_user.id)
    return AccessResponse(access=True, role=role)


@router.post("/{name}/share", response_model=ShareResponse)
def share_sandbox(
    payload: ShareRequest,
    name: str = Path(..., description="Sandbox name"),
    current_user: UserModel = Depends(get_current_user),
) -> ShareResponse:
    recipient = _run(
        "Share",
        store.share_sandbox,
        name,
        current_user.id,
        username=payload.username,
        email=payload.email,
    )
    log_event(name, "shared", {"owner_id": current_user.id, "user_id": recipient.id})
    return ShareResponse(success=True, message="Sandbox shared successfully")


@router.delete("/{name}", response_model=DeleteResponse)
async def delete_sandbox(
    name: str = Path(..., description="Sandbox name"),
    current_user: UserModel = Depends(get_current_user),
    registry: SessionRegistry = Depends(get_registry),
) -> DeleteResponse:
    await run_in_threadpool(_run, "Delete", store.delete_sandbox, name, current_user.id)
    registry.delete(name)
    log_event(name, "deleted", {"owner_id": current_user.id})
    return DeleteResponse(success=True)
