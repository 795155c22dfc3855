"""WebSocket streaming endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, WebSocket

from ..connection import SandboxConnection
from ..realtime import SessionRegistry
from .deps import get_registry

router = APIRouter()


@router.websocket("/ws/{sandbox_name}")
async def sandbox_stream(
    websocket: WebSocket,
    sandbox_name: str,
    token: str | None = Query(default=None),
    registry: SessionRegistry = Depends(get_registry),
) -> None:
    await SandboxConnection(websocket, registry).run(token, sandbox_name)
