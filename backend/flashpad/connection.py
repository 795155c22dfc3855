"""Per-connection protocol handler for sandbox streams."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union

from fastapi import WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from starlette.websockets import WebSocketState

from .config import settings
from .database import SessionLocal
from .errors import ContentTooLarge, InvalidRequest, SandboxError
from .identity import lookup_display_name, resolve_user
from .realtime import Session, SessionRegistry, ViewerContext
from .schemas import ClearMessage, EditMessage, ErrorMessage, parse_client_message
from .store import store
from .telemetry import log_event

logger = logging.getLogger(__name__)

SERVER_ERROR_CLOSE_CODE = 4500
SLOW_CONSUMER_CLOSE_CODE = 4408


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    AUTHORIZING = "authorizing"
    ATTACHED = "attached"
    CLOSED = "closed"


@dataclass(frozen=True)
class _CloseFrame:
    code: int
    reason: str


def authorize_viewer(token: str | None, sandbox_name: str | None) -> ViewerContext:
    """Check credential and access; blocking, run it off the event loop."""
    if not token or not sandbox_name:
        raise InvalidRequest("Missing token or sandbox name")
    with SessionLocal() as db:
        user = resolve_user(db, token)
        user_id, email = user.id, user.email
    store.check_access(sandbox_name, user_id)
    display_name = lookup_display_name(user_id) or email or user_id
    return ViewerContext(user_id=user_id, display_name=display_name, sandbox_name=sandbox_name)


class SandboxConnection:
    """Drives one WebSocket through ``CONNECTING -> AUTHORIZING -> ATTACHED -> CLOSED``.

    Outbound frames go through a bounded FIFO queue drained by a writer task,
    so the session can hand off payloads without awaiting the network. A
    viewer that lets the queue fill up is disconnected instead of buffered.
    """

    def __init__(
        self,
        websocket: WebSocket,
        registry: SessionRegistry,
        *,
        outbox_limit: int = settings.outbox_limit,
    ) -> None:
        self.websocket = websocket
        self.registry = registry
        self.state = ConnectionState.CONNECTING
        self.context: Optional[ViewerContext] = None
        self.session: Optional[Session] = None
        self._outbox: asyncio.Queue[Union[str, _CloseFrame]] = asyncio.Queue(maxsize=outbox_limit)
        self._writer: Optional[asyncio.Task] = None
        self._closer: Optional[asyncio.Task] = None

    @property
    def ready(self) -> bool:
        return (
            self.state is ConnectionState.ATTACHED
            and self._closer is None
            and self.websocket.application_state == WebSocketState.CONNECTED
            and self.websocket.client_state == WebSocketState.CONNECTED
        )

    @property
    def pending_frames(self) -> int:
        return self._outbox.qsize()

    def send(self, payload: str) -> None:
        self._enqueue(payload)

    def close(self, code: int = 1000, reason: str = "") -> None:
        self._enqueue(_CloseFrame(code, reason))

    async def run(self, token: str | None, sandbox_name: str | None) -> None:
        self.state = ConnectionState.AUTHORIZING
        revision = self.registry.revision(sandbox_name or "")
        try:
            self.context = await run_in_threadpool(authorize_viewer, token, sandbox_name)
            session = self.registry.get_or_create(
                self.context.sandbox_name, self.context.user_id, revision=revision
            )
        except SandboxError as exc:
            logger.info(f"[WS] Rejected connection to {sandbox_name}: {exc.message}")
            await self._reject(exc.status_code, exc.close_code, exc.message)
            return
        except SQLAlchemyError as exc:
            logger.error(f"[WS] Upgrade error for {sandbox_name}: {exc}")
            await self._reject(500, SERVER_ERROR_CLOSE_CODE, "Server error")
            return

        self._attach(session)
        try:
            await self.websocket.accept()
            self._start_writer()
            self.send(session.snapshot().to_json())
            await self._receive_loop()
        finally:
            await self._shutdown()

    def handle_message(self, raw: str | bytes) -> None:
        session, context = self._attached()
        try:
            message = parse_client_message(raw)
        except ValidationError as exc:
            logger.warning(f"[WS] Ignoring malformed message from {context.identity}: {exc.error_count()} error(s)")
            return

        if isinstance(message, EditMessage):
            try:
                session.apply_edit(message.content, context.identity)
            except ContentTooLarge as exc:
                self.send(ErrorMessage(message=exc.message).to_json())
        elif isinstance(message, ClearMessage):
            session.apply_clear(context.identity)

    def _attached(self) -> Tuple[Session, ViewerContext]:
        if self.state is not ConnectionState.ATTACHED or self.session is None or self.context is None:
            raise RuntimeError("Connection is not attached to a sandbox")
        return self.session, self.context

    def _attach(self, session: Session) -> None:
        # Attach before accepting so a delete racing the handshake closes this viewer.
        self.session = session
        self.state = ConnectionState.ATTACHED
        session.attach(self)
        _, context = self._attached()
        logger.info(f"[WS] Connected: {context.identity} -> {context.sandbox_name} ({session.users} users)")
        log_event(context.sandbox_name, "attached", {"user_id": context.user_id})

    def _start_writer(self) -> None:
        self._writer = asyncio.create_task(self._drain())

    def _enqueue(self, item: Union[str, _CloseFrame]) -> None:
        if self.state is ConnectionState.CLOSED or self._closer is not None:
            return
        try:
            self._outbox.put_nowait(item)
        except asyncio.QueueFull:
            logger.warning(f"[WS] Outbound queue full ({self._outbox.maxsize} frames), dropping slow viewer")
            self._abort(SLOW_CONSUMER_CLOSE_CODE, "Viewer too slow")

    def _abort(self, code: int, reason: str) -> None:
        while not self._outbox.empty():
            self._outbox.get_nowait()
        if self._writer is not None:
            self._writer.cancel()
        self._closer = asyncio.create_task(self._close_transport(code, reason))

    async def _receive_loop(self) -> None:
        while self.state is ConnectionState.ATTACHED:
            try:
                message = await self.websocket.receive()
            except (WebSocketDisconnect, RuntimeError):
                return
            if message["type"] == "websocket.disconnect":
                return
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            try:
                self.handle_message(raw)
            except Exception:
                logger.exception("[WS] Message error")

    async def _shutdown(self) -> None:
        session = self.session
        if session is not None:
            session.detach(self)
        self.state = ConnectionState.CLOSED
        if self._writer is not None:
            self._writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._writer
        if self.context is not None and session is not None:
            logger.info(f"[WS] Disconnected: {self.context.identity} ({session.users} remaining)")
            log_event(self.context.sandbox_name, "detached", {"user_id": self.context.user_id})
            if not session.users:
                logger.info(f"[Sandbox] No more viewers on {self.context.sandbox_name}")

    async def _reject(self, status_code: int, close_code: int, reason: str) -> None:
        """Refuse the upgrade with an HTTP status, or with a close code when the
        server has no denial-response support."""
        self.state = ConnectionState.CLOSED
        if "websocket.http.response" in self.websocket.scope.get("extensions", {}):
            await self.websocket.send_denial_response(JSONResponse({"error": reason}, status_code=status_code))
            return
        await self.websocket.accept()
        await self.websocket.close(code=close_code, reason=reason)

    async def _close_transport(self, code: int, reason: str) -> None:
        try:
            await self.websocket.close(code=code, reason=reason)
        except (WebSocketDisconnect, RuntimeError) as exc:
            logger.debug(f"[WS] Close failed: {exc}")

    async def _drain(self) -> None:
        while True:
            item = await self._outbox.get()
            try:
                if isinstance(item, _CloseFrame):
                    await self.websocket.close(code=item.code, reason=item.reason)
                    return
                await self.websocket.send_text(item)
            except (WebSocketDisconnect, RuntimeError) as exc:
                logger.debug(f"[WS] Dropping outbound frame: {exc}")
                return
