"""In-memory collaborative session engine.

A ``Session`` holds the live buffer of one sandbox together with the viewers
attached to it. Every accepted mutation replaces the whole buffer and is
broadcast to all viewers (last writer wins). Content is purged after
``ttl_seconds`` without attach/edit/clear.

Everything here is synchronous and meant to run on the event loop thread:
mutations and broadcasts never await, so they cannot interleave. Delivery is
best-effort; viewers whose transport is not ready are skipped, nothing is
acknowledged or retried.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Protocol, Set

from .config import settings
from .errors import ContentTooLarge, NotFound
from .schemas import ClearedMessage, PresenceMessage, StateMessage, StreamMessage
from .telemetry import log_event

logger = logging.getLogger(__name__)

SANDBOX_DELETED_CLOSE_CODE = 4410


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ViewerContext:
    """Who is behind a connection, fixed once the connection is authorized."""

    user_id: str
    display_name: str
    sandbox_name: str

    @property
    def identity(self) -> str:
        return f"@{self.display_name}"


class Viewer(Protocol):
    @property
    def ready(self) -> bool: ...

    def send(self, payload: str) -> None: ...

    def close(self, code: int = 1000, reason: str = "") -> None: ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Anything with ``call_later``; an asyncio event loop qualifies."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...


class Session:
    def __init__(
        self,
        sandbox_id: str,
        owner_id: str,
        *,
        scheduler: Scheduler,
        ttl_seconds: float = settings.sandbox_ttl,
        max_content_size: int = settings.max_content_size,
    ) -> None:
        self.id = sandbox_id
        self.owner_id = owner_id
        self.content = ""
        self.updated_by = settings.system_identity
        self.updated_at = utcnow()
        self.viewers: Set[Viewer] = set()
        self.ttl_seconds = ttl_seconds
        self.max_content_size = max_content_size
        self._scheduler = scheduler
        self._timer: Optional[TimerHandle] = None
        self._generation = 0
        self.reset_expiry()

    @property
    def users(self) -> int:
        return len(self.viewers)

    @property
    def expiry_pending(self) -> bool:
        return self._timer is not None

    def snapshot(self) -> StateMessage:
        return StateMessage(
            content=self.content,
            updated_by=self.updated_by,
            updated_at=self.updated_at,
            users=self.users,
        )

    def attach(self, viewer: Viewer) -> None:
        self.viewers.add(viewer)
        self.reset_expiry()

    def detach(self, viewer: Viewer) -> None:
        if viewer not in self.viewers:
            return
        self.viewers.discard(viewer)
        self.broadcast(PresenceMessage(users=self.users))

    def apply_edit(self, content: str, editor: str) -> StateMessage:
        """Replace the buffer with ``content``.

        Raises ``ContentTooLarge`` without touching any state when the UTF-8
        encoded content exceeds the limit; the caller reports it to the
        originating connection only.
        """
        if len(content.encode("utf-8")) > self.max_content_size:
            raise ContentTooLarge(self.max_content_size)
        self._mutate(content, editor)
        state = self.snapshot()
        self.broadcast(state)
        return state

    def apply_clear(self, editor: str) -> StateMessage:
        self._mutate("", editor)
        state = self.snapshot()
        self.broadcast(state)
        self.broadcast(ClearedMessage(by=editor, at=self.updated_at))
        return state

    def broadcast(self, message: StreamMessage) -> int:
        payload = message.to_json()
        delivered = 0
        for viewer in list(self.viewers):
            if not viewer.ready:
                continue
            viewer.send(payload)
            delivered += 1
        return delivered

    def reset_expiry(self) -> None:
        self._cancel_timer()
        self._timer = self._scheduler.call_later(self.ttl_seconds, self._expire, self._generation)

    def close(self, code: int = 1000, reason: str = "") -> None:
        self._cancel_timer()
        viewers = list(self.viewers)
        self.viewers.clear()
        for viewer in viewers:
            viewer.close(code, reason)

    def _mutate(self, content: str, editor: str) -> None:
        self.content = content
        self.updated_by = editor
        self.updated_at = utcnow()
        self.reset_expiry()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._generation += 1

    def _expire(self, generation: int) -> None:
        if generation != self._generation:
            return
        self._timer = None
        log_event(self.id, "purged", {"users": self.users})
        self.content = ""
        self.updated_by = settings.purge_identity
        self.updated_at = utcnow()
        self.broadcast(self.snapshot())


class SessionRegistry:
    """Live sessions keyed by sandbox name.

    Owned by the application (``app.state.registry``) and passed to the
    handlers that need it. ``scheduler`` is bound at construction, normally
    the running event loop captured at startup.

    Every ``delete`` bumps the name's revision. A connection reads the
    revision before authorizing and hands it to ``get_or_create``, so a
    delete that lands in between cannot leave an orphaned session behind.
    """

    def __init__(
        self,
        *,
        scheduler: Scheduler,
        ttl_seconds: float = settings.sandbox_ttl,
        max_content_size: int = settings.max_content_size,
    ) -> None:
        self.scheduler = scheduler
        self.ttl_seconds = ttl_seconds
        self.max_content_size = max_content_size
        self._sessions: Dict[str, Session] = {}
        self._revisions: Dict[str, int] = {}
        self._lock = threading.Lock()

    def revision(self, name: str) -> int:
        return self._revisions.get(name, 0)

    def get_or_create(self, name: str, owner_id: str, *, revision: int | None = None) -> Session:
        with self._lock:
            if revision is not None and revision != self.revision(name):
                raise NotFound("Sandbox not found")
            session = self._sessions.get(name)
            if session is None:
                session = Session(
                    name,
                    owner_id,
                    scheduler=self.scheduler,
                    ttl_seconds=self.ttl_seconds,
                    max_content_size=self.max_content_size,
                )
                self._sessions[name] = session
                logger.info(f"[Sandbox] Session opened: {name}")
            return session

    def get(self, name: str) -> Session | None:
        return self._sessions.get(name)

    def delete(self, name: str) -> bool:
        with self._lock:
            self._revisions[name] = self.revision(name) + 1
            session = self._sessions.pop(name, None)
        if session is None:
            return False
        session.close(SANDBOX_DELETED_CLOSE_CODE, "Sandbox deleted")
        logger.info(f"[Sandbox] Session removed: {name}")
        return True

    def size(self) -> int:
        return len(self._sessions)

    def shutdown(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close(1001, "Server shutting down")
