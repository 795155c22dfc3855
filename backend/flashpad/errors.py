"""Domain errors shared by the REST routers and the WebSocket handler.

Each error carries the HTTP status used by the request/response surface and
the close code used when a stream connection is rejected.
"""

from __future__ import annotations

from fastapi import HTTPException


class SandboxError(Exception):
    status_code = 400
    close_code = 4400
    default_message = "Invalid request"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_http(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.message)


class InvalidRequest(SandboxError):
    pass


class Unauthorized(SandboxError):
    status_code = 401
    close_code = 4401
    default_message = "Invalid token"


class Forbidden(SandboxError):
    status_code = 403
    close_code = 4403
    default_message = "Access denied"


class NotFound(SandboxError):
    status_code = 404
    close_code = 4404
    default_message = "Sandbox not found"


class Conflict(SandboxError):
    status_code = 409
    close_code = 4409
    default_message = "Already exists"


class ContentTooLarge(SandboxError):
    status_code = 413
    close_code = 4413

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"Content too large (max {limit // 1024} KB)")
