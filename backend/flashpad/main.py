"""Entry point for the Flash Sandbox API service."""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from .api import auth, sandboxes, stream, users
from .config import settings
from .database import init_db
from .realtime import SessionRegistry
from .schemas import PublicConfigResponse
from .telemetry import configure_logging

app = FastAPI(title=settings.project_name)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router, prefix=settings.api_prefix)
app.include_router(users.router, prefix=settings.api_prefix)
app.include_router(sandboxes.router, prefix=settings.api_prefix)
app.include_router(stream.router)

_started_at = time.monotonic()


@app.get("/health")
def healthcheck(request: Request) -> dict:
    return {
        "status": "ok",
        "uptime": round(time.monotonic() - _started_at, 3),
        "sandboxes": request.app.state.registry.size(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get(f"{settings.api_prefix}/config", response_model=PublicConfigResponse)
def public_config() -> PublicConfigResponse:
    return PublicConfigResponse(ttl_seconds=settings.sandbox_ttl, max_content_size=settings.max_content_size)


@app.on_event("startup")
async def _startup() -> None:
    configure_logging(settings.log_level)
    init_db()
    app.state.registry = SessionRegistry(
        scheduler=asyncio.get_running_loop(),
        ttl_seconds=settings.sandbox_ttl,
        max_content_size=settings.max_content_size,
    )


@app.on_event("shutdown")
def _shutdown() -> None:
    app.state.registry.shutdown()


def run() -> None:
    import uvicorn

    uvicorn.run("flashpad.main:app", host=settings.host, port=settings.port)
