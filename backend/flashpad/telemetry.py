"""Logging setup and sandbox lifecycle events."""

from __future__ import annotations

import json
import logging

logger = logging.getLogger("flashpad.events")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def log_event(sandbox: str, event_type: str, payload: dict | None = None) -> None:
    logger.info(f"{event_type} sandbox={sandbox} {json.dumps(payload or {}, default=str)}")
