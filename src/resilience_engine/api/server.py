"""Uvicorn server runner for the health API."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uvicorn

from resilience_engine.api.health import create_app

if TYPE_CHECKING:
    from resilience_engine.config import Settings


def run_server(settings: Settings) -> None:
    """Run uvicorn with settings-backed host/port values."""
    app = create_app(settings)
    uvicorn.run(
        app,
        host=settings.api.host,
        port=settings.api.port,
        log_level=settings.logging.level.lower(),
    )
