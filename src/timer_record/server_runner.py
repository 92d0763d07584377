"""Helpers to launch the local control API."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import uvicorn

from .config import TrackerConfig
from .paths import get_db_path
from .webapp import create_app


def run_server(
    *,
    host: str = "127.0.0.1",
    port: int = 8765,
    db_path: Optional[Path] = None,
    config: Optional[TrackerConfig] = None,
    autostart: bool = True,
    log_level: str = "info",
) -> None:
    """Start the FastAPI control API; the tracker stops with the server."""
    app = create_app(
        db_path=db_path or get_db_path(),
        config=config or TrackerConfig(),
        autostart=autostart,
    )

    logging.getLogger("uvicorn.error").setLevel(log_level.upper())
    uvicorn.run(app, host=host, port=port, log_level=log_level)
