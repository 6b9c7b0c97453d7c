"""Entrypoint for the QualiQ HTTP service."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

if __package__ in (None, ""):
    sys.path.insert(0, str(Path(__file__).resolve().parents[1]))  # pragma: no cover

import uvicorn

from qualiq import __version__
from qualiq.config import load_settings
from qualiq.logging_utils import configure_logging
from qualiq.transport.http_server import create_http_app


def run_entrypoint() -> None:
    """Configure logging and serve the HTTP app with uvicorn."""
    settings = load_settings()
    configure_logging(settings)

    logging.info("Initializing QualiQ service v%s", __version__)
    logging.info("Log file configured at: %s", settings.logging.file)

    app = create_http_app()
    # Plain HTTP plus SSE; no websocket endpoints.
    uvicorn.run(
        app,
        host=settings.server.host,
        port=settings.server.port,
        ws="none",
        log_config=None,
    )


if __name__ == "__main__":  # pragma: no cover
    run_entrypoint()
