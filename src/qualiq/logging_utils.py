"""Logging setup shared by the HTTP service and the terminal chat client."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from qualiq.config import Settings, load_settings

_logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

# Per-request INFO lines from these drown streamed chat replies.
_CHATTY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def _formatter() -> logging.Formatter:
    return logging.Formatter(_LOG_FORMAT, datefmt=_DATE_FORMAT)


def _file_handler(path: str) -> logging.Handler | None:
    try:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
    except OSError as exc:
        _logger.warning("Failed to open log file %s: %s", path, exc)
        return None
    handler.setFormatter(_formatter())
    return handler


def configure_logging(
    settings: Settings | None = None,
    *,
    console_level: int | None = None,
) -> None:
    """Route records to stderr and, when ``LOG_FILE`` is set, to that file.

    ``console_level`` raises the stderr threshold above the configured level,
    which the chat client uses so log lines do not interleave with replies.
    """
    settings = settings or load_settings()
    level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(_formatter())
    console.setLevel(max(level, console_level or level))
    handlers: list[logging.Handler] = [console]

    if settings.logging.file:
        file_handler = _file_handler(settings.logging.file)
        if file_handler is not None:
            handlers.append(file_handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
