"""structlog setup for the CLI and embedding applications."""

from __future__ import annotations

import logging
from typing import Any

import structlog


def configure_logging(level: str = "info", *, json: bool = False) -> None:
    """Configure structlog with level filtering and a console or JSON renderer."""
    numeric = logging.getLevelNamesMapping().get(level.upper())
    if numeric is None:
        msg = f"Unknown log level: {level}"
        raise ValueError(msg)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if json:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        cache_logger_on_first_use=False,
    )
