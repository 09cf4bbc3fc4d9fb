"""Structured logging on structlog.

Events are emitted through stdlib logging so hosts keep control of handlers.
Per-command context (action, height, sender) is bound once through
contextvars and merged into every event logged while the command runs.
"""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from perp.config import AppSettings
    from perp.models import Env


def setup_logging(settings: AppSettings) -> None:
    """Configure structlog from ``settings.log_level`` and ``settings.log_format``.

    "json" renders one machine-readable line per event; anything else uses
    the console renderer.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
    ]

    if settings.log_format.lower() == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    perp_logger = logging.getLogger("perp")
    perp_logger.handlers.clear()
    perp_logger.addHandler(handler)
    perp_logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))


def command_context(action: str, env: Env) -> AbstractContextManager[None]:
    """Bind the running command's identity to every event logged inside."""
    return structlog.contextvars.bound_contextvars(
        command=action, height=env.height, time=env.time, sender=env.sender
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
