"""structlog configuration for the service and CLI."""

from __future__ import annotations

import logging
from typing import Any

import structlog

from platform_lifecycle.config.models import LoggingConfig


def configure_logging(config: LoggingConfig | None = None) -> None:
    """Install processors for ISO timestamps, levels and JSON or console output."""
    cfg = config or LoggingConfig()
    level = logging.getLevelName(cfg.level.upper())
    if not isinstance(level, int):
        msg = f"Unknown log level: {cfg.level}"
        raise ValueError(msg)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
    ]
    if cfg.json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
