"""Structured logging setup shared by the tutorial packages."""

from __future__ import annotations

import logging
import sys
from typing import Optional

import structlog


def setup_logging(level: Optional[str] = None, *, json_output: bool = False) -> None:
    """Route structlog through the standard library root logger.

    ``level`` defaults to ``tutorial.logLevel`` from settings.json.
    """
    if level is None:
        from config import get_tutorial_settings

        level = str(get_tutorial_settings().get("logLevel", "INFO"))
    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(console_handler)

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(colors=False)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    structlog.get_logger(__name__).info("logging_configured", level=logging.getLevelName(log_level))


__all__ = ["setup_logging"]
