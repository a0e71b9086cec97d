"""
Structured logging configuration.
[C7-ID: LOGGING-PROD-001]
"""
import logging
from typing import Optional

import structlog

from .config import get_settings


def configure_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Configure structlog; defaults come from FEATURE_FLAGS_LOG_LEVEL / FEATURE_FLAGS_LOG_FORMAT."""
    settings = get_settings()
    level_name = (log_level or settings.log_level).upper()
    fmt = (log_format or settings.log_format).lower()

    logging.basicConfig(format="%(message)s", level=getattr(logging, level_name, logging.INFO))

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.contextvars.merge_contextvars,
    ]

    if fmt == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
