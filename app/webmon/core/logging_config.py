"""Logging configuration for the website egress monitor.

Keep configuration generation separate from execution. This module provides:

    - `get_logging_config`: Build a `logging.config.dictConfig` dictionary
      from application settings.
    - `configure_structlog_wrapper`: Install structlog's logger factory and
      processor chain on top of stdlib logging.
    - `configure_logging`: Apply both, in that order. Called once by the
      process entry point and again (idempotently) by the app lifespan.
    - `bind_monitor_context`: Attach the probe target and component name to
      every log line emitted by the probe task.
"""

import logging.config
from typing import Any

import structlog
from structlog.types import Processor

from app.config import Settings


# =============================================================================
# CONFIGURATION GENERATORS
# =============================================================================


def get_common_processors() -> list[Processor]:
    """Return the processors run before rendering, for structlog and stdlib records.

    uvicorn and httpx log through stdlib; they get the same timestamp, level
    and bound `target`/`request_id` keys as the probe loop's own lines.
    """
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def get_logging_config(settings: Settings) -> dict[str, Any]:
    """Generate a logging configuration dictionary for `logging.config.dictConfig`.

    Production and staging render JSON lines for the log shipper next to the
    scrape target; development renders colored console output.

    Note:
        This is a pure function that does not modify global state.

    Args:
        settings: Application settings containing LOG_LEVEL and ENVIRONMENT.

    Returns:
        dict[str, Any]: Configuration dictionary compatible with dictConfig.
    """
    log_level = settings.LOG_LEVEL.upper()
    is_production = settings.ENVIRONMENT.lower() in ("production", "staging")

    if is_production:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "()": "structlog.stdlib.ProcessorFormatter",
                "processor": renderer,
                "foreign_pre_chain": get_common_processors(),
            },
        },
        "handlers": {
            "console": {
                "level": log_level,
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            "": {
                "handlers": ["console"],
                "level": log_level,
                "propagate": True,
            },
            # Probe traffic would otherwise log one httpx line per tick.
            **{
                lib: {"level": "WARNING", "propagate": False}
                for lib in settings.LOGGING_NOISY_MODULES
            },
        },
    }


def configure_structlog_wrapper(settings: Settings) -> None:
    """Route structlog events into the stdlib handler built by `get_logging_config`.

    Level filtering happens here, so debug-level probe lines cost nothing at
    the default `info` level.

    Args:
        settings: Application settings (unused; kept for a uniform signature).
    """
    structlog_processors = [
        structlog.stdlib.filter_by_level,
        *get_common_processors(),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]

    structlog.configure(
        processors=structlog_processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def configure_logging(settings: Settings) -> None:
    """Apply stdlib handlers first, then the structlog processor chain."""
    logging.config.dictConfig(get_logging_config(settings))
    configure_structlog_wrapper(settings)


# =============================================================================
# LOGGER RETRIEVAL
# =============================================================================


def get_logger(name: str | None = None) -> Any:
    """Return a structlog logger, named after the calling module when given."""
    if name:
        return structlog.get_logger(name)
    return structlog.get_logger()


# =============================================================================
# CONTEXT VARIABLE EXPORTS
# =============================================================================

bind_contextvars = structlog.contextvars.bind_contextvars
clear_contextvars = structlog.contextvars.clear_contextvars


def bind_monitor_context(settings: Settings) -> None:
    """Bind the probe target and component name to the current log context.

    Tasks created afterwards copy the context, so the probe loop inherits
    these keys without passing them around.
    """
    bind_contextvars(
        target=str(settings.TARGET_URL),
        component=settings.COMPONENT_NAME,
    )
