"""Logging configuration for the Conduit service.

Configuration generation is kept separate from its application:

    - `get_logging_config`: Build a standard `logging.config.dictConfig`
      dictionary from application settings.
    - `configure_structlog_wrapper`: Install structlog's logger factory and
      processor chain so library loggers and structlog loggers share one
      formatter.
    - Context helpers re-exported from `structlog.contextvars` for
      request-scoped metadata such as correlation IDs.
"""

from typing import Any

import structlog
from structlog.types import Processor

from app.config import Settings


# =============================================================================
# CONFIGURATION GENERATORS
# =============================================================================


def get_common_processors() -> list[Processor]:
    """Return the processor chain shared by the JSON and console renderers.

    Returns:
        list[Processor]: Ordered list of structlog processors.
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


def select_renderer(settings: Settings) -> Processor:
    """Pick the final renderer.

    ``LOG_FORMAT`` wins when set explicitly; otherwise staging and production
    emit JSON for log aggregation and development gets colored console output.
    """
    if settings.LOG_FORMAT == "json":
        return structlog.processors.JSONRenderer()
    if settings.LOG_FORMAT == "console":
        return structlog.dev.ConsoleRenderer(colors=True)
    if settings.ENVIRONMENT in ("production", "staging"):
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=True)


def get_logging_config(settings: Settings) -> dict[str, Any]:
    """Generate a logging configuration dictionary for `logging.config.dictConfig`.

    Note:
        This is a pure function that does not modify global state.

    Args:
        settings: Application settings providing LOG_LEVEL, LOG_FORMAT,
            ENVIRONMENT and LOGGING_NOISY_MODULES.

    Returns:
        dict[str, Any]: Configuration dictionary compatible with dictConfig.
    """
    log_level = settings.LOG_LEVEL.upper()

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "()": "structlog.stdlib.ProcessorFormatter",
                "processor": select_renderer(settings),
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
            **{
                module: {"level": "WARNING", "propagate": False}
                for module in settings.LOGGING_NOISY_MODULES
            },
        },
    }


def configure_structlog_wrapper(settings: Settings) -> None:
    """Install the structlog processor pipeline.

    Args:
        settings: Application settings. Debug level disables logger caching so
            reconfiguration during development takes effect immediately.
    """
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *get_common_processors(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=settings.LOG_LEVEL != "debug",
    )


# =============================================================================
# LOGGER RETRIEVAL
# =============================================================================


def get_logger(name: str | None = None, **initial_values: Any) -> Any:
    """Retrieve a structlog logger, optionally pre-bound with context.

    Args:
        name: Optional logger name. If omitted, return the root logger.
        **initial_values: Key/value pairs bound to every event of this logger
            (for example ``provider="github"``).

    Returns:
        A bound structlog logger instance.
    """
    if name:
        return structlog.get_logger(name, **initial_values)
    return structlog.get_logger(**initial_values)


# =============================================================================
# CONTEXT VARIABLE EXPORTS
# =============================================================================

bind_contextvars = structlog.contextvars.bind_contextvars
unbind_contextvars = structlog.contextvars.unbind_contextvars
clear_contextvars = structlog.contextvars.clear_contextvars
