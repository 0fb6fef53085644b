"""
Logging configuration using structlog.

Every module logs through ``structlog.get_logger(__name__)`` with snake_case
event names and keyword context. This module installs the processor chain
once at startup.
"""

from typing import Any, Literal

import structlog


def configure_logging(
    log_level: str = "INFO",
    renderer: Literal["json", "console"] = "json",
) -> None:
    """Configure structured logging.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        renderer: ``json`` for machine-readable lines, ``console`` for
            human-readable development output
    """
    final_renderer: Any
    if renderer == "console":
        final_renderer = structlog.dev.ConsoleRenderer()
    else:
        final_renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            final_renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level.upper()),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> Any:
    """Get a logger instance.

    Example:
        >>> log = get_logger(__name__)
        >>> log.info("branch_created", branch="fix/login-7-1700000000000", task_id="7")
    """
    return structlog.get_logger(name)
