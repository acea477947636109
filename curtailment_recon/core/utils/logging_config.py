"""Structured logging configuration for the reconciliation core.

Uses structlog with context variables and ISO timestamps. Interactive runs
(``scripts/reconcile.py``) render to the console; batch runs under a
scheduler can switch to JSON lines so each reconciliation event is
machine-readable. ``get_logger()`` returns named loggers and
``configure_logging()`` performs the one-time setup.
"""

import logging

import structlog

_configured = False


def configure_logging(json_output: bool = False, level: int = logging.INFO) -> None:
    """Configure structlog processors once.

    Safe to call multiple times -- only the first invocation takes effect.

    Args:
        json_output: Render events as JSON lines instead of console text.
        level: Minimum stdlib log level to emit.
    """
    global _configured
    if _configured:
        return

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str) -> structlog.BoundLogger:
    """Return a bound logger with the given name.

    Args:
        name: Logger name, typically the component name
            (``"ingestion.coordinator"``, ``"quality.consistency"``).

    Returns:
        A structlog BoundLogger bound with ``logger_name``.
    """
    return structlog.get_logger(logger_name=name)
