"""Structured logging configuration for the Signal Engine workers.

Modules log with an event name and key/value context, either through
``structlog.get_logger(__name__)`` or ``get_logger(name)``, which also binds
``logger_name`` into every event. ``configure_logging()`` installs the
processor chain once per process: console rendering for development,
JSON lines when ``settings.log_json`` is set (one event per line for log
shippers).
"""

import logging

import structlog

_configured = False


def build_processors(json_logs: bool = False) -> list:
    """Processor chain shared by the console and JSON renderers."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if json_logs:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())
    return processors


def configure_logging(debug: bool = False, json_logs: bool = False) -> None:
    """Configure structlog once; later calls are no-ops.

    Args:
        debug: Emit debug events (per-asset skips, breach counters).
        json_logs: Render JSON lines instead of the console format.
    """
    global _configured
    if _configured:
        return

    structlog.configure(
        processors=build_processors(json_logs),
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if debug else logging.INFO
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str) -> structlog.BoundLogger:
    """Return a lazy logger whose events carry ``logger_name=name``.

    Does not configure logging itself, so a process can still call
    ``configure_logging()`` with its own settings after modules import.
    """
    return structlog.get_logger(logger_name=name)
