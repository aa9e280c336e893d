"""Structured logging for the users API, built on structlog.

Both structlog loggers and plain stdlib loggers (uvicorn, sqlalchemy)
end up in one stdout handler, rendered either as JSON lines
(LOG_FORMAT=json) or as colored console output.

Request-scoped fields such as trace_id and principal are bound into
contextvars by the middleware and merged into every line. Inside the
layers, prefer the logger carried on the RequestContext.

Usage:
    from core import get_logger
    logger = get_logger(__name__)
    logger.info("user.created", user_id="123")
"""

import logging
import sys

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

SERVICE_NAME = "users-api"

bind_contextvars = structlog.contextvars.bind_contextvars
clear_contextvars = structlog.contextvars.clear_contextvars

# Library loggers that are too chatty at INFO
_QUIET_LOGGERS: dict[str, int] = {
    "uvicorn.access": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "asyncio": logging.WARNING,
}


def _resolve_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    return getattr(logging, level.upper(), logging.INFO)


def _drop_color_message(
    _logger: WrappedLogger, _method_name: str, event_dict: EventDict
) -> EventDict:
    # uvicorn duplicates every message with ANSI codes under this key
    event_dict.pop("color_message", None)
    return event_dict


def _add_service(
    _logger: WrappedLogger, _method_name: str, event_dict: EventDict
) -> EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def _shared_processors() -> list[Processor]:
    """Processors run for structlog and stdlib records alike."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        _drop_color_message,
        _add_service,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _renderer(json_output: bool) -> Processor:
    if json_output:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=sys.stdout.isatty(),
        exception_formatter=structlog.dev.plain_traceback,
    )


def configure_logging(level: str | int = "INFO", json_output: bool = False) -> None:
    """Route structlog and stdlib logging through one formatter.

    Call once at process start, before the first log line. Calling it
    again replaces the previous handler instead of adding a second one.
    """
    shared = _shared_processors()

    structlog.configure(
        processors=[
            *shared,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                _renderer(json_output),
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(_resolve_level(level))

    for name, quiet_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)


def shutdown_logging() -> None:
    """Flush and close all handlers. Call once at process exit."""
    clear_contextvars()
    logging.shutdown()


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger, typically with ``__name__``."""
    return structlog.stdlib.get_logger(name)
