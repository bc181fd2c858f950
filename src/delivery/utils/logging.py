"""Logging for the delivery domain.

structlog renders through stdlib logging. Developers get coloured console
lines; production and staging emit one JSON object per line so the order,
rider and refund ids bound by the handlers arrive as searchable fields.
Set ``DELIVERY_LOG_FILE`` to also append to a size-capped file.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Any

import structlog

_DEFAULT_LEVELS = {"production": "INFO", "staging": "INFO", "test": "WARNING"}
_JSON_ENVIRONMENTS = ("production", "staging")

# Third-party loggers that drown out order events at DEBUG
_QUIET = ("protean", "asyncio", "httpx", "urllib3")


def current_environment() -> str:
    for variable in ("ENV", "ENVIRONMENT", "PROTEAN_ENV"):
        if os.getenv(variable):
            return os.environ[variable].lower()
    return "development"


def get_log_level() -> str:
    """``LOG_LEVEL`` wins; otherwise the environment's default, DEBUG while developing."""
    return os.getenv("LOG_LEVEL", _DEFAULT_LEVELS.get(current_environment(), "DEBUG")).upper()


def _add_service(_, __, event_dict: dict) -> dict:
    event_dict.setdefault("service", "delivery")
    event_dict.setdefault("environment", current_environment())
    return event_dict


def _handlers(level: str) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    log_file = os.getenv("DELIVERY_LOG_FILE")
    if log_file and current_environment() != "test":
        handlers.append(RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8"))
    for handler in handlers:
        handler.setLevel(level)
    return handlers


def configure_logging() -> None:
    """Wire stdlib handlers and the structlog pipeline. Safe to call more than once."""
    level = get_log_level()
    logging.basicConfig(format="%(message)s", level=level, handlers=_handlers(level), force=True)
    for name in _QUIET:
        logging.getLogger(name).setLevel(logging.WARNING)

    renderer = (
        structlog.processors.JSONRenderer()
        if current_environment() in _JSON_ENVIRONMENTS
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            _add_service,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def add_context(**kwargs: Any) -> None:
    """Bind values (request path, acting user) to every later log line in this context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
