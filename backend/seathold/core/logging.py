"""
Structured logging configuration using structlog.
Outputs JSON in production, pretty-printed in development.

Request middleware binds request_id/method/path; the seat ledger binds
show_id/ledger_op for the length of a critical section, so every line a
claim, release, confirmation or sweep writes can be traced to its show.
"""

import logging
import sys
import uuid
from contextlib import contextmanager
from typing import Iterator

import structlog
from seathold.core.config import get_settings

_configured = False

NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "aiosqlite", "sse_starlette")


def _add_service_context(logger, method_name, event_dict):
    settings = get_settings()
    event_dict.setdefault("service", settings.APP_NAME)
    event_dict.setdefault("env", settings.ENVIRONMENT)
    return event_dict


def _stringify_ids(logger, method_name, event_dict):
    # Show and reservation ids are UUIDs; JSON sinks want strings
    for key, value in event_dict.items():
        if isinstance(value, uuid.UUID):
            event_dict[key] = str(value)
    return event_dict


def setup_logging() -> None:
    global _configured
    settings = get_settings()

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        _add_service_context,
        _stringify_ids,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.ENVIRONMENT == "production":
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=settings.ENVIRONMENT == "development")

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if _configured:
        # Lifespan runs once per test client; keep a single handler
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ]
        )
    )

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    _configured = True


@contextmanager
def ledger_context(show_id: uuid.UUID, operation: str) -> Iterator[None]:
    """Tag log lines written inside a show's critical section."""
    with structlog.contextvars.bound_contextvars(show_id=str(show_id), ledger_op=operation):
        yield


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
