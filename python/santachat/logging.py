"""Structured logging via structlog.

Every entry is rendered as one JSON line and carries whatever correlation
fields are bound for the current context: ``request_id``, ``user_id``,
``path`` and ``method`` on the server, and ``client_message_id`` while an
outbox item is being drained or written.

Usage:
    from santachat.logging import get_logger

    logger = get_logger(__name__)
    logger.info("message_created", conversation_id=conversation_id)
"""

import logging
import sys
from contextvars import ContextVar

import structlog

_CONTEXT_FIELDS = ("request_id", "user_id", "path", "method", "client_message_id")

_context: dict[str, ContextVar[str | None]] = {
    field: ContextVar(field, default=None) for field in _CONTEXT_FIELDS
}

NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def add_request_context(logger: logging.Logger, method_name: str, event_dict: dict) -> dict:
    """structlog processor: copy bound correlation fields into the event.

    Fields passed explicitly at the call site win over bound ones.
    """
    for field, var in _context.items():
        value = var.get()
        if value:
            event_dict.setdefault(field, value)
    return event_dict


def configure_logging(json_format: bool = True, level: int = logging.INFO) -> None:
    """Route structlog and stdlib logging through one stdout handler.

    Args:
        json_format: JSON lines when True, coloured console output otherwise.
        level: Root log level.
    """
    shared_processors = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_request_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog.processors.JSONRenderer() if json_format else structlog.dev.ConsoleRenderer()
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def set_request_context(
    request_id: str | None,
    user_id: str | None = None,
    path: str | None = None,
    method: str | None = None,
) -> None:
    """Bind request correlation fields. ``None`` leaves a field as it was,
    except ``request_id`` which is always replaced."""
    _context["request_id"].set(request_id)
    for field, value in (("user_id", user_id), ("path", path), ("method", method)):
        if value is not None:
            _context[field].set(value)


def set_client_message_id(client_message_id: str | None) -> None:
    _context["client_message_id"].set(client_message_id)


def clear_request_context() -> None:
    for var in _context.values():
        var.set(None)


def get_request_id() -> str | None:
    return _context["request_id"].get()
