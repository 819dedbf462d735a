"""Structured logging configuration for rest-api.

structlog renders both its own events and records from stdlib loggers
(``logging.getLogger(__name__)`` in ``rest_api.api``) through one
formatter, so every line carries the same fields.

Per-request fields:

- ``request_id``: set by ``RequestIdMiddleware`` in ``request_id_ctx``.
- ``user`` / ``route``: bound by the dispatch pipeline with
  ``bind_request_fields`` once identity and route are known.

Usage::

    from rest_api.observability.logging import configure_logging, get_logger

    configure_logging()  # once, at startup
    logger = get_logger(__name__)
    logger.info('endpoint_invoked', route='/hello/{name}')
"""

from __future__ import annotations

import logging
import os
import sys
from contextvars import ContextVar
from typing import Any

import structlog

request_id_ctx: ContextVar[str | None] = ContextVar('request_id', default=None)

# Library loggers that are too chatty at INFO.
_LIBRARY_LEVELS = {
    'uvicorn.access': logging.WARNING,
    'uvicorn.error': logging.INFO,
    'watchfiles': logging.WARNING,
}

_configured = False


def _add_request_id(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict,
) -> dict:
    rid = request_id_ctx.get()
    if rid is not None:
        event_dict.setdefault('request_id', rid)
    return event_dict


def _pre_chain() -> list:
    """Processors applied to structlog events and stdlib records alike."""
    return [
        structlog.contextvars.merge_contextvars,
        _add_request_id,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt='iso', utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def configure_logging(
    *,
    level: str | None = None,
    json_output: bool | None = None,
) -> None:
    """Configure structlog and the root stdlib logger. Later calls are no-ops.

    Args:
        level: Log level name. Defaults to ``LOG_LEVEL`` or INFO.
        json_output: JSON lines when True, console output when False.
            Defaults to ``LOG_FORMAT`` (``json`` unless set otherwise).
    """
    global _configured
    if _configured:
        return
    _configured = True

    level = level or os.environ.get('LOG_LEVEL', 'INFO')
    if json_output is None:
        json_output = os.environ.get('LOG_FORMAT', 'json').lower() == 'json'

    pre_chain = _pre_chain()
    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    ))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name, library_level in _LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(library_level)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger bound to the given name."""
    return structlog.get_logger(name)


def bind_request_fields(**fields: Any) -> None:
    """Attach fields to every log line emitted for the current request."""
    structlog.contextvars.bind_contextvars(**fields)


def clear_request_fields() -> None:
    structlog.contextvars.clear_contextvars()
