# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""structlog + stdlib bridge. CLI: ConsoleRenderer, HTTP server: JSONRenderer.

Leaf module, no pagelens imports. Safe to call early in startup.
Request-scoped fields (request_id, operation) travel via structlog
contextvars and appear on every record emitted inside the request.
"""

from __future__ import annotations

import logging
import secrets
import sys

import structlog

# Third-party loggers that log every request at INFO.
_CHATTY_LOGGERS = ("httpx", "httpcore", "asyncio")


def configure(*, json_output: bool = False, level: str = "INFO") -> None:
    """Route stdlib and structlog records through one stderr handler.

    Args:
        json_output: JSON lines (server) instead of human-readable output (CLI).
        level: Root logger level; unknown names fall back to INFO.
    """
    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root_level = getattr(logging, level.upper(), logging.INFO)
    if not isinstance(root_level, int):
        root_level = logging.INFO
    root.setLevel(root_level)

    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(root_level, logging.WARNING))


def new_request_id() -> str:
    """Short random id correlating the log lines of one request."""
    return secrets.token_hex(3)


def bind_request(request_id: str, **fields: str) -> None:
    """Start a fresh request context: clears earlier bindings first."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, **fields)


def clear_request() -> None:
    structlog.contextvars.clear_contextvars()
