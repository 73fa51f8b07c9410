"""Structured logging with sync_id correlation.

Uses structlog for rendering (JSON in production, console in development).
Library modules log through ``logging.getLogger(__name__)``; their records
are rendered by the same processor chain, so ``sync_id`` and any
``structlog.contextvars`` bindings (``account_id``) appear on every line
emitted during a sync cycle.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from typing import Any

import structlog

from trade_journal.core.ids import new_id

_sync_id: ContextVar[str] = ContextVar("sync_id", default="")


def get_sync_id() -> str:
    """Current sync correlation id ("" outside a sync cycle)."""
    return _sync_id.get()


def new_sync_id() -> str:
    """Generate and set a new sync id for the current context."""
    sid = new_id()
    _sync_id.set(sid)
    return sid


def _add_sync_id(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Structlog processor: add sync_id when inside a cycle."""
    sid = _sync_id.get()
    if sid:
        event_dict.setdefault("sync_id", sid)
    return event_dict


def setup_logging(
    level: str = "INFO",
    format: str = "json",
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        format: "json" for production, "console" for development.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    shared: list[Any] = [
        structlog.contextvars.merge_contextvars,
        _add_sync_id,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    final: list[Any] = [structlog.stdlib.ProcessorFormatter.remove_processors_meta]
    if format == "json":
        final += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        final.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=final,
        )
    )
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)
