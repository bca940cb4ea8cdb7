"""Structured logging setup using structlog."""

from __future__ import annotations

import logging
import sys
from contextlib import AbstractContextManager

import structlog


def setup_logging(level: str = "INFO", fmt: str = "console") -> None:
    """Configure structlog.

    ``fmt`` selects the renderer: ``"console"`` for local runs, ``"json"``
    for one JSON object per line when the bot runs under a log collector.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    processors: list[structlog.typing.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if fmt == "json":
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a named logger instance."""
    return structlog.get_logger(name)


def request_context(conversation_key: str, sender_id: str) -> AbstractContextManager:
    """Bind per-delivery identifiers to every log line emitted inside the block."""
    return structlog.contextvars.bound_contextvars(
        conversation_key=conversation_key,
        sender_id=sender_id,
    )
