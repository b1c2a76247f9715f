"""Logging for Message Search.

Every record carries the owner and source it concerns, both ``None`` when it
has neither. Callers attach them with :func:`log_context`::

    logger.info("Sync started", extra=log_context(owner, source))

Message text never reaches the log stream: context values under a redacted
key are replaced by their length.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import orjson

_DEFAULT_LEVEL = os.environ.get("MSGS_LOG_LEVEL", "INFO")
_DEFAULT_FORMAT = os.environ.get("MSGS_LOG_FORMAT", "json")

_PREFIX = "ctx_"
_REDACTED = frozenset({"body", "content", "query"})


class OwnerContextFilter(logging.Filter):
    """Give every record ``owner`` and ``source`` attributes."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.owner = getattr(record, f"{_PREFIX}owner", None)
        record.source = getattr(record, f"{_PREFIX}source", None)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line with ``owner``, ``source`` and a ``context`` map."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "name": record.name,
            "owner": getattr(record, "owner", None),
            "source": getattr(record, "source", None),
            "message": record.getMessage(),
        }
        context = record_context(record)
        if context:
            payload["context"] = context
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = record.stack_info
        return orjson.dumps(payload, default=str).decode("utf-8")


def record_context(record: logging.LogRecord) -> dict[str, Any]:
    """Collect the ``ctx_`` extras of ``record`` other than owner and source."""
    context: dict[str, Any] = {}
    for key, value in record.__dict__.items():
        if not key.startswith(_PREFIX):
            continue
        name = key[len(_PREFIX) :]
        if name in ("owner", "source"):
            continue
        if name in _REDACTED and isinstance(value, str):
            value = f"<{len(value)} chars>"
        context[name] = value
    return context


def configure_logging(level: str | int = _DEFAULT_LEVEL, fmt: str = _DEFAULT_FORMAT) -> None:
    """Route the root logger to stdout as JSON lines or plain text."""
    logging.captureWarnings(True)
    root = logging.getLogger()
    root.setLevel(level)
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(OwnerContextFilter())
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s [owner=%(owner)s source=%(source)s]: %(message)s")
        )
    root.handlers = [handler]


def get_logger(name: str = "message_search") -> logging.Logger:
    if not logging.getLogger().handlers:
        configure_logging()
    return logging.getLogger(name)


def log_context(owner: Any = None, source: str | None = None, **extra: Any) -> dict[str, Any]:
    """Build an ``extra`` mapping; ``owner`` may be a principal or a raw id."""
    context: dict[str, Any] = {}
    if owner is not None:
        context[f"{_PREFIX}owner"] = getattr(owner, "id", owner)
    if source is not None:
        context[f"{_PREFIX}source"] = source
    for key, value in extra.items():
        context[f"{_PREFIX}{key}"] = value
    return context


__all__ = ["JsonFormatter", "OwnerContextFilter", "configure_logging", "get_logger", "log_context", "record_context"]
