"""Logging utilities for Kennisbank.

Context for a log line is passed through ``extra`` using ``ctx_``-prefixed
keys (``ctx_source_id``, ``ctx_url``...). The JSON formatter lifts them into
the payload; :func:`log_context` builds such a mapping from keyword arguments.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import orjson

_DEFAULT_LEVEL = os.environ.get("KNB_LOG_LEVEL", "INFO")
_CTX_PREFIX = "ctx_"
_NOISY_LOGGERS = ("httpx", "openai", "urllib3")


class JsonFormatter(logging.Formatter):
    """Render records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - thin wrapper
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        context = {
            key[len(_CTX_PREFIX) :]: value
            for key, value in record.__dict__.items()
            if key.startswith(_CTX_PREFIX)
        }
        if context:
            payload["context"] = context
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return orjson.dumps(payload, default=str).decode("utf-8")


class ContextFormatter(logging.Formatter):
    """Plain-text formatter that appends ``key=value`` context pairs."""

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - thin wrapper
        line = super().format(record)
        pairs = [
            f"{key[len(_CTX_PREFIX):]}={value}"
            for key, value in record.__dict__.items()
            if key.startswith(_CTX_PREFIX)
        ]
        return f"{line} [{' '.join(pairs)}]" if pairs else line


def log_context(**fields: Any) -> dict[str, Any]:
    """Build an ``extra`` mapping, skipping fields that are ``None``."""
    return {f"{_CTX_PREFIX}{key}": value for key, value in fields.items() if value is not None}


def configure_logging(level: str | int = _DEFAULT_LEVEL, use_json: bool = True) -> None:
    """Configure root logger with optional JSON formatting."""
    logging.captureWarnings(True)
    root = logging.getLogger()
    root.setLevel(level)
    handler = logging.StreamHandler(sys.stdout)
    if use_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(ContextFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.handlers = [handler]
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = "kennisbank") -> logging.Logger:
    """Return configured logger, configuring root on first call."""
    if not logging.getLogger().handlers:
        configure_logging()
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "log_context"]
