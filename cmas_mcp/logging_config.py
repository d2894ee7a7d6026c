"""Logging configuration for the CMAS MCP Server.

Provides text or JSON formatted logs. Structured context passed through
``extra=`` is appended to text records and folded into JSON records.

Example:
    >>> from cmas_mcp.logging_config import get_logger, setup_logging
    >>> setup_logging(log_level="DEBUG", json_format=True)
    >>> logger = get_logger(__name__)
    >>> logger.info("Connected", extra={"site_code": "PS1"})
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, MutableMapping

ROOT_LOGGER_NAME = "cmas_mcp"

# Attributes present on every LogRecord; anything else came from ``extra``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}

# Never emitted, even when passed through ``extra``.
_REDACTED_KEYS = frozenset({"password", "credential", "authorization"})


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields = {}
    for key, value in record.__dict__.items():
        if key in _RESERVED_ATTRS or key.startswith("_"):
            continue
        if key.lower() in _REDACTED_KEYS:
            value = "***"
        fields[key] = value
    return fields


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_extra_fields(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable formatter that appends ``extra`` context as key=value."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        fields = _extra_fields(record)
        if fields:
            context = " ".join(f"{k}={v}" for k, v in fields.items())
            text = f"{text} [{context}]"
        return text


def setup_logging(
    log_level: str = "INFO",
    json_format: bool = False,
    log_file: str | None = None,
) -> logging.Logger:
    """Configure the package root logger.

    Logs go to stderr so the stdio MCP transport on stdout stays clean.

    Args:
        log_level: Logging level name.
        json_format: Emit JSON lines instead of text.
        log_file: Optional file to log to in addition to stderr.

    Returns:
        The configured package root logger.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(log_level.upper())
    root.handlers.clear()

    formatter: logging.Formatter = JSONFormatter() if json_format else TextFormatter()

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    root.propagate = False
    return root


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the package namespace."""
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


class LoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that merges bound context into every record's ``extra``."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {})}
        return msg, kwargs
