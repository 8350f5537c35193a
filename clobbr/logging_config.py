"""Logging for clobbr runs.

Every module logs through get_logger(), under the "clobbr" logger. Output
goes to stderr so it never mixes with the live view or report paths on
stdout. Level and format come from configure_logging() (the CLI's
--log-level / --log-format) and fall back to CLOBBR_LOG_LEVEL /
CLOBBR_LOG_FORMAT.

Run and attempt details travel as `extra` fields (see RUN_CONTEXT_FIELDS):

    logger.warning("Attempt failed", extra={"attempt": 3, "url": url})

The JSON format emits them as keys; the text format appends key=value pairs.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any, TextIO

import orjson

LOG_LEVEL_ENV = "CLOBBR_LOG_LEVEL"
LOG_FORMAT_ENV = "CLOBBR_LOG_FORMAT"
ROOT_LOGGER_NAME = "clobbr"
DEFAULT_LEVEL = "INFO"
LOG_FORMATS = ("text", "json")

# `extra` keys rendered by both formatters, in this order
RUN_CONTEXT_FIELDS = ("url", "verb", "mode", "attempt", "status_code", "duration_ms", "iterations")

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
TEXT_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Marks the handler installed by configure_logging so reconfiguring replaces it
_HANDLER_ATTR = "_clobbr_handler"


def get_logger(name: str) -> logging.Logger:
    """Logger "clobbr.<name>" (or "clobbr" itself). Sets up output from the environment on first use."""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not _installed_handler(root):
        configure_logging()
    if name == ROOT_LOGGER_NAME:
        return root
    return root.getChild(name)


def _installed_handler(root: logging.Logger) -> logging.Handler | None:
    for handler in root.handlers:
        if getattr(handler, _HANDLER_ATTR, False):
            return handler
    return None


def resolve_level(level: str | int | None = None) -> int:
    """Numeric level from an explicit value, CLOBBR_LOG_LEVEL, or INFO. Unknown names fall back to INFO."""
    if isinstance(level, int):
        return level
    name = (level or os.environ.get(LOG_LEVEL_ENV) or DEFAULT_LEVEL).strip().upper()
    value = logging.getLevelName(name)
    return value if isinstance(value, int) else logging.INFO


def resolve_format(fmt: str | None = None) -> str:
    name = (fmt or os.environ.get(LOG_FORMAT_ENV) or "text").strip().lower()
    return name if name in LOG_FORMATS else "text"


def configure_logging(
    level: str | int | None = None,
    fmt: str | None = None,
    stream: TextIO | None = None,
) -> logging.Logger:
    """(Re)configure the clobbr logger. Explicit arguments win over the environment.

    Calling it again replaces the previously installed handler, so the CLI
    can override what the first get_logger() picked up from the environment.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    previous = _installed_handler(root)
    if previous is not None:
        root.removeHandler(previous)

    handler = logging.StreamHandler(stream) if stream is not None else _StderrHandler()
    setattr(handler, _HANDLER_ATTR, True)
    if resolve_format(fmt) == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(ContextTextFormatter(TEXT_FORMAT, datefmt=TEXT_DATEFMT))
    root.addHandler(handler)
    root.setLevel(resolve_level(level))
    return root


class _StderrHandler(logging.StreamHandler):
    """Writes to whatever sys.stderr is when a record is emitted."""

    def __init__(self) -> None:
        super().__init__(sys.stderr)

    @property
    def stream(self) -> TextIO:
        return sys.stderr

    @stream.setter
    def stream(self, value: TextIO) -> None:
        pass


def context_fields(record: logging.LogRecord) -> dict[str, Any]:
    """The RUN_CONTEXT_FIELDS present on a record."""
    return {key: getattr(record, key) for key in RUN_CONTEXT_FIELDS if hasattr(record, key)}


class ContextTextFormatter(logging.Formatter):
    """Plain text with run context appended as key=value."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = context_fields(record)
        if not fields:
            return line
        suffix = " ".join(f"{k}={v}" for k, v in fields.items())
        head, sep, tail = line.partition("\n")
        return f"{head} [{suffix}]{sep}{tail}"


class JsonFormatter(logging.Formatter):
    """One JSON object per line; run context fields become top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        obj: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt or "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        obj.update(context_fields(record))
        if record.exc_info:
            obj["exception"] = self.formatException(record.exc_info)
        return orjson.dumps(obj, default=str).decode("utf-8")
