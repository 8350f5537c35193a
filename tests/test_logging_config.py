"""Unit tests for logging_config (get_logger, configure_logging, formatters)."""

from __future__ import annotations

import io
import json
import logging
import sys

import pytest

from clobbr.logging_config import (
    LOG_FORMAT_ENV,
    LOG_LEVEL_ENV,
    ContextTextFormatter,
    JsonFormatter,
    configure_logging,
    get_logger,
    resolve_format,
    resolve_level,
)


@pytest.fixture
def restore_logging():
    yield
    configure_logging()


def _record(msg: str = "completed=%d", args=(3,), level=logging.INFO, exc_info=None, **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="clobbr.runner", level=level, pathname=__file__, lineno=1,
        msg=msg, args=args, exc_info=exc_info,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_get_logger_returns_child_logger() -> None:
    logger = get_logger("test")
    assert isinstance(logger, logging.Logger)
    assert logger.name == "clobbr.test"


def test_get_logger_root_name() -> None:
    assert get_logger("clobbr").name == "clobbr"


def test_root_logger_has_single_clobbr_handler(restore_logging) -> None:
    get_logger("one")
    configure_logging(level="DEBUG")
    configure_logging(level="WARNING")
    get_logger("two")
    handlers = [h for h in logging.getLogger("clobbr").handlers if getattr(h, "_clobbr_handler", False)]
    assert len(handlers) == 1
    assert logging.getLogger("clobbr").level == logging.WARNING


def test_resolve_level(monkeypatch) -> None:
    monkeypatch.delenv(LOG_LEVEL_ENV, raising=False)
    assert resolve_level() == logging.INFO
    monkeypatch.setenv(LOG_LEVEL_ENV, "debug")
    assert resolve_level() == logging.DEBUG
    assert resolve_level("error") == logging.ERROR
    assert resolve_level(logging.WARNING) == logging.WARNING
    assert resolve_level("chatty") == logging.INFO


def test_resolve_format(monkeypatch) -> None:
    monkeypatch.delenv(LOG_FORMAT_ENV, raising=False)
    assert resolve_format() == "text"
    monkeypatch.setenv(LOG_FORMAT_ENV, "JSON")
    assert resolve_format() == "json"
    assert resolve_format("text") == "text"
    assert resolve_format("xml") == "text"


def test_configure_logging_json_with_run_context(restore_logging) -> None:
    out = io.StringIO()
    configure_logging(level="DEBUG", fmt="json", stream=out)
    get_logger("runner").warning("Attempt failed", extra={"attempt": 4, "url": "https://x/test"})
    obj = json.loads(out.getvalue().strip())
    assert obj["message"] == "Attempt failed"
    assert obj["logger"] == "clobbr.runner"
    assert obj["attempt"] == 4
    assert obj["url"] == "https://x/test"


def test_configure_logging_level_filters(restore_logging) -> None:
    out = io.StringIO()
    configure_logging(level="WARNING", fmt="text", stream=out)
    logger = get_logger("runner")
    logger.info("hidden")
    logger.warning("shown")
    assert "hidden" not in out.getvalue()
    assert "shown" in out.getvalue()


def test_text_formatter_appends_context() -> None:
    line = ContextTextFormatter("%(levelname)s %(message)s").format(_record(attempt=2, status_code=503))
    assert line == "INFO completed=3 [attempt=2 status_code=503]"


def test_text_formatter_without_context() -> None:
    assert ContextTextFormatter("%(message)s").format(_record()) == "completed=3"


def test_json_formatter_emits_one_object() -> None:
    obj = json.loads(JsonFormatter().format(_record()))
    assert obj["level"] == "INFO"
    assert obj["message"] == "completed=3"
    assert "exception" not in obj
    assert "attempt" not in obj


def test_json_formatter_includes_exception() -> None:
    try:
        raise ValueError("bad")
    except ValueError:
        exc_info = sys.exc_info()
    obj = json.loads(JsonFormatter().format(_record("failed", (), logging.ERROR, exc_info)))
    assert "ValueError: bad" in obj["exception"]
