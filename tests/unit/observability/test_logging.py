"""Unit tests for structured logging setup and secret redaction."""

from __future__ import annotations

import io
import json
import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog

from loopwarden.config.settings import LoggingSettings
from loopwarden.observability.logging import (
    REDACTED_VALUE,
    ROOT_LOGGER_NAME,
    configure_logging,
    is_sensitive_key,
    redact_processor,
    redact_text,
    redact_value,
)


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    yield
    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.propagate = True
    structlog.reset_defaults()


def _lines(stream: io.StringIO) -> list[dict[str, object]]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


@pytest.mark.parametrize(
    ("key", "expected"),
    [
        ("api_key", True),
        ("X-Api-Key", True),
        ("github_token", True),
        ("db_password", True),
        ("ticket_id", False),
        ("phase", False),
    ],
)
def test_is_sensitive_key(key: str, expected: bool) -> None:
    assert is_sensitive_key(key) is expected


def test_redact_text_masks_inline_credentials() -> None:
    assert redact_text("token=abc123 next") == f"token={REDACTED_VALUE} next"
    assert redact_text("sent Bearer abc.def-ghi") == f"sent Bearer {REDACTED_VALUE}"
    assert redact_text("nothing to hide") == "nothing to hide"


def test_redact_value_walks_nested_structures() -> None:
    value = {
        "api_key": "x",
        "nested": {"password": "p", "ok": "fine"},
        "items": ["token: zzz", 3],
    }
    assert redact_value(value) == {
        "api_key": REDACTED_VALUE,
        "nested": {"password": REDACTED_VALUE, "ok": "fine"},
        "items": [f"token:{REDACTED_VALUE}", 3],
    }


def test_redact_processor_keeps_event_name() -> None:
    event = redact_processor(None, "info", {"event": "login", "secret": "s", "user": "u"})
    assert event == {"event": "login", "secret": REDACTED_VALUE, "user": "u"}


def test_configure_logging_emits_json_lines() -> None:
    stream = io.StringIO()
    configure_logging(LoggingSettings(level="DEBUG"), stream=stream)

    structlog.get_logger("loopwarden.tests").info(
        "ticket_started", ticket_id="tkt-1", api_token="abc"
    )

    [record] = _lines(stream)
    assert record["event"] == "ticket_started"
    assert record["level"] == "info"
    assert record["logger"] == "loopwarden.tests"
    assert record["ticket_id"] == "tkt-1"
    assert record["api_token"] == REDACTED_VALUE
    assert "timestamp" in record


def test_level_filtering_and_disabled_redaction() -> None:
    stream = io.StringIO()
    configure_logging(LoggingSettings(level="WARNING", redact_secrets=False), stream=stream)
    logger = structlog.get_logger("loopwarden.tests")

    logger.info("hidden")
    logger.warning("shown", token="visible")

    [record] = _lines(stream)
    assert record["event"] == "shown"
    assert record["token"] == "visible"


def test_relative_log_file_lands_under_state_root(tmp_path: Path) -> None:
    stream = io.StringIO()
    root = configure_logging(
        LoggingSettings(log_file="logs/run.log"), state_root=tmp_path, stream=stream
    )
    structlog.get_logger("loopwarden.tests").info("written")
    for handler in root.handlers:
        handler.flush()

    log_path = tmp_path / "logs" / "run.log"
    assert json.loads(log_path.read_text(encoding="utf-8").strip())["event"] == "written"


def test_reconfigure_replaces_handlers_and_rejects_unknown_levels() -> None:
    configure_logging(stream=io.StringIO())
    root = configure_logging(stream=io.StringIO())

    assert len(root.handlers) == 1
    assert root.propagate is False
    with pytest.raises(ValueError, match="unknown log level"):
        configure_logging(LoggingSettings(level="LOUD"))
