"""Unit tests for QA failure classification."""

from __future__ import annotations

import pytest

from loopwarden.control_plane.qa import (
    SIGNATURE_MAX_CHARS,
    classify_qa_error,
    extract_error_signature,
    max_retries_for,
)
from loopwarden.domain.models import QaErrorClass


@pytest.mark.parametrize(
    ("output", "expected"),
    [
        ("bash: ruff: command not found", QaErrorClass.ENVIRONMENT),
        ("Permission denied while opening cache", QaErrorClass.ENVIRONMENT),
        ("ECONNREFUSED 127.0.0.1:5432", QaErrorClass.ENVIRONMENT),
        ("test run timed out after 60s", QaErrorClass.TIMEOUT),
        ("process killed by signal 9", QaErrorClass.TIMEOUT),
        ("AssertionError: expected 2 got 3", QaErrorClass.CODE),
        ("TypeError: NoneType is not iterable", QaErrorClass.CODE),
        ("something odd happened", QaErrorClass.UNKNOWN),
        # environment wins when several classes match
        ("timeout: permission denied", QaErrorClass.ENVIRONMENT),
    ],
)
def test_classify_qa_error(output: str, expected: QaErrorClass) -> None:
    assert classify_qa_error(output) is expected


def test_retry_ceilings_per_class() -> None:
    assert max_retries_for(QaErrorClass.ENVIRONMENT) == 1
    assert max_retries_for(QaErrorClass.TIMEOUT) == 2
    assert max_retries_for(QaErrorClass.CODE) == 3
    assert max_retries_for(QaErrorClass.UNKNOWN) == 3


def test_extract_error_signature() -> None:
    output = "collected 3 items\nE   TypeError: bad operand\n"
    assert extract_error_signature(output) == "TypeError: bad operand"
    assert extract_error_signature("FAILED tests/test_a.py::test_x") == (
        "FAILED tests/test_a.py::test_x"
    )
    assert extract_error_signature("all good") is None


def test_signature_is_capped() -> None:
    signature = extract_error_signature("Exception: " + "x" * 500)
    assert signature is not None
    assert len(signature) <= SIGNATURE_MAX_CHARS
