"""QA failure classification: error class, retry ceiling and a short signature."""

from __future__ import annotations

import re
from typing import Final

from loopwarden.domain.models import QaErrorClass

SIGNATURE_MAX_CHARS: Final[int] = 120

_CLASS_PATTERNS: Final[tuple[tuple[QaErrorClass, tuple[re.Pattern[str], ...]], ...]] = (
    (
        QaErrorClass.ENVIRONMENT,
        (
            re.compile(r"permission denied|eacces|eperm", re.IGNORECASE),
            re.compile(r"command not found|enoent.*spawn", re.IGNORECASE),
            re.compile(r"missing.*(env|variable|credential|token|key|secret)", re.IGNORECASE),
            re.compile(r"econnrefused|enotfound|cannot connect", re.IGNORECASE),
        ),
    ),
    (
        QaErrorClass.TIMEOUT,
        (
            re.compile(r"timed?\s*out|timeout|etimedout", re.IGNORECASE),
            re.compile(r"killed.*signal|sigterm|sigkill", re.IGNORECASE),
        ),
    ),
    (
        QaErrorClass.CODE,
        (
            re.compile(r"syntaxerror|typeerror|referenceerror|rangeerror", re.IGNORECASE),
            re.compile(r"assertion|expect|fail|error\[", re.IGNORECASE),
            re.compile(r"tsc.*error|type.*not assignable", re.IGNORECASE),
        ),
    ),
)

_MAX_RETRIES: Final[dict[QaErrorClass, int]] = {
    QaErrorClass.ENVIRONMENT: 1,
    QaErrorClass.TIMEOUT: 2,
    QaErrorClass.CODE: 3,
    QaErrorClass.UNKNOWN: 3,
}

_SIGNATURE_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"(?:TypeError|ReferenceError|SyntaxError|RangeError|Error):\s*[^\n]{1,100}"),
    re.compile(r"AssertionError:\s*[^\n]{1,100}", re.IGNORECASE),
    re.compile(r"FAIL(?:ED)?[:\s]+[^\n]{1,80}", re.IGNORECASE),
    re.compile(r"error\[E\d+\]:\s*[^\n]{1,80}", re.IGNORECASE),
    re.compile(r"panic:\s*[^\n]{1,80}"),
    re.compile(r"Exception[:\s]+[^\n]{1,80}", re.IGNORECASE),
)


def classify_qa_error(text: str) -> QaErrorClass:
    """Classify failure output; environment beats timeout beats code."""
    for error_class, patterns in _CLASS_PATTERNS:
        if any(pattern.search(text) for pattern in patterns):
            return error_class
    return QaErrorClass.UNKNOWN


def max_retries_for(error_class: QaErrorClass) -> int:
    return _MAX_RETRIES[error_class]


def extract_error_signature(text: str) -> str | None:
    for pattern in _SIGNATURE_PATTERNS:
        match = pattern.search(text)
        if match is not None:
            return match.group(0)[:SIGNATURE_MAX_CHARS]
    return None


__all__ = [
    "SIGNATURE_MAX_CHARS",
    "classify_qa_error",
    "extract_error_signature",
    "max_retries_for",
]
