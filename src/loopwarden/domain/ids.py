"""Sortable identifiers for runs, tickets and learnings: ``<kind>-<ulid>``."""

from __future__ import annotations

import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Final

ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
BODY_LENGTH: Final[int] = 26
ENTROPY_BYTES: Final[int] = 10
MAX_TIMESTAMP_MS: Final[int] = (1 << 48) - 1

_DIGITS: Final[dict[str, int]] = {char: value for value, char in enumerate(ALPHABET)}

Entropy = Callable[[int], bytes]


class IdKind(StrEnum):
    RUN = "run"
    TICKET = "tkt"
    LEARNING = "lrn"
    PROJECT = "prj"


@dataclass(frozen=True, slots=True)
class ParsedId:
    kind: IdKind
    timestamp_ms: int
    body: str


def new_id(
    kind: IdKind,
    *,
    timestamp_ms: int | None = None,
    entropy: Entropy | None = None,
) -> str:
    """Mint an id whose body sorts by creation time.

    ``timestamp_ms`` and ``entropy`` are injectable so tests get stable ids.
    """
    stamp = time.time_ns() // 1_000_000 if timestamp_ms is None else timestamp_ms
    if not 0 <= stamp <= MAX_TIMESTAMP_MS:
        raise ValueError(f"timestamp_ms out of range: {stamp}")
    noise = (entropy or secrets.token_bytes)(ENTROPY_BYTES)
    if len(noise) != ENTROPY_BYTES:
        raise ValueError(f"entropy source must return {ENTROPY_BYTES} bytes")
    value = (stamp << 80) | int.from_bytes(noise, "big")
    body = "".join(ALPHABET[(value >> shift) & 31] for shift in range(125, -1, -5))
    return f"{kind.value}-{body}"


def parse_id(value: str, expected: IdKind | None = None) -> ParsedId:
    """Split and check an id; raises ``ValueError`` naming what is wrong."""
    prefix, sep, body = value.partition("-")
    if not sep:
        raise ValueError(f"id {value!r} has no kind prefix")
    try:
        kind = IdKind(prefix)
    except ValueError:
        raise ValueError(f"unknown id kind {prefix!r}") from None
    if expected is not None and kind is not expected:
        raise ValueError(f"expected a {expected.value!r} id, got {kind.value!r}")
    if len(body) != BODY_LENGTH:
        raise ValueError(f"id body must be {BODY_LENGTH} characters, got {len(body)}")

    decoded = 0
    for index, char in enumerate(body.upper()):
        digit = _DIGITS.get(char)
        if digit is None:
            raise ValueError(f"invalid character {char!r} at position {index}")
        decoded = (decoded << 5) | digit
    if decoded >> 128:
        raise ValueError("id body overflows 128 bits")
    return ParsedId(kind=kind, timestamp_ms=decoded >> 80, body=body.upper())


def generate_run_id(*, timestamp_ms: int | None = None, entropy: Entropy | None = None) -> str:
    return new_id(IdKind.RUN, timestamp_ms=timestamp_ms, entropy=entropy)


def generate_ticket_id(*, timestamp_ms: int | None = None, entropy: Entropy | None = None) -> str:
    return new_id(IdKind.TICKET, timestamp_ms=timestamp_ms, entropy=entropy)


def generate_project_id(*, timestamp_ms: int | None = None) -> str:
    return new_id(IdKind.PROJECT, timestamp_ms=timestamp_ms)


def generate_learning_id(*, timestamp_ms: int | None = None) -> str:
    return new_id(IdKind.LEARNING, timestamp_ms=timestamp_ms)


def validate_run_id(value: str) -> None:
    parse_id(value, IdKind.RUN)


def validate_ticket_id(value: str) -> None:
    parse_id(value, IdKind.TICKET)


def validate_project_id(value: str) -> None:
    parse_id(value, IdKind.PROJECT)


__all__ = [
    "ALPHABET",
    "BODY_LENGTH",
    "Entropy",
    "IdKind",
    "ParsedId",
    "generate_learning_id",
    "generate_project_id",
    "generate_run_id",
    "generate_ticket_id",
    "new_id",
    "parse_id",
    "validate_project_id",
    "validate_run_id",
    "validate_ticket_id",
]
