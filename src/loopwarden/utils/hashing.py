"""Deterministic SHA-256 helpers used for content fingerprints."""

from __future__ import annotations

import hashlib
import json

SHORT_HASH_LENGTH = 12

__all__ = [
    "SHORT_HASH_LENGTH",
    "sha256_bytes",
    "sha256_json",
    "sha256_text",
    "short_hash",
]


def sha256_bytes(data: bytes) -> str:
    """Return SHA-256 hex digest for raw bytes."""

    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str, *, encoding: str = "utf-8") -> str:
    """Return SHA-256 hex digest for text encoded with ``encoding``."""

    return sha256_bytes(text.encode(encoding))


def short_hash(text: str) -> str:
    """Return the first 12 hex characters of the SHA-256 digest of ``text``."""

    return sha256_text(text)[:SHORT_HASH_LENGTH]


def sha256_json(value: object) -> str:
    """Hash a JSON-serializable value with sorted keys so equal mappings hash equal."""

    return sha256_text(json.dumps(value, sort_keys=True, separators=(",", ":")))
