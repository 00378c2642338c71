"""Shared utilities: filesystem, hashing and async primitives."""

from loopwarden.utils.concurrency import CancellationToken, CountingSemaphore, run_with_timeout
from loopwarden.utils.fs import append_line, atomic_write, ensure_dir
from loopwarden.utils.hashing import sha256_json, sha256_text, short_hash
from loopwarden.utils.numeric import clamp, round_half_up

__all__ = [
    "CancellationToken",
    "CountingSemaphore",
    "append_line",
    "atomic_write",
    "clamp",
    "ensure_dir",
    "round_half_up",
    "run_with_timeout",
    "sha256_json",
    "sha256_text",
    "short_hash",
]
