"""
loopwarden — conflict-free wave partitioning

File: src/loopwarden/control_plane/waves.py

Purpose
- Split work items into ordered waves whose members touch disjoint paths,
  and size the worker pool from the mix of light and heavy items.

Functional requirements
- Two items share a wave only if none of their paths overlap; glob tails
  are stripped before comparison and containment is judged per segment.
- Partitioning is greedy first-fit in input order and deterministic.
- Two items of the same category touching the same directory also go to
  different waves.
"""

from __future__ import annotations

import posixpath
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Final

from loopwarden.constants import MAX_PARALLEL
from loopwarden.domain.models import HEAVY_COMPLEXITIES, LIGHT_COMPLEXITIES, Complexity, Ticket
from loopwarden.utils.numeric import clamp, round_half_up

MIN_ADAPTIVE_PARALLEL: Final[int] = 2
MILESTONE_NEAR_THRESHOLD: Final[int] = 3
MILESTONE_NEAR_CAP: Final[int] = 2

_GLOB_TAIL: Final[re.Pattern[str]] = re.compile(r"(/\*\*)?(/\*)?$")


@dataclass(frozen=True, slots=True)
class WaveItem:
    """Anything schedulable: an id, the paths it touches and an optional category."""

    id: str
    files: tuple[str, ...] = ()
    category: str | None = None
    complexity: str = Complexity.MODERATE.value
    sector_path: str | None = None
    payload: Any = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("WaveItem.id must be non-empty")

    @classmethod
    def from_ticket(cls, ticket: Ticket, sector_path: str | None = None) -> WaveItem:
        return cls(
            id=ticket.id,
            files=tuple(ticket.allowed_paths),
            category=ticket.category,
            complexity=ticket.complexity.value,
            sector_path=sector_path,
            payload=ticket,
        )


def normalize_wave_path(path: str) -> str:
    normalized = path.strip().replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    normalized = _GLOB_TAIL.sub("", normalized.rstrip("/"))
    normalized = normalized.rstrip("/")
    if normalized in ("", ".", "*", "**"):
        return ""
    return posixpath.normpath(normalized)


def paths_overlap(left: str, right: str) -> bool:
    """True when one path equals or contains the other; an empty path covers everything."""
    a = normalize_wave_path(left)
    b = normalize_wave_path(right)
    if not a or not b:
        return True
    return a == b or a.startswith(b + "/") or b.startswith(a + "/")


def _parent_dirs(files: Sequence[str]) -> set[str]:
    return {posixpath.dirname(normalize_wave_path(path)) for path in files}


def items_conflict(left: WaveItem, right: WaveItem) -> bool:
    for a in left.files:
        for b in right.files:
            if paths_overlap(a, b):
                return True
    if left.category and left.category == right.category:
        shared = _parent_dirs(left.files) & _parent_dirs(right.files)
        shared.discard("")
        if shared:
            return True
    return False


def partition_into_waves(items: Sequence[WaveItem]) -> list[list[WaveItem]]:
    """Greedy first-fit: each item joins the first wave it does not conflict with."""
    waves: list[list[WaveItem]] = []
    for item in items:
        for wave in waves:
            if not any(items_conflict(item, member) for member in wave):
                wave.append(item)
                break
        else:
            waves.append([item])
    return waves


def get_adaptive_parallel_count(items: Sequence[WaveItem]) -> int:
    """2 to 5 slots: all-light runs wide, all-heavy runs narrow, mixed runs in between."""
    light = sum(1 for item in items if item.complexity in LIGHT_COMPLEXITIES)
    heavy = sum(1 for item in items if item.complexity in HEAVY_COMPLEXITIES)
    if heavy == 0:
        return MAX_PARALLEL
    if light == 0:
        return MIN_ADAPTIVE_PARALLEL
    ratio = light / (light + heavy)
    return clamp(round_half_up(2 + ratio * 3), MIN_ADAPTIVE_PARALLEL, MAX_PARALLEL)


def cap_for_milestone(count: int, remaining: int | None) -> int:
    """Throttle to two slots when a milestone has three or fewer items left."""
    if remaining is not None and remaining <= MILESTONE_NEAR_THRESHOLD:
        return min(count, MILESTONE_NEAR_CAP)
    return count


__all__ = [
    "MILESTONE_NEAR_CAP",
    "MILESTONE_NEAR_THRESHOLD",
    "MIN_ADAPTIVE_PARALLEL",
    "WaveItem",
    "cap_for_milestone",
    "get_adaptive_parallel_count",
    "items_conflict",
    "normalize_wave_path",
    "partition_into_waves",
    "paths_overlap",
]
