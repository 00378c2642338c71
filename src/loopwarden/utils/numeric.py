"""Numeric helpers shared by schedulers and scorers."""

from __future__ import annotations

import math


def round_half_up(value: float) -> int:
    """Round to the nearest integer with ties going toward positive infinity."""

    return math.floor(value + 0.5)


def clamp(value: int, lower: int, upper: int) -> int:
    return max(lower, min(upper, value))


__all__ = ["clamp", "round_half_up"]
