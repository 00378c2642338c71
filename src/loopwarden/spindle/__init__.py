"""Spindle: loop and stall detection for agent-driven tickets."""

from loopwarden.spindle.detector import (
    DEFAULT_SPINDLE_CONFIG,
    SpindleCheckResult,
    SpindleConfig,
    SpindleReason,
    check_spindle,
    compute_spindle_risk,
    file_edit_warnings,
    record_command_failure,
    record_diff,
    record_output,
    record_plan_hash,
    reset_spindle,
)

__all__ = [
    "DEFAULT_SPINDLE_CONFIG",
    "SpindleCheckResult",
    "SpindleConfig",
    "SpindleReason",
    "check_spindle",
    "compute_spindle_risk",
    "file_edit_warnings",
    "record_command_failure",
    "record_diff",
    "record_output",
    "record_plan_hash",
    "reset_spindle",
]
