"""
loopwarden — spindle loop/stall detector

File: src/loopwarden/spindle/detector.py

Purpose
- Decide from a ticket's rolling ``SpindleState`` whether the agent is making
  progress, looping, or stuck, and grade the risk when it is still allowed
  to continue.

Functional requirements
- Rules run in order: stalling, oscillation, repetition, QA ping-pong,
  command failure. The first rule that fires decides the verdict.
- Command failure blocks (recoverable by a different approach); every other
  rule aborts.
- Stall counters only reset on a real content change or a new ticket.
"""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Final

from loopwarden.domain.models import SpindleRisk, SpindleState
from loopwarden.utils.hashing import short_hash

MAX_OUTPUT_HASHES: Final[int] = 10
MAX_COMMAND_SIGNATURES: Final[int] = 20
MAX_PLAN_HASHES: Final[int] = 10
MAX_FILE_EDIT_KEYS: Final[int] = 50
COMMAND_ERROR_CHARS: Final[int] = 200
STALL_RISK_FRACTION: Final[float] = 0.4
_DIFF_FILE_HEADER: Final[str] = "+++ b/"


class SpindleReason(StrEnum):
    STALLING = "stalling"
    OSCILLATION = "oscillation"
    REPETITION = "repetition"
    QA_PING_PONG = "qa_ping_pong"
    COMMAND_FAILURE = "command_failure"


@dataclass(frozen=True, slots=True)
class SpindleConfig:
    similarity_threshold: float = 0.8
    max_similar_outputs: int = 3
    max_stall_iterations: int = 5
    max_command_failures: int = 3
    max_qa_ping_pong: int = 3
    max_file_edits: int = 3

    def __post_init__(self) -> None:
        for name in (
            "max_similar_outputs",
            "max_stall_iterations",
            "max_command_failures",
            "max_qa_ping_pong",
            "max_file_edits",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"SpindleConfig.{name} must be > 0")


DEFAULT_SPINDLE_CONFIG: Final[SpindleConfig] = SpindleConfig()


@dataclass(frozen=True, slots=True)
class SpindleCheckResult:
    should_abort: bool = False
    should_block: bool = False
    reason: SpindleReason | None = None
    confidence: float = 0.0
    diagnostics: dict[str, Any] = field(default_factory=dict)
    risk: SpindleRisk = SpindleRisk.NONE

    @property
    def tripped(self) -> bool:
        return self.should_abort or self.should_block

    def to_dict(self) -> dict[str, Any]:
        return {
            "should_abort": self.should_abort,
            "should_block": self.should_block,
            "reason": self.reason.value if self.reason is not None else None,
            "confidence": self.confidence,
            "diagnostics": dict(self.diagnostics),
            "risk": self.risk.value,
        }


def check_spindle(
    spindle: SpindleState, config: SpindleConfig = DEFAULT_SPINDLE_CONFIG
) -> SpindleCheckResult:
    """Evaluate every rule against ``spindle`` without mutating it."""
    if spindle.iterations_since_change >= config.max_stall_iterations:
        return SpindleCheckResult(
            should_abort=True,
            reason=SpindleReason.STALLING,
            confidence=0.9,
            diagnostics={
                "iterations_without_change": spindle.iterations_since_change,
                "threshold": config.max_stall_iterations,
            },
            risk=SpindleRisk.HIGH,
        )

    oscillation = detect_oscillation(spindle.diff_hashes)
    if oscillation is not None:
        return SpindleCheckResult(
            should_abort=True,
            reason=SpindleReason.OSCILLATION,
            confidence=0.95,
            diagnostics=oscillation,
            risk=SpindleRisk.HIGH,
        )

    repeated = detect_repetition(spindle.output_hashes, config.max_similar_outputs)
    if repeated is not None:
        return SpindleCheckResult(
            should_abort=True,
            reason=SpindleReason.REPETITION,
            confidence=0.85,
            diagnostics={"repeated_hash": repeated, "count": config.max_similar_outputs},
            risk=SpindleRisk.HIGH,
        )

    ping_pong = detect_qa_ping_pong(spindle.failing_command_signatures, config.max_qa_ping_pong)
    if ping_pong is not None:
        return SpindleCheckResult(
            should_abort=True,
            reason=SpindleReason.QA_PING_PONG,
            confidence=0.9,
            diagnostics={"pattern": ping_pong},
            risk=SpindleRisk.HIGH,
        )

    failing = detect_command_failure(
        spindle.failing_command_signatures, config.max_command_failures
    )
    if failing is not None:
        return SpindleCheckResult(
            should_block=True,
            reason=SpindleReason.COMMAND_FAILURE,
            confidence=0.8,
            diagnostics={"command": failing, "threshold": config.max_command_failures},
            risk=SpindleRisk.HIGH,
        )

    return SpindleCheckResult(risk=compute_spindle_risk(spindle, config))


def detect_oscillation(diff_hashes: list[str]) -> dict[str, Any] | None:
    """Detect an A,B,A tail; report how far back the alternation reaches."""
    if len(diff_hashes) < 3:
        return None
    first, second, third = diff_hashes[-3:]
    if first != third or first == second:
        return None

    run = 3
    for index in range(len(diff_hashes) - 4, -1, -1):
        expected = second if (len(diff_hashes) - 1 - index) % 2 == 1 else first
        if diff_hashes[index] != expected:
            break
        run += 1
    return {
        "pattern": f"Hash {first} appeared at positions -3 and -1 (flip-flop)",
        "hashes": [first, second],
        "alternating_length": run,
    }


def detect_repetition(output_hashes: list[str], threshold: int) -> str | None:
    if len(output_hashes) < threshold:
        return None
    recent = output_hashes[-threshold:]
    if all(item == recent[0] for item in recent):
        return recent[0]
    return None


def detect_qa_ping_pong(signatures: list[str], cycles: int) -> str | None:
    """Detect the last ``2 * cycles`` signatures alternating between two values."""
    window = cycles * 2
    if len(signatures) < window:
        return None
    recent = signatures[-window:]
    first, second = recent[0], recent[1]
    if first == second:
        return None
    for index, signature in enumerate(recent):
        if signature != (first if index % 2 == 0 else second):
            return None
    return f"Alternating failures: {first} <-> {second} ({cycles} cycles)"


def detect_command_failure(signatures: list[str], threshold: int) -> str | None:
    if len(signatures) < threshold:
        return None
    for signature, count in Counter(signatures).items():
        if count >= threshold:
            return signature
    return None


def compute_spindle_risk(
    spindle: SpindleState, config: SpindleConfig = DEFAULT_SPINDLE_CONFIG
) -> SpindleRisk:
    """Grade how close the counters are to their thresholds."""
    score = 0
    if spindle.iterations_since_change >= config.max_stall_iterations * STALL_RISK_FRACTION:
        score += 1

    outputs = spindle.output_hashes
    if len(outputs) >= 2 and outputs[-1] == outputs[-2]:
        score += 1

    for count in spindle.file_edit_counts.values():
        if count >= config.max_file_edits:
            score += 2

    if len(spindle.failing_command_signatures) >= 2:
        score += 1

    if score >= 4:
        return SpindleRisk.HIGH
    if score >= 2:
        return SpindleRisk.MEDIUM
    if score >= 1:
        return SpindleRisk.LOW
    return SpindleRisk.NONE


def record_output(spindle: SpindleState, output: str) -> None:
    spindle.output_hashes.append(short_hash(output))
    del spindle.output_hashes[:-MAX_OUTPUT_HASHES]
    spindle.total_output_chars += len(output)


def record_diff(spindle: SpindleState, diff: str | None) -> None:
    """Count a non-productive iteration for an empty diff, otherwise reset and track."""
    if diff is None or not diff.strip():
        spindle.iterations_since_change += 1
        return

    spindle.iterations_since_change = 0
    spindle.diff_hashes.append(short_hash(diff))
    spindle.total_change_chars += len(diff)

    for path in extract_files_from_diff(diff):
        spindle.file_edit_counts[path] = spindle.file_edit_counts.get(path, 0) + 1

    if len(spindle.file_edit_counts) > MAX_FILE_EDIT_KEYS:
        ranked = sorted(spindle.file_edit_counts.items(), key=lambda item: item[1], reverse=True)
        spindle.file_edit_counts = dict(ranked[:MAX_FILE_EDIT_KEYS])


def record_command_failure(spindle: SpindleState, command: str, error: str) -> None:
    spindle.failing_command_signatures.append(
        short_hash(f"{command}::{error[:COMMAND_ERROR_CHARS]}")
    )
    del spindle.failing_command_signatures[:-MAX_COMMAND_SIGNATURES]


def record_plan_hash(spindle: SpindleState, plan: dict[str, Any]) -> None:
    spindle.plan_hashes.append(short_hash(json.dumps(plan, sort_keys=True)))
    del spindle.plan_hashes[:-MAX_PLAN_HASHES]


def extract_files_from_diff(diff: str) -> list[str]:
    return [
        line[len(_DIFF_FILE_HEADER) :]
        for line in diff.split("\n")
        if line.startswith(_DIFF_FILE_HEADER)
    ]


def file_edit_warnings(spindle: SpindleState, threshold: int = 3) -> list[str]:
    return [
        f"{path} edited {count} times"
        for path, count in spindle.file_edit_counts.items()
        if count >= threshold
    ]


def reset_spindle() -> SpindleState:
    return SpindleState()


__all__ = [
    "DEFAULT_SPINDLE_CONFIG",
    "SpindleCheckResult",
    "SpindleConfig",
    "SpindleReason",
    "check_spindle",
    "compute_spindle_risk",
    "detect_command_failure",
    "detect_oscillation",
    "detect_qa_ping_pong",
    "detect_repetition",
    "extract_files_from_diff",
    "file_edit_warnings",
    "record_command_failure",
    "record_diff",
    "record_output",
    "record_plan_hash",
    "reset_spindle",
]
