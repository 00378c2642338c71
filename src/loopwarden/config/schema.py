"""
loopwarden — configuration defaults and validation.

File: src/loopwarden/config/schema.py

Purpose
- Define the authoritative configuration defaults and the rules a merged
  payload must satisfy before settings are built from it.

Functional requirements
- Validation collects every issue (dotted key path plus message) before
  failing, and never mutates its input.
- Unknown sections and keys are rejected so typos surface early.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Final

from loopwarden import constants

LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

DEFAULT_CONFIG: Final[dict[str, dict[str, Any]]] = {
    "run": {
        "step_budget": constants.DEFAULT_STEP_BUDGET,
        "ticket_step_budget": constants.DEFAULT_TICKET_STEP_BUDGET,
        "max_lines_per_ticket": constants.DEFAULT_MAX_LINES_PER_TICKET,
        "max_tool_calls_per_ticket": constants.DEFAULT_MAX_TOOL_CALLS_PER_TICKET,
        "max_prs": constants.DEFAULT_MAX_PRS,
        "min_confidence": constants.DEFAULT_MIN_CONFIDENCE,
        "min_impact_score": constants.DEFAULT_MIN_IMPACT_SCORE,
        "max_proposals_per_scout": constants.DEFAULT_MAX_PROPOSALS_PER_SCOUT,
        "scope": constants.DEFAULT_SCOPE,
        "categories": list(constants.DEFAULT_CATEGORIES),
        "parallel": constants.DEFAULT_PARALLEL,
        "max_cycles": constants.DEFAULT_MAX_CYCLES,
        "create_prs": False,
        "draft_prs": True,
        "cross_verify": False,
        "skip_review": False,
        # 0 disables the wall-clock budget.
        "time_budget_ms": 0,
    },
    "spindle": {
        "similarity_threshold": 0.8,
        "max_similar_outputs": 3,
        "max_stall_iterations": 5,
        "max_command_failures": 3,
        "max_qa_ping_pong": 3,
        "max_file_edits": 3,
    },
    "waves": {
        "item_timeout_seconds": 0.0,
        "pause_seconds": 0.0,
    },
    "logging": {
        "level": "INFO",
        "json": True,
        "log_file": "",
        "redact_secrets": True,
    },
    "paths": {
        "repo_root": ".",
        "state_dir": constants.STATE_DIR_NAME,
    },
}

# Keys whose values are resolved relative to the config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (("paths", "repo_root"),)

_POSITIVE_INTS: Final[tuple[tuple[str, str], ...]] = (
    ("run", "step_budget"),
    ("run", "ticket_step_budget"),
    ("run", "max_lines_per_ticket"),
    ("run", "max_tool_calls_per_ticket"),
    ("run", "max_prs"),
    ("run", "max_proposals_per_scout"),
    ("run", "max_cycles"),
    ("spindle", "max_similar_outputs"),
    ("spindle", "max_stall_iterations"),
    ("spindle", "max_command_failures"),
    ("spindle", "max_qa_ping_pong"),
    ("spindle", "max_file_edits"),
)


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


class ConfigValidationError(ValueError):
    """Raised when a merged config payload violates the schema."""

    def __init__(self, issues: tuple[ConfigValidationIssue, ...]) -> None:
        self.issues = issues
        details = "; ".join(f"{issue.path}: {issue.message}" for issue in issues)
        super().__init__(f"invalid configuration: {details}")


def default_config() -> dict[str, dict[str, Any]]:
    return copy.deepcopy(DEFAULT_CONFIG)


def merge_config(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``; scalars and lists replace."""
    merged: dict[str, Any] = copy.deepcopy(dict(base))
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, dict):
            merged[key] = merge_config(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def validate_config(config: Mapping[str, Any]) -> tuple[ConfigValidationIssue, ...]:
    issues: list[ConfigValidationIssue] = []

    def issue(path: str, message: str) -> None:
        issues.append(ConfigValidationIssue(path=path, message=message))

    for section, value in config.items():
        if section not in DEFAULT_CONFIG:
            issue(section, "unknown section")
            continue
        if not isinstance(value, Mapping):
            issue(section, "must be a table")
            continue
        defaults = DEFAULT_CONFIG[section]
        for key, item in value.items():
            path = f"{section}.{key}"
            if key not in defaults:
                issue(path, "unknown key")
                continue
            expected = defaults[key]
            if not _same_kind(item, expected):
                issue(path, f"expected {_kind_name(expected)}, got {type(item).__name__}")

    if issues:
        return tuple(issues)

    run = config.get("run", {})
    for section, key in _POSITIVE_INTS:
        value = config.get(section, {}).get(key)
        if value is not None and value <= 0:
            issue(f"{section}.{key}", "must be > 0")
    parallel = run.get("parallel")
    if parallel is not None and not 1 <= parallel <= constants.MAX_PARALLEL:
        issue("run.parallel", f"must be between 1 and {constants.MAX_PARALLEL}")
    for key in ("min_confidence",):
        value = run.get(key)
        if value is not None and not 0 <= value <= 100:
            issue(f"run.{key}", "must be between 0 and 100")
    if run.get("time_budget_ms", 0) < 0:
        issue("run.time_budget_ms", "must be >= 0")
    categories = run.get("categories")
    if categories is not None and not all(isinstance(item, str) and item for item in categories):
        issue("run.categories", "must be a list of non-empty strings")

    threshold = config.get("spindle", {}).get("similarity_threshold")
    if threshold is not None and not 0.0 < threshold <= 1.0:
        issue("spindle.similarity_threshold", "must be in (0, 1]")
    for key in ("item_timeout_seconds", "pause_seconds"):
        value = config.get("waves", {}).get(key)
        if value is not None and value < 0:
            issue(f"waves.{key}", "must be >= 0")
    level = config.get("logging", {}).get("level")
    if level is not None and level.upper() not in LOG_LEVELS:
        issue("logging.level", f"must be one of {', '.join(LOG_LEVELS)}")
    return tuple(issues)


def assert_valid_config(config: Mapping[str, Any]) -> dict[str, Any]:
    issues = validate_config(config)
    if issues:
        raise ConfigValidationError(issues)
    return dict(config)


def _same_kind(value: object, expected: object) -> bool:
    if isinstance(expected, bool):
        return isinstance(value, bool)
    if isinstance(expected, int):
        return isinstance(value, int) and not isinstance(value, bool)
    if isinstance(expected, float):
        return isinstance(value, int | float) and not isinstance(value, bool)
    if isinstance(expected, list):
        return isinstance(value, list)
    return isinstance(value, type(expected))


def _kind_name(value: object) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, list):
        return "list"
    return "string"


__all__ = [
    "DEFAULT_CONFIG",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "validate_config",
]
