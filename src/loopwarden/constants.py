"""Stable constants shared across loopwarden planes."""

from __future__ import annotations

from typing import Final

# Run folder layout, relative to the repository root.
STATE_DIR_NAME: Final[str] = ".state"
RUNS_DIR_NAME: Final[str] = "runs"
WORKTREES_DIR_NAME: Final[str] = "worktrees"
SESSION_LOCK_FILE: Final[str] = "session.lock"
SECTORS_FILE: Final[str] = "sectors.json"
LEARNINGS_FILE: Final[str] = "learnings.yaml"
STATE_FILE: Final[str] = "state.json"
EVENTS_FILE: Final[str] = "events.ndjson"
DIFFS_DIR_NAME: Final[str] = "diffs"
ARTIFACTS_DIR_NAME: Final[str] = "artifacts"

# Schema versions for persisted documents.
SECTORS_SCHEMA_VERSION: Final[int] = 2
LEARNINGS_SCHEMA_VERSION: Final[int] = 1

# Session defaults.
DEFAULT_STEP_BUDGET: Final[int] = 200
DEFAULT_TICKET_STEP_BUDGET: Final[int] = 12
DEFAULT_MAX_LINES_PER_TICKET: Final[int] = 500
DEFAULT_MAX_TOOL_CALLS_PER_TICKET: Final[int] = 50
DEFAULT_MAX_PRS: Final[int] = 5
DEFAULT_MIN_CONFIDENCE: Final[int] = 55
DEFAULT_MIN_IMPACT_SCORE: Final[int] = 3
DEFAULT_MAX_PROPOSALS_PER_SCOUT: Final[int] = 5
DEFAULT_SCOPE: Final[str] = "**"
DEFAULT_CATEGORIES: Final[tuple[str, ...]] = ("refactor", "docs", "test", "perf", "security")
DEFAULT_PARALLEL: Final[int] = 2
MAX_PARALLEL: Final[int] = 5
DEFAULT_MAX_CYCLES: Final[int] = 1

# Retry and recovery ceilings.
MAX_SCOUT_RETRIES: Final[int] = 3
MAX_QA_RETRIES: Final[int] = 3
MAX_PLAN_REJECTIONS: Final[int] = 3
MAX_SPINDLE_RECOVERIES: Final[int] = 3
MAX_DEFERRED_PROPOSALS: Final[int] = 20

# Budget warnings fire once usage reaches this fraction.
BUDGET_WARNING_THRESHOLD: Final[float] = 0.8

# Scope strings that mean the whole repository.
CATCH_ALL_SCOPES: Final[frozenset[str]] = frozenset({"**", "*", ""})

__all__ = [
    "ARTIFACTS_DIR_NAME",
    "BUDGET_WARNING_THRESHOLD",
    "CATCH_ALL_SCOPES",
    "DEFAULT_CATEGORIES",
    "DEFAULT_MAX_CYCLES",
    "DEFAULT_MAX_LINES_PER_TICKET",
    "DEFAULT_MAX_PROPOSALS_PER_SCOUT",
    "DEFAULT_MAX_PRS",
    "DEFAULT_MAX_TOOL_CALLS_PER_TICKET",
    "DEFAULT_MIN_CONFIDENCE",
    "DEFAULT_MIN_IMPACT_SCORE",
    "DEFAULT_PARALLEL",
    "DEFAULT_SCOPE",
    "DEFAULT_STEP_BUDGET",
    "DEFAULT_TICKET_STEP_BUDGET",
    "DIFFS_DIR_NAME",
    "EVENTS_FILE",
    "LEARNINGS_FILE",
    "LEARNINGS_SCHEMA_VERSION",
    "MAX_DEFERRED_PROPOSALS",
    "MAX_PARALLEL",
    "MAX_PLAN_REJECTIONS",
    "MAX_QA_RETRIES",
    "MAX_SCOUT_RETRIES",
    "MAX_SPINDLE_RECOVERIES",
    "RUNS_DIR_NAME",
    "SECTORS_FILE",
    "SECTORS_SCHEMA_VERSION",
    "SESSION_LOCK_FILE",
    "STATE_DIR_NAME",
    "STATE_FILE",
    "WORKTREES_DIR_NAME",
]
