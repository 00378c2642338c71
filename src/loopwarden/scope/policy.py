"""
loopwarden — scope policy derivation and plan validation

File: src/loopwarden/scope/policy.py

Purpose
- Derive the per-ticket ``ScopePolicy`` from category, allowed paths and
  (optionally) learnings about those paths.
- Validate submitted plans and single-file edits against that policy.

Functional requirements
- Plan validation runs its checks in a fixed order and reports the first
  failure only.
- Denied globs and sensitive file names win over allowed globs.
- With a worktree root set, every file must resolve strictly inside it.
"""

from __future__ import annotations

import posixpath
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Final

from loopwarden.domain.models import VALID_RISK_LEVELS, PlannedFile
from loopwarden.knowledge_plane.learnings import (
    AdaptiveRiskAssessment,
    AdaptiveRiskLevel,
    Learning,
    assess_adaptive_risk,
)
from loopwarden.scope.patterns import (
    ALWAYS_DENIED,
    FILE_DENY_PATTERNS,
    matches_any,
    normalize_allowed_glob,
    normalize_path,
)
from loopwarden.utils.numeric import round_half_up

DEFAULT_MAX_FILES: Final[int] = 10
RAISED_LINE_CAP: Final[int] = 1000

# Categories whose tickets may only touch certain kinds of files.
CATEGORY_FILE_PATTERNS: Final[dict[str, tuple[str, ...]]] = {
    "docs": (
        "*.md",
        "*.mdx",
        "*.txt",
        "*.rst",
        "**/*.md",
        "**/*.mdx",
        "**/*.txt",
        "**/*.rst",
    ),
    "test": (
        # JS/TS
        "*.test.*",
        "*.spec.*",
        "**/*.test.*",
        "**/*.spec.*",
        "**/__tests__/**",
        "__tests__/**",
        # Python
        "test_*",
        "**/test_*",
        "*_test.py",
        "**/*_test.py",
        "**/tests/**",
        "tests/**",
        "**/conftest.py",
        # Go
        "*_test.go",
        "**/*_test.go",
        # Java/Kotlin
        "*Test.java",
        "**/*Test.java",
        "*Test.kt",
        "**/*Test.kt",
        "**/src/test/**",
        # Ruby
        "*_spec.rb",
        "**/*_spec.rb",
        "**/spec/**",
        # Elixir
        "*_test.exs",
        "**/*_test.exs",
        # Swift
        "*Tests.swift",
        "**/*Tests.swift",
        # PHP
        "*Test.php",
        "**/*Test.php",
    ),
}


@dataclass(frozen=True, slots=True)
class ScopePolicy:
    """File-level constraints for one ticket."""

    allowed_paths: tuple[str, ...]
    denied_paths: tuple[str, ...] = ALWAYS_DENIED
    denied_patterns: tuple[re.Pattern[str], ...] = FILE_DENY_PATTERNS
    max_files: int = DEFAULT_MAX_FILES
    max_lines: int = 500
    plan_required: bool = True
    worktree_root: str | None = None
    risk_assessment: AdaptiveRiskAssessment | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if self.max_files <= 0:
            raise ValueError("ScopePolicy.max_files must be > 0")
        if self.max_lines <= 0:
            raise ValueError("ScopePolicy.max_lines must be > 0")

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "allowed_paths": list(self.allowed_paths),
            "denied_paths": list(self.denied_paths),
            "denied_patterns": [pattern.pattern for pattern in self.denied_patterns],
            "max_files": self.max_files,
            "max_lines": self.max_lines,
            "plan_required": self.plan_required,
        }
        if self.worktree_root:
            payload["worktree_root"] = self.worktree_root
        if self.risk_assessment is not None:
            payload["risk_assessment"] = self.risk_assessment.to_dict()
        return payload


@dataclass(frozen=True, slots=True)
class PlanValidationResult:
    valid: bool
    reason: str | None = None

    @property
    def violations(self) -> list[str]:
        return [self.reason] if self.reason else []


def derive_scope_policy(
    allowed_paths: Sequence[str],
    category: str,
    max_lines_per_ticket: int,
    learnings: Sequence[Learning] | None = None,
    worktree_root: str | None = None,
) -> ScopePolicy:
    """Build the policy for a ticket.

    ``test`` and ``docs`` tickets get the raised line cap; ``docs`` tickets
    skip the plan gate unless learnings about their paths say otherwise.
    """
    max_files = DEFAULT_MAX_FILES
    max_lines = RAISED_LINE_CAP if category in ("test", "docs") else max_lines_per_ticket
    plan_required = category != "docs"
    assessment: AdaptiveRiskAssessment | None = None

    if learnings:
        assessment = assess_adaptive_risk(learnings, allowed_paths)
        if assessment.level is AdaptiveRiskLevel.LOW:
            max_files = 15
            max_lines = round_half_up(max_lines * 1.5)
        elif assessment.level is AdaptiveRiskLevel.ELEVATED:
            max_files = 7
            plan_required = True
        elif assessment.level is AdaptiveRiskLevel.HIGH:
            max_files = 5
            max_lines = max(1, round_half_up(max_lines * 0.5))
            plan_required = True

    return ScopePolicy(
        allowed_paths=tuple(allowed_paths),
        max_files=max_files,
        max_lines=max_lines,
        plan_required=plan_required,
        worktree_root=worktree_root,
        risk_assessment=assessment,
    )


def validate_plan_scope(
    files: Sequence[PlannedFile],
    estimated_lines: int,
    risk_level: str | None,
    policy: ScopePolicy,
) -> PlanValidationResult:
    """Check a plan against ``policy``; the first failing rule is reported."""
    if not files:
        return _reject("Plan must include at least one file to touch")

    if len(files) > policy.max_files:
        return _reject(f"Plan touches {len(files)} files, max allowed is {policy.max_files}")

    if estimated_lines > policy.max_lines:
        return _reject(f"Estimated lines ({estimated_lines}) exceeds max ({policy.max_lines})")

    if not risk_level or risk_level not in VALID_RISK_LEVELS:
        return _reject("Plan must specify risk_level: low, medium, or high")

    for entry in files:
        path = _policy_relative(entry.path, policy)
        denied = matches_any(path, policy.denied_paths)
        if denied is not None:
            return _reject(f"Plan touches denied path: {entry.path} (matches {denied})")

    for entry in files:
        if any(pattern.search(entry.path) for pattern in policy.denied_patterns):
            return _reject(f"Plan touches sensitive file: {entry.path}")

    if policy.allowed_paths:
        allowed = [normalize_allowed_glob(glob) for glob in policy.allowed_paths]
        for entry in files:
            if matches_any(_policy_relative(entry.path, policy), allowed) is None:
                return _reject(
                    f"File {entry.path} is outside allowed paths: "
                    f"{', '.join(policy.allowed_paths)}"
                )

    if policy.worktree_root:
        for entry in files:
            if not is_file_in_worktree(entry.path, policy.worktree_root):
                return _reject(
                    f"File {entry.path} resolves outside worktree: {policy.worktree_root}"
                )

    return PlanValidationResult(valid=True)


def is_file_in_worktree(file_path: str, worktree_root: str) -> bool:
    """Return ``True`` when ``file_path`` resolves strictly inside ``worktree_root``.

    Relative paths are resolved against the root, so ``..`` escapes are caught.
    """
    root = posixpath.normpath(worktree_root.replace("\\", "/"))
    candidate = posixpath.normpath(posixpath.join(root, file_path.replace("\\", "/")))
    if root == ".":
        return candidate != "." and not candidate.startswith("../") and candidate != ".."
    return candidate.startswith(root.rstrip("/") + "/")


def is_file_allowed(file_path: str, policy: ScopePolicy) -> bool:
    """Single-file form of the plan checks: worktree, deny lists, then allow list."""
    if policy.worktree_root and not is_file_in_worktree(file_path, policy.worktree_root):
        return False

    path = _policy_relative(file_path, policy)
    if matches_any(path, policy.denied_paths) is not None:
        return False
    if any(pattern.search(path) for pattern in policy.denied_patterns):
        return False
    if not policy.allowed_paths:
        return True
    allowed = [normalize_allowed_glob(glob) for glob in policy.allowed_paths]
    return matches_any(path, allowed) is not None


def is_category_file_allowed(file_path: str, category: str | None) -> bool:
    """Restrict ``docs`` and ``test`` tickets to their file kinds; others are unrestricted."""
    if not category:
        return True
    patterns = CATEGORY_FILE_PATTERNS.get(category)
    if patterns is None:
        return True
    return matches_any(normalize_path(file_path), patterns) is not None


def _policy_relative(file_path: str, policy: ScopePolicy) -> str:
    """Express ``file_path`` relative to the worktree root when it points inside it."""
    normalized = normalize_path(file_path)
    if policy.worktree_root:
        root = normalize_path(policy.worktree_root)
        if root and normalized.startswith(root + "/"):
            return normalized[len(root) + 1 :]
    return normalized


def _reject(reason: str) -> PlanValidationResult:
    return PlanValidationResult(valid=False, reason=reason)


__all__ = [
    "CATEGORY_FILE_PATTERNS",
    "DEFAULT_MAX_FILES",
    "RAISED_LINE_CAP",
    "PlanValidationResult",
    "ScopePolicy",
    "derive_scope_policy",
    "is_category_file_allowed",
    "is_file_allowed",
    "is_file_in_worktree",
    "validate_plan_scope",
]
