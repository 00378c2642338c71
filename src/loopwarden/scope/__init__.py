"""Scope policy engine: glob matching, plan validation and scope expansion."""

from loopwarden.scope.expansion import (
    ScopeExpansionResult,
    ScopeViolation,
    ViolationKind,
    analyze_violations_for_expansion,
    check_scope_violations,
)
from loopwarden.scope.patterns import (
    ALWAYS_DENIED,
    detect_credential_in_content,
    detect_hallucinated_path,
    is_path_allowed,
    matches_pattern,
    normalize_path,
    parse_changed_files,
)
from loopwarden.scope.policy import (
    PlanValidationResult,
    ScopePolicy,
    derive_scope_policy,
    is_category_file_allowed,
    is_file_allowed,
    is_file_in_worktree,
    validate_plan_scope,
)

__all__ = [
    "ALWAYS_DENIED",
    "PlanValidationResult",
    "ScopeExpansionResult",
    "ScopePolicy",
    "ScopeViolation",
    "ViolationKind",
    "analyze_violations_for_expansion",
    "check_scope_violations",
    "derive_scope_policy",
    "detect_credential_in_content",
    "detect_hallucinated_path",
    "is_category_file_allowed",
    "is_file_allowed",
    "is_file_in_worktree",
    "is_path_allowed",
    "matches_pattern",
    "normalize_path",
    "parse_changed_files",
    "validate_plan_scope",
]
