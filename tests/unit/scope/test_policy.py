"""Unit tests for scope policy derivation, plan validation and scope expansion."""

from __future__ import annotations

from loopwarden.domain.models import PlannedFile
from loopwarden.knowledge_plane.learnings import (
    AdaptiveRiskLevel,
    Learning,
    LearningCategory,
    LearningSource,
)
from loopwarden.scope.expansion import (
    ScopeViolation,
    ViolationKind,
    analyze_violations_for_expansion,
    check_scope_violations,
)
from loopwarden.scope.policy import (
    ScopePolicy,
    derive_scope_policy,
    is_category_file_allowed,
    is_file_allowed,
    is_file_in_worktree,
    validate_plan_scope,
)


def _files(*paths: str) -> list[PlannedFile]:
    return [PlannedFile(path) for path in paths]


def _failure(index: int, path: str) -> Learning:
    return Learning(
        id=f"lrn-{index}",
        text=f"failure {index}",
        category=LearningCategory.GOTCHA,
        source=LearningSource.QA_FAILURE,
        tags=(f"path:{path}",),
        fragile_paths=(f"{path}/session.py",),
    )


def test_docs_tickets_get_raised_cap_and_skip_plan() -> None:
    policy = derive_scope_policy(["docs/"], "docs", 300)
    assert policy.max_lines == 1000
    assert policy.plan_required is False

    refactor = derive_scope_policy(["src/"], "refactor", 300)
    assert refactor.max_lines == 300
    assert refactor.plan_required is True
    assert refactor.max_files == 10


def test_learnings_about_ticket_paths_tighten_policy() -> None:
    learnings = [_failure(index, "src/auth") for index in range(4)]
    policy = derive_scope_policy(["src/auth/**"], "refactor", 300, learnings)

    assert policy.risk_assessment is not None
    assert policy.risk_assessment.level is AdaptiveRiskLevel.HIGH
    assert policy.max_files == 5
    assert policy.max_lines == 150
    assert policy.plan_required is True


def test_unrelated_learnings_loosen_policy() -> None:
    policy = derive_scope_policy(["src/ui/**"], "refactor", 300, [_failure(1, "src/auth")])
    assert policy.risk_assessment is not None
    assert policy.risk_assessment.level is AdaptiveRiskLevel.LOW
    assert policy.max_files == 15
    assert policy.max_lines == 450


def test_plan_validation_reports_first_failure_in_order() -> None:
    policy = ScopePolicy(allowed_paths=("src/",), max_lines=100)

    assert validate_plan_scope([], 10, "low", policy).reason == (
        "Plan must include at least one file to touch"
    )
    many = _files(*(f"src/f{index}.py" for index in range(11)))
    assert validate_plan_scope(many, 10, "low", policy).reason == (
        "Plan touches 11 files, max allowed is 10"
    )
    assert validate_plan_scope(_files("src/a.py"), 101, "low", policy).reason == (
        "Estimated lines (101) exceeds max (100)"
    )
    assert validate_plan_scope(_files("src/a.py"), 10, "extreme", policy).reason == (
        "Plan must specify risk_level: low, medium, or high"
    )
    assert validate_plan_scope(_files("node_modules/x.js"), 10, "low", policy).reason == (
        "Plan touches denied path: node_modules/x.js (matches node_modules/**)"
    )
    assert validate_plan_scope(_files("src/secrets.yaml"), 10, "low", policy).reason == (
        "Plan touches sensitive file: src/secrets.yaml"
    )
    assert validate_plan_scope(_files("lib/a.py"), 10, "low", policy).reason == (
        "File lib/a.py is outside allowed paths: src/"
    )
    result = validate_plan_scope(_files("src/a.py"), 10, "low", policy)
    assert result.valid
    assert result.violations == []


def test_worktree_root_confines_plans() -> None:
    root = ".state/worktrees/tkt-1"
    policy = ScopePolicy(allowed_paths=(), worktree_root=root)

    assert validate_plan_scope(_files(f"{root}/src/a.py"), 10, "low", policy).valid
    rejected = validate_plan_scope(_files("../escape.py"), 10, "low", policy)
    assert rejected.reason == f"File ../escape.py resolves outside worktree: {root}"


def test_is_file_in_worktree() -> None:
    assert is_file_in_worktree("src/a.py", "wt")
    assert not is_file_in_worktree("../a.py", "wt")
    assert not is_file_in_worktree("/etc/passwd", "wt")
    assert not is_file_in_worktree("src/../../a.py", "wt")


def test_is_file_allowed_single_file_form() -> None:
    policy = ScopePolicy(allowed_paths=("src/",))
    assert is_file_allowed("src/a.py", policy)
    assert not is_file_allowed(".git/config", policy)
    assert not is_file_allowed("lib/a.py", policy)


def test_category_file_restrictions() -> None:
    assert is_category_file_allowed("docs/guide.md", "docs")
    assert not is_category_file_allowed("src/a.py", "docs")
    assert is_category_file_allowed("tests/test_a.py", "test")
    assert is_category_file_allowed("src/a.py", "refactor")
    assert is_category_file_allowed("src/a.py", None)


def test_check_scope_violations_classifies_each_file() -> None:
    violations = check_scope_violations(
        ["src/a.py", "src/src/b.py", ".env.local", "lib/c.py"],
        ["src/**"],
        [".env*"],
    )
    by_file = {violation.file: violation for violation in violations}

    assert "src/a.py" not in by_file
    assert by_file["src/src/b.py"].is_hallucinated
    assert by_file[".env.local"].kind is ViolationKind.IN_FORBIDDEN
    assert by_file["lib/c.py"].kind is ViolationKind.NOT_IN_ALLOWED


def test_expansion_refuses_forbidden_violations() -> None:
    result = analyze_violations_for_expansion(
        [ScopeViolation(".env", ViolationKind.IN_FORBIDDEN, ".env")], ["src/a.py"]
    )
    assert not result.can_expand
    assert result.reason == "Cannot expand: 1 file(s) match forbidden paths"


def test_expansion_accepts_siblings_and_root_config() -> None:
    result = analyze_violations_for_expansion(
        [
            ScopeViolation("src/utils/b.py", ViolationKind.NOT_IN_ALLOWED),
            ScopeViolation("pyproject.toml", ViolationKind.NOT_IN_ALLOWED),
        ],
        ["src/utils/a.py"],
    )
    assert result.can_expand
    assert result.added_paths == ("src/utils/b.py", "pyproject.toml")
    assert result.expanded_paths == ("src/utils/a.py", "src/utils/b.py", "pyproject.toml")


def test_expansion_rejects_unrelated_directories_and_large_batches() -> None:
    unrelated = analyze_violations_for_expansion(
        [ScopeViolation("docs/guide.md", ViolationKind.NOT_IN_ALLOWED)], ["src/utils/a.py"]
    )
    assert not unrelated.can_expand
    assert unrelated.reason == "Cannot expand: 1 file(s) in unrelated directories"

    siblings = [
        ScopeViolation(f"src/utils/f{index}.py", ViolationKind.NOT_IN_ALLOWED)
        for index in range(11)
    ]
    too_many = analyze_violations_for_expansion(siblings, ["src/utils/a.py"])
    assert not too_many.can_expand
    assert too_many.reason == "Cannot expand: 11 files need expansion (max: 10)"
