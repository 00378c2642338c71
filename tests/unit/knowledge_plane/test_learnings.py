"""Unit tests for the learnings registry and adaptive risk scoring."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from loopwarden.knowledge_plane.learnings import (
    AdaptiveRiskLevel,
    Learning,
    LearningCategory,
    LearningSource,
    LearningsStore,
    apply_learnings_decay,
    assess_adaptive_risk,
    extract_tags,
    strip_glob_tail,
)

NOW = datetime(2026, 6, 1, tzinfo=UTC)


def _learning(
    text: str,
    *,
    source: LearningSource = LearningSource.QA_FAILURE,
    category: LearningCategory = LearningCategory.GOTCHA,
    paths: tuple[str, ...] = ("src/auth",),
    **changes: object,
) -> Learning:
    values: dict[str, object] = {
        "created_at": NOW - timedelta(days=30),
        "last_confirmed_at": NOW - timedelta(days=30),
    }
    values.update(changes)
    return Learning(
        id=f"lrn-{text}",
        text=text,
        category=category,
        source=source,
        tags=tuple(f"path:{path}" for path in paths),
        **values,  # type: ignore[arg-type]
    )


def test_learning_validation() -> None:
    with pytest.raises(ValueError, match="non-empty"):
        Learning(id="l", text="", category=LearningCategory.GOTCHA, source=LearningSource.MANUAL)
    with pytest.raises(ValueError, match="weight"):
        _learning("x", weight=101)


def test_tags_strip_glob_tails() -> None:
    assert strip_glob_tail("src/auth/**") == "src/auth"
    assert extract_tags(["src/auth/**", "docs/*", ""], ["pytest"]) == [
        "path:src/auth",
        "path:docs",
        "cmd:pytest",
    ]


def test_store_round_trips_yaml(tmp_path: Path) -> None:
    store = LearningsStore(tmp_path / "learnings.yaml")
    assert store.load() == []

    learnings = [
        _learning("first", fragile_paths=("src/auth/session.py",), pattern_type="antipattern"),
        _learning("second", source=LearningSource.MANUAL, paths=("docs",)),
    ]
    store.save(learnings)

    assert store.load() == learnings
    assert [item.text for item in store.for_paths(["src/auth/**"])] == ["first"]
    assert [item.text for item in store.for_paths(["src"])] == ["first"]


def test_record_appends_with_path_tags(tmp_path: Path) -> None:
    store = LearningsStore(tmp_path / "state" / "learnings.yaml")
    recorded = store.record(
        "pytest fails on import",
        source=LearningSource.QA_FAILURE,
        paths=["src/auth/**"],
        commands=["pytest"],
    )

    assert recorded.id.startswith("lrn-")
    assert recorded.tags == ("path:src/auth", "cmd:pytest")
    assert store.load() == [recorded]


def test_unreadable_registry_loads_empty(tmp_path: Path) -> None:
    path = tmp_path / "learnings.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    assert LearningsStore(path).load() == []


@pytest.mark.parametrize(
    ("count", "expected"),
    [
        (0, AdaptiveRiskLevel.LOW),
        (1, AdaptiveRiskLevel.NORMAL),
        (3, AdaptiveRiskLevel.ELEVATED),
        (6, AdaptiveRiskLevel.HIGH),
    ],
)
def test_adaptive_risk_levels(count: int, expected: AdaptiveRiskLevel) -> None:
    learnings = [_learning(f"f{index}") for index in range(count)]
    assessment = assess_adaptive_risk(learnings, ["src/auth/**"])

    assert assessment.level is expected
    assert assessment.failure_count == count


def test_adaptive_risk_ignores_success_and_unrelated_paths() -> None:
    learnings = [
        _learning("ok", source=LearningSource.TICKET_SUCCESS),
        _learning("elsewhere", paths=("src/ui",)),
    ]
    assessment = assess_adaptive_risk(learnings, ["src/auth"])

    assert assessment.score == 0
    assert assessment.level is AdaptiveRiskLevel.LOW


def test_adaptive_risk_collects_fragile_paths_and_compaction_notes() -> None:
    learnings = [
        _learning("fragile", fragile_paths=("src/auth/a.py",)),
        _learning("summary", category=LearningCategory.COMPACTION, source=LearningSource.MANUAL),
    ]
    assessment = assess_adaptive_risk(learnings, ["src/auth/login.py"])

    assert assessment.score == pytest.approx(30.0)
    assert assessment.fragile_paths == ("src/auth/a.py",)
    assert assessment.known_issues == ("fragile", "summary")
    assert assessment.failure_count == 1


def test_decay_rates_and_pruning() -> None:
    stale = _learning("stale", weight=10)
    accessed = _learning("accessed", weight=10, access_count=2)
    fresh = _learning("fresh", weight=10, last_confirmed_at=NOW - timedelta(days=1))
    dying = _learning("dying", weight=2)

    decayed = {item.text: item.weight for item in apply_learnings_decay(
        [stale, accessed, fresh, dying], now=NOW
    )}

    assert decayed == {"stale": 7.0, "accessed": 8.5, "fresh": 8.5}
