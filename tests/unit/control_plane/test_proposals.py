"""Unit tests for the scout proposal filter pipeline."""

from __future__ import annotations

from typing import Any

import pytest

from loopwarden.control_plane.proposals import (
    Proposal,
    balance_proposals,
    bigram_similarity,
    filter_proposals,
    in_session_scope,
    normalize_proposal,
    validate_proposal_schema,
)
from loopwarden.domain.models import Complexity, RunState, TicketStatus


def _raw(title: str, **changes: Any) -> dict[str, Any]:
    raw: dict[str, Any] = {
        "category": "refactor",
        "title": title,
        "description": "Make it better",
        "allowed_paths": ["src/a.py"],
        "confidence": 80,
        "risk": "low",
        "impact_score": 6,
    }
    raw.update(changes)
    return raw


def _state(**changes: Any) -> RunState:
    state = RunState(run_id="run-1", project_id="p", repo_root="/r", started_at=0)
    for name, value in changes.items():
        setattr(state, name, value)
    return state


def _reasons(result: Any) -> dict[str, str]:
    return {rejection.title: rejection.reason for rejection in result.rejected}


def test_schema_validation_names_missing_fields() -> None:
    assert validate_proposal_schema(_raw("ok")) == []
    assert validate_proposal_schema({"category": "refactor", "files": "src/a.py"}) == [
        "title",
        "description",
        "risk",
        "allowed_paths",
        "confidence",
        "files",
    ]


def test_normalize_applies_defaults() -> None:
    proposal = normalize_proposal(
        {k: v for k, v in _raw("t", allowed_paths=["a", "b"]).items() if k != "impact_score"}
    )
    assert proposal.impact_score == 5
    assert proposal.touched_files_estimate == 2
    assert proposal.rollback_note == "git revert"
    assert proposal.estimated_complexity == "moderate"
    assert proposal.scoped_files == ("a", "b")


def test_gates_reject_in_pipeline_order() -> None:
    result = filter_proposals(
        [
            _raw("Simplify config loader"),
            {"category": "refactor"},
            _raw("Reviewed away", confidence=0),
            _raw("Tiny tweak", impact_score=1),
            _raw("Restyle everything", category="style"),
        ],
        _state(),
    )

    assert [p.title for p in result.accepted] == ["Simplify config loader"]
    reasons = _reasons(result)
    assert reasons[""] == "Missing fields: title, description, risk, allowed_paths, confidence"
    assert reasons["Reviewed away"] == "Rejected by adversarial review (confidence=0)"
    assert reasons["Tiny tweak"] == "Impact score 1 below min 3"
    assert reasons["Restyle everything"] == "Category 'style' not in trust ladder"
    assert result.counts["submitted"] == 5
    assert result.counts["valid"] == 4
    assert result.counts["accepted"] == 1


def test_out_of_scope_proposals_are_deferred_then_promoted() -> None:
    narrow = filter_proposals(
        [_raw("Document retry policy", category="docs", allowed_paths=["docs/retry.md"])],
        _state(scope="src/**"),
    )

    assert narrow.accepted == []
    assert _reasons(narrow)["Document retry policy"] == (
        "Deferred (files outside scope 'src/**'): docs/retry.md"
    )
    [deferred] = narrow.deferred
    assert deferred["original_scope"] == "src/**"

    still_narrow = filter_proposals([], _state(scope="lib/**", deferred_proposals=[deferred]))
    assert still_narrow.deferred == [deferred]

    widened = filter_proposals([], _state(scope="docs/**", deferred_proposals=[deferred]))
    assert [p.title for p in widened.accepted] == ["Document retry policy"]
    assert widened.deferred == []


def test_duplicates_against_tickets_and_within_batch() -> None:
    result = filter_proposals(
        [
            _raw("simplify CONFIG loader!"),
            _raw("Cache parsed manifests"),
            _raw("Cache parsed manifests"),
        ],
        _state(),
        existing_titles=["Simplify config loader"],
    )

    assert [p.title for p in result.accepted] == ["Cache parsed manifests"]
    reasons = [r.reason for r in result.rejected]
    assert "Duplicate of existing ticket (title similarity >= 0.6)" in reasons
    assert "Duplicate within batch (title similarity >= 0.6)" in reasons


def test_rank_by_impact_times_confidence_and_cap() -> None:
    result = filter_proposals(
        [
            _raw("Low value rename", impact_score=3, confidence=50),
            _raw("Remove dead module", impact_score=9, confidence=90),
            _raw("Split giant function", impact_score=7, confidence=80),
        ],
        _state(max_proposals_per_scout=2),
    )
    assert [p.title for p in result.accepted] == ["Remove dead module", "Split giant function"]


def test_balance_caps_test_proposals() -> None:
    proposals = [
        normalize_proposal(_raw(f"test {n}", category="test", impact_score=n)) for n in (9, 5, 1)
    ] + [normalize_proposal(_raw(f"refactor {n}")) for n in (1, 2)]

    balanced = balance_proposals(proposals)

    assert [p.title for p in balanced] == ["refactor 1", "refactor 2", "test 9", "test 5"]
    only_tests = [normalize_proposal(_raw("test only", category="test"))]
    assert balance_proposals(only_tests) == only_tests


@pytest.mark.parametrize(
    ("left", "right", "expected"),
    [("Fix the cache", "fix the cache", 1.0), ("", "", 1.0), ("ab", "", 0.0)],
)
def test_bigram_similarity(left: str, right: str, expected: float) -> None:
    assert bigram_similarity(left, right) == expected


def test_in_session_scope() -> None:
    assert in_session_scope("anything/at/all.py", "**")
    assert in_session_scope("README.md", "./{*,.*}")
    assert not in_session_scope("src/a.py", "./{*,.*}")
    assert in_session_scope("./src/a.py", "src/**")


def test_proposal_to_ticket() -> None:
    proposal = normalize_proposal(
        _raw(
            "Simplify config loader",
            acceptance_criteria=["loader under 100 lines"],
            files=["src/config.py"],
            estimated_complexity="galactic",
        )
    )
    ticket = proposal.to_ticket("proj")

    assert isinstance(proposal, Proposal)
    assert ticket.id.startswith("tkt-")
    assert ticket.priority == 48
    assert ticket.status is TicketStatus.READY
    assert ticket.complexity is Complexity.MODERATE
    assert "- loader under 100 lines" in ticket.description
    assert "**Confidence:** 80%" in ticket.description
    assert "- `src/config.py`" in ticket.description
