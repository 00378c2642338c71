"""
loopwarden — scout proposal filtering

File: src/loopwarden/control_plane/proposals.py

Purpose
- Turn raw scout proposals into a small, ranked, de-duplicated batch of
  ticket drafts for the current session scope.

Functional requirements
- Pipeline order: re-promote deferred proposals that now fit the scope,
  schema validation, confidence gate (0 means rejected by review), impact
  gate, category trust ladder, scope deferral, dedup against open tickets
  and within the batch, rank by impact x confidence, cap, test balancing.
- Deferred proposals are kept across cycles, highest confidence first,
  at most ``MAX_DEFERRED_PROPOSALS``.
- The function is pure: the caller stores ``FilterResult.deferred`` and
  creates the tickets.
"""

from __future__ import annotations

import math
import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Final

from loopwarden.constants import CATCH_ALL_SCOPES, MAX_DEFERRED_PROPOSALS
from loopwarden.domain import ids
from loopwarden.domain.models import Complexity, RunState, Ticket, TicketStatus
from loopwarden.knowledge_plane.sectors import ROOT_SECTOR_SCOPE
from loopwarden.scope.patterns import matches_pattern, normalize_path
from loopwarden.utils.numeric import round_half_up

DEFAULT_IMPACT: Final[int] = 5
DEDUP_THRESHOLD: Final[float] = 0.6
MAX_TEST_RATIO: Final[float] = 0.4

_BIGRAM_STRIP: Final[re.Pattern[str]] = re.compile(r"[^a-z0-9 ]")


@dataclass(frozen=True, slots=True)
class Proposal:
    """A scout proposal that passed schema validation, with defaults applied."""

    category: str
    title: str
    description: str
    allowed_paths: tuple[str, ...]
    confidence: float
    risk: str
    files: tuple[str, ...] = ()
    verification_commands: tuple[str, ...] = ()
    acceptance_criteria: tuple[str, ...] = ()
    impact_score: float = DEFAULT_IMPACT
    rationale: str = ""
    estimated_complexity: str = Complexity.MODERATE.value
    touched_files_estimate: int = 1
    rollback_note: str = "git revert"

    @property
    def scoped_files(self) -> tuple[str, ...]:
        return self.files or self.allowed_paths

    @property
    def score(self) -> float:
        return self.impact_score * self.confidence

    @property
    def priority(self) -> int:
        return round_half_up(self.impact_score * self.confidence / 10)

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "title": self.title,
            "description": self.description,
            "allowed_paths": list(self.allowed_paths),
            "confidence": self.confidence,
            "risk": self.risk,
            "files": list(self.files),
            "verification_commands": list(self.verification_commands),
            "acceptance_criteria": list(self.acceptance_criteria),
            "impact_score": self.impact_score,
            "rationale": self.rationale,
            "estimated_complexity": self.estimated_complexity,
            "touched_files_estimate": self.touched_files_estimate,
            "rollback_note": self.rollback_note,
        }

    def describe(self) -> str:
        """Structured ticket description: body, criteria, details, rollback, files."""
        parts = [self.description, "", "## Acceptance Criteria"]
        parts.extend(f"- {criterion}" for criterion in self.acceptance_criteria)
        parts.extend(
            [
                "",
                "## Details",
                f"**Risk:** {self.risk}",
                f"**Complexity:** {self.estimated_complexity}",
                f"**Confidence:** {_format_number(self.confidence)}%",
                f"**Impact:** {_format_number(self.impact_score)}/10",
                f"**Estimated files:** {self.touched_files_estimate}",
                "",
                "## Rollback",
                self.rollback_note,
            ]
        )
        if self.rationale:
            parts.extend(["", "## Rationale", self.rationale])
        if self.files:
            parts.extend(["", "## Files"])
            parts.extend(f"- `{path}`" for path in self.files)
        return "\n".join(parts)

    def to_ticket(self, project_id: str) -> Ticket:
        try:
            complexity = Complexity(self.estimated_complexity)
        except ValueError:
            complexity = Complexity.MODERATE
        return Ticket(
            id=ids.generate_ticket_id(),
            project_id=project_id,
            title=self.title,
            description=self.describe(),
            status=TicketStatus.READY,
            priority=self.priority,
            category=self.category,
            allowed_paths=list(self.allowed_paths),
            verification_commands=list(self.verification_commands),
            complexity=complexity,
        )


@dataclass(frozen=True, slots=True)
class Rejection:
    title: str
    reason: str


@dataclass(slots=True)
class FilterResult:
    accepted: list[Proposal] = field(default_factory=list)
    rejected: list[Rejection] = field(default_factory=list)
    deferred: list[dict[str, Any]] = field(default_factory=list)
    counts: dict[str, int] = field(default_factory=dict)


def validate_proposal_schema(raw: Mapping[str, Any]) -> list[str]:
    """Return the names of missing or mistyped fields."""
    missing: list[str] = []
    for key in ("category", "title", "description", "risk"):
        value = raw.get(key)
        if not value or not isinstance(value, str):
            missing.append(key)
    if not isinstance(raw.get("allowed_paths"), list):
        missing.append("allowed_paths")
    if not _is_number(raw.get("confidence")):
        missing.append("confidence")

    for key in ("files", "verification_commands"):
        if raw.get(key) is not None and not isinstance(raw.get(key), list):
            missing.append(key)
    if raw.get("touched_files_estimate") is not None and not _is_number(
        raw.get("touched_files_estimate")
    ):
        missing.append("touched_files_estimate")
    if raw.get("rollback_note") is not None and not isinstance(raw.get("rollback_note"), str):
        missing.append("rollback_note")
    return missing


def normalize_proposal(raw: Mapping[str, Any]) -> Proposal:
    """Apply defaults to a proposal that already passed ``validate_proposal_schema``."""
    allowed = _strings(raw.get("allowed_paths"))
    impact = raw.get("impact_score")
    estimate = raw.get("touched_files_estimate")
    return Proposal(
        category=str(raw["category"]),
        title=str(raw["title"]),
        description=str(raw["description"]),
        allowed_paths=allowed,
        confidence=float(raw["confidence"]),
        risk=str(raw["risk"]),
        files=_strings(raw.get("files")),
        verification_commands=_strings(raw.get("verification_commands")),
        acceptance_criteria=_strings(raw.get("acceptance_criteria")),
        impact_score=float(impact) if _is_number(impact) else DEFAULT_IMPACT,
        rationale=str(raw.get("rationale") or ""),
        estimated_complexity=str(raw.get("estimated_complexity") or Complexity.MODERATE.value),
        touched_files_estimate=int(estimate) if _is_number(estimate) else max(1, len(allowed)),
        rollback_note=str(raw.get("rollback_note") or "git revert"),
    )


def bigram_similarity(left: str, right: str) -> float:
    """Jaccard similarity of character bigrams, case-insensitive."""
    left_bigrams = _bigrams(left)
    right_bigrams = _bigrams(right)
    if not left_bigrams and not right_bigrams:
        return 1.0
    if not left_bigrams or not right_bigrams:
        return 0.0
    intersection = len(left_bigrams & right_bigrams)
    union = len(left_bigrams) + len(right_bigrams) - intersection
    return intersection / union if union else 0.0


def score_and_rank(proposals: Sequence[Proposal], max_count: int | None = None) -> list[Proposal]:
    ranked = sorted(proposals, key=lambda proposal: proposal.score, reverse=True)
    return ranked[:max_count] if max_count is not None else ranked


def balance_proposals(
    proposals: Sequence[Proposal], max_test_ratio: float = MAX_TEST_RATIO
) -> list[Proposal]:
    """Cap test-only proposals at ``max_test_ratio`` of the batch, keeping at least one."""
    tests = [p for p in proposals if p.category.lower() == "test"]
    others = [p for p in proposals if p.category.lower() != "test"]
    max_tests = math.floor(len(proposals) * max_test_ratio)
    if len(tests) <= max_tests:
        return list(proposals)
    kept = sorted(tests, key=lambda proposal: proposal.impact_score, reverse=True)
    return others + kept[: max(max_tests, 1)]


def in_session_scope(file_path: str, scope: str) -> bool:
    if scope in CATCH_ALL_SCOPES:
        return True
    normalized = normalize_path(file_path)
    if scope == ROOT_SECTOR_SCOPE:
        return "/" not in normalized
    return matches_pattern(normalized, normalize_path(scope))


def filter_proposals(
    raw_proposals: Iterable[Mapping[str, Any]],
    state: RunState,
    existing_titles: Sequence[str] = (),
) -> FilterResult:
    """Run the filter pipeline against ``state``'s scope, categories and limits."""
    result = FilterResult()
    scope = state.scope or ""
    candidates: list[Mapping[str, Any]] = [dict(raw) for raw in raw_proposals]
    submitted = len(candidates)

    for deferred in state.deferred_proposals:
        files = _strings(deferred.get("files")) or _strings(deferred.get("allowed_paths"))
        if all(in_session_scope(path, scope) for path in files):
            candidates.append({k: v for k, v in deferred.items() if k != "original_scope"})
        else:
            result.deferred.append(dict(deferred))

    valid: list[Proposal] = []
    for raw in candidates:
        missing = validate_proposal_schema(raw)
        if missing:
            result.rejected.append(
                Rejection(str(raw.get("title") or ""), f"Missing fields: {', '.join(missing)}")
            )
            continue
        valid.append(normalize_proposal(raw))

    after_confidence = _keep(
        valid,
        result,
        lambda p: p.confidence > 0,
        lambda p: "Rejected by adversarial review (confidence=0)",
    )
    after_impact = _keep(
        after_confidence,
        result,
        lambda p: p.impact_score >= state.min_impact_score,
        lambda p: (
            f"Impact score {_format_number(p.impact_score)} below min {state.min_impact_score}"
        ),
    )
    allowed_categories = set(state.categories)
    after_category = _keep(
        after_impact,
        result,
        lambda p: p.category in allowed_categories,
        lambda p: f"Category '{p.category}' not in trust ladder",
    )

    after_scope: list[Proposal] = []
    for proposal in after_category:
        outside = [path for path in proposal.scoped_files if not in_session_scope(path, scope)]
        if not outside:
            after_scope.append(proposal)
            continue
        result.deferred.append({**proposal.to_dict(), "original_scope": state.scope})
        result.rejected.append(
            Rejection(
                proposal.title,
                f"Deferred (files outside scope '{state.scope}'): {', '.join(outside)}",
            )
        )

    if len(result.deferred) > MAX_DEFERRED_PROPOSALS:
        result.deferred.sort(key=lambda item: float(item.get("confidence", 0)), reverse=True)
        del result.deferred[MAX_DEFERRED_PROPOSALS:]

    after_dedup = _keep(
        after_scope,
        result,
        lambda p: not any(
            bigram_similarity(title, p.title) >= DEDUP_THRESHOLD for title in existing_titles
        ),
        lambda p: f"Duplicate of existing ticket (title similarity >= {DEDUP_THRESHOLD})",
    )
    unique: list[Proposal] = []
    for proposal in after_dedup:
        if any(bigram_similarity(kept.title, proposal.title) >= DEDUP_THRESHOLD for kept in unique):
            result.rejected.append(
                Rejection(
                    proposal.title,
                    f"Duplicate within batch (title similarity >= {DEDUP_THRESHOLD})",
                )
            )
            continue
        unique.append(proposal)

    ranked = score_and_rank(unique, state.max_proposals_per_scout)
    result.accepted = balance_proposals(ranked)
    result.counts = {
        "submitted": submitted,
        "valid": len(valid),
        "after_confidence": len(after_confidence),
        "after_impact": len(after_impact),
        "after_category": len(after_category),
        "after_dedup": len(unique),
        "accepted": len(result.accepted),
        "rejected_count": len(result.rejected),
    }
    return result


def _keep(
    proposals: Sequence[Proposal],
    result: FilterResult,
    predicate: Callable[[Proposal], bool],
    reason: Callable[[Proposal], str],
) -> list[Proposal]:
    kept: list[Proposal] = []
    for proposal in proposals:
        if predicate(proposal):
            kept.append(proposal)
        else:
            result.rejected.append(Rejection(proposal.title, reason(proposal)))
    return kept


def _bigrams(text: str) -> set[str]:
    cleaned = _BIGRAM_STRIP.sub("", text.lower()).strip()
    return {cleaned[index : index + 2] for index in range(len(cleaned) - 1)}


def _is_number(value: object) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _strings(value: object) -> tuple[str, ...]:
    if isinstance(value, list | tuple):
        return tuple(str(item) for item in value)
    return ()


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


__all__ = [
    "DEDUP_THRESHOLD",
    "DEFAULT_IMPACT",
    "MAX_TEST_RATIO",
    "FilterResult",
    "Proposal",
    "Rejection",
    "balance_proposals",
    "bigram_similarity",
    "filter_proposals",
    "in_session_scope",
    "normalize_proposal",
    "score_and_rank",
    "validate_proposal_schema",
]
