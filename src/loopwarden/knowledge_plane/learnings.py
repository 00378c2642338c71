"""
loopwarden — cross-run learnings and adaptive risk

File: src/loopwarden/knowledge_plane/learnings.py

Purpose
- Persist short lessons recorded from failed plans, QA runs and tickets as a
  YAML registry under the state directory.
- Turn the lessons that touch a ticket's paths into an adaptive risk level
  that tightens or loosens the ticket's scope policy.

Functional requirements
- A learning is relevant when one of its ``path:`` tags equals, contains or is
  contained by one of the ticket paths (glob tails stripped).
- Only failure-sourced learnings and compaction learnings contribute score.
- Loading is best effort: unreadable registries yield no learnings.
"""

from __future__ import annotations

import os
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from pathlib import Path
from typing import Any, Final, cast

import structlog
import yaml

from loopwarden.constants import LEARNINGS_SCHEMA_VERSION
from loopwarden.domain import ids
from loopwarden.utils.fs import atomic_write

PathLike = str | os.PathLike[str]

DEFAULT_WEIGHT: Final[int] = 50
MAX_WEIGHT: Final[int] = 100
DECAY_RATE: Final[float] = 3.0
CONFIRMATION_WINDOW: Final[timedelta] = timedelta(days=7)
MAX_KNOWN_ISSUES: Final[int] = 5
KNOWN_ISSUE_CHARS: Final[int] = 150

_GLOB_TAIL: Final[re.Pattern[str]] = re.compile(r"/?\*\*?$")
_PATH_TAG_PREFIX: Final[str] = "path:"


class LearningCategory(StrEnum):
    GOTCHA = "gotcha"
    PATTERN = "pattern"
    WARNING = "warning"
    CONTEXT = "context"
    COMPACTION = "compaction"


class LearningSource(StrEnum):
    QA_FAILURE = "qa_failure"
    TICKET_FAILURE = "ticket_failure"
    TICKET_SUCCESS = "ticket_success"
    PLAN_REJECTION = "plan_rejection"
    SCOPE_VIOLATION = "scope_violation"
    REVIEWER_FEEDBACK = "reviewer_feedback"
    MANUAL = "manual"


FAILURE_SOURCES: Final[frozenset[LearningSource]] = frozenset(
    {
        LearningSource.QA_FAILURE,
        LearningSource.TICKET_FAILURE,
        LearningSource.SCOPE_VIOLATION,
        LearningSource.PLAN_REJECTION,
    }
)


class AdaptiveRiskLevel(StrEnum):
    LOW = "low"
    NORMAL = "normal"
    ELEVATED = "elevated"
    HIGH = "high"


@dataclass(frozen=True, slots=True)
class Learning:
    """One remembered lesson, tagged with the paths and commands it concerns."""

    id: str
    text: str
    category: LearningCategory
    source: LearningSource
    tags: tuple[str, ...] = ()
    weight: float = DEFAULT_WEIGHT
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_confirmed_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    access_count: int = 0
    fragile_paths: tuple[str, ...] = ()
    pattern_type: str | None = None

    def __post_init__(self) -> None:
        if not self.text:
            raise ValueError("Learning.text must be non-empty")
        if not 0 <= self.weight <= MAX_WEIGHT:
            raise ValueError(f"Learning.weight must be within 0..{MAX_WEIGHT}")

    @property
    def path_tags(self) -> tuple[str, ...]:
        return tuple(
            tag[len(_PATH_TAG_PREFIX) :] for tag in self.tags if tag.startswith(_PATH_TAG_PREFIX)
        )

    def to_dict(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "id": self.id,
            "text": self.text,
            "category": self.category.value,
            "source": self.source.value,
            "tags": list(self.tags),
            "weight": self.weight,
            "created_at": self.created_at.isoformat(),
            "last_confirmed_at": self.last_confirmed_at.isoformat(),
            "access_count": self.access_count,
        }
        if self.fragile_paths:
            record["fragile_paths"] = list(self.fragile_paths)
        if self.pattern_type is not None:
            record["pattern_type"] = self.pattern_type
        return record

    @classmethod
    def from_mapping(cls, payload: Mapping[str, object]) -> Learning:
        return cls(
            id=str(payload["id"]),
            text=str(payload["text"]),
            category=LearningCategory(str(payload.get("category", "gotcha"))),
            source=LearningSource(str(payload.get("source", "manual"))),
            tags=tuple(str(tag) for tag in cast("Sequence[object]", payload.get("tags") or ())),
            weight=float(cast("float", payload.get("weight", DEFAULT_WEIGHT))),
            created_at=_coerce_datetime(payload.get("created_at")),
            last_confirmed_at=_coerce_datetime(payload.get("last_confirmed_at")),
            access_count=int(cast("int", payload.get("access_count", 0))),
            fragile_paths=tuple(
                str(item) for item in cast("Sequence[object]", payload.get("fragile_paths") or ())
            ),
            pattern_type=(
                str(payload["pattern_type"]) if payload.get("pattern_type") is not None else None
            ),
        )


@dataclass(frozen=True, slots=True)
class AdaptiveRiskAssessment:
    level: AdaptiveRiskLevel
    score: float
    fragile_paths: tuple[str, ...] = ()
    known_issues: tuple[str, ...] = ()
    failure_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level.value,
            "score": self.score,
            "fragile_paths": list(self.fragile_paths),
            "known_issues": list(self.known_issues),
            "failure_count": self.failure_count,
        }


def strip_glob_tail(path: str) -> str:
    return _GLOB_TAIL.sub("", path)


def extract_tags(paths: Iterable[str], commands: Iterable[str] = ()) -> list[str]:
    """Build ``path:`` and ``cmd:`` tags for a new learning."""
    tags = [f"{_PATH_TAG_PREFIX}{clean}" for clean in map(strip_glob_tail, paths) if clean]
    tags.extend(f"cmd:{command}" for command in commands)
    return tags


def _overlaps(learning: Learning, ticket_paths: set[str]) -> bool:
    for learned_path in learning.path_tags:
        if learned_path in ticket_paths:
            return True
        for path in ticket_paths:
            if learned_path.startswith(path + "/") or path.startswith(learned_path + "/"):
                return True
    return False


def assess_adaptive_risk(
    learnings: Sequence[Learning], ticket_paths: Sequence[str]
) -> AdaptiveRiskAssessment:
    """Score how risky a ticket's paths have proven in past runs."""
    path_set = {strip_glob_tail(path) for path in ticket_paths}
    score = 0.0
    failure_count = 0
    fragile: dict[str, None] = {}
    known_issues: list[str] = []

    for learning in learnings:
        scale = learning.weight / DEFAULT_WEIGHT
        if learning.category is LearningCategory.COMPACTION:
            if _overlaps(learning, path_set):
                score += 12 * scale
                if len(known_issues) < MAX_KNOWN_ISSUES:
                    known_issues.append(learning.text[:KNOWN_ISSUE_CHARS])
            continue

        if learning.source not in FAILURE_SOURCES or not _overlaps(learning, path_set):
            continue

        failure_count += 1
        score += 10 * scale
        if learning.fragile_paths:
            fragile.update(dict.fromkeys(learning.fragile_paths))
            score += 8 * scale
        if learning.pattern_type == "antipattern":
            score += 5 * scale
        if len(known_issues) < MAX_KNOWN_ISSUES:
            known_issues.append(learning.text[:KNOWN_ISSUE_CHARS])

    score = min(100.0, score)
    if score < 10:
        level = AdaptiveRiskLevel.LOW
    elif score < 30:
        level = AdaptiveRiskLevel.NORMAL
    elif score < 60:
        level = AdaptiveRiskLevel.ELEVATED
    else:
        level = AdaptiveRiskLevel.HIGH

    return AdaptiveRiskAssessment(
        level=level,
        score=score,
        fragile_paths=tuple(fragile),
        known_issues=tuple(known_issues),
        failure_count=failure_count,
    )


def apply_learnings_decay(
    learnings: Sequence[Learning],
    *,
    decay_rate: float = DECAY_RATE,
    now: datetime | None = None,
) -> list[Learning]:
    """Age every learning once and drop the ones whose weight reaches zero.

    Accessed learnings decay at half rate; recently confirmed ones halve again.
    """
    moment = now or datetime.now(UTC)
    surviving: list[Learning] = []
    for learning in learnings:
        decay = decay_rate
        if learning.access_count > 0:
            decay /= 2
        if moment - learning.last_confirmed_at < CONFIRMATION_WINDOW:
            decay /= 2
        weight = min(float(MAX_WEIGHT), learning.weight - decay)
        if weight > 0:
            surviving.append(replace(learning, weight=weight))
    return surviving


class LearningsStore:
    """YAML-backed learnings registry (``learnings.yaml`` under the state dir)."""

    def __init__(self, path: PathLike, *, logger: Any | None = None) -> None:
        self._path = Path(path)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> list[Learning]:
        if not self._path.exists():
            return []
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                loaded = cast("object", yaml.safe_load(handle))
            return _parse_document(loaded)
        except (OSError, yaml.YAMLError, ValueError, KeyError, TypeError) as exc:
            self._logger.warning("learnings_load_failed", path=str(self._path), error=str(exc))
            return []

    def save(self, learnings: Sequence[Learning]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        document = {
            "version": LEARNINGS_SCHEMA_VERSION,
            "learnings": [learning.to_dict() for learning in learnings],
        }
        rendered = yaml.safe_dump(
            document,
            sort_keys=False,
            default_flow_style=False,
            allow_unicode=False,
            width=120,
        )
        atomic_write(self._path, rendered)

    def record(
        self,
        text: str,
        *,
        source: LearningSource,
        category: LearningCategory = LearningCategory.GOTCHA,
        paths: Sequence[str] = (),
        commands: Sequence[str] = (),
        fragile_paths: Sequence[str] = (),
        pattern_type: str | None = None,
    ) -> Learning:
        """Append a new learning and persist the registry."""
        learning = Learning(
            id=ids.generate_learning_id(),
            text=text,
            category=category,
            source=source,
            tags=tuple(extract_tags(paths, commands)),
            fragile_paths=tuple(fragile_paths),
            pattern_type=pattern_type,
        )
        learnings = self.load()
        learnings.append(learning)
        self.save(learnings)
        self._logger.info(
            "learning_recorded", learning_id=learning.id, source=source.value, tags=learning.tags
        )
        return learning

    def for_paths(self, paths: Sequence[str]) -> list[Learning]:
        path_set = {strip_glob_tail(path) for path in paths}
        return [learning for learning in self.load() if _overlaps(learning, path_set)]


def _parse_document(loaded: object) -> list[Learning]:
    if loaded is None:
        return []
    if not isinstance(loaded, Mapping):
        raise ValueError(f"expected a YAML mapping, got {type(loaded).__name__}")
    entries = loaded.get("learnings") or []
    if not isinstance(entries, list):
        raise ValueError("'learnings' must be a sequence")
    return [Learning.from_mapping(cast("Mapping[str, object]", entry)) for entry in entries]


def _coerce_datetime(value: object) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        return datetime.now(UTC)
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


__all__ = [
    "FAILURE_SOURCES",
    "AdaptiveRiskAssessment",
    "AdaptiveRiskLevel",
    "Learning",
    "LearningCategory",
    "LearningSource",
    "LearningsStore",
    "apply_learnings_decay",
    "assess_adaptive_risk",
    "extract_tags",
    "strip_glob_tail",
]
