"""
loopwarden — sector scheduler

File: src/loopwarden/knowledge_plane/sectors.py

Purpose
- Track scan and ticket-outcome history for each classified region of the
  repository ("sector") and pick which region the scout should look at next.

Functional requirements
- Sectors are keyed by normalized path; history survives a rebuild unless the
  file count moved by more than 20%, which also clears the polished mark.
- ``pick_next_sector`` applies a strict priority order; each rule only breaks
  ties left by the previous one.
- Outcome counters decay every 20 observations so recent results dominate.
- Functions here mutate ``SectorState`` in place and never touch the file
  system; ``persistence.sector_store`` owns I/O.
"""

from __future__ import annotations

import functools
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any, Final

from loopwarden.constants import SECTORS_SCHEMA_VERSION
from loopwarden.domain.models import CONFIDENCE_RANK, Confidence, Coverage
from loopwarden.utils.numeric import round_half_up

EMA_OLD_WEIGHT: Final[float] = 0.7
OUTCOME_DECAY_INTERVAL: Final[int] = 20
OUTCOME_DECAY_FACTOR: Final[float] = 0.7
POLISHED_MIN_SCANS: Final[int] = 5
POLISHED_YIELD_THRESHOLD: Final[float] = 0.3
BARREN_MIN_SCANS: Final[int] = 2
BARREN_YIELD_THRESHOLD: Final[float] = 0.5
HIGH_FAILURE_MIN: Final[int] = 3
HIGH_FAILURE_RATE: Final[float] = 0.6
AFFINITY_BOOST_RATE: Final[float] = 0.6
AFFINITY_SUPPRESS_RATE: Final[float] = 0.3
AFFINITY_MIN_ATTEMPTS: Final[int] = 3
TEMPORAL_DECAY_DAYS: Final[float] = 7.0
FILE_COUNT_CHANGE_LIMIT: Final[float] = 0.2
MS_PER_DAY: Final[int] = 86_400_000
ROOT_SECTOR_SCOPE: Final[str] = "./{*,.*}"


class SectorDifficulty(StrEnum):
    EASY = "easy"
    MODERATE = "moderate"
    HARD = "hard"


class ScopeAdjustment(StrEnum):
    NARROW = "narrow"
    WIDEN = "widen"
    STABLE = "stable"


# On-disk key for each Sector attribute.
_DISK_KEYS: Final[dict[str, str]] = {
    "path": "path",
    "purpose": "purpose",
    "production": "production",
    "file_count": "fileCount",
    "production_file_count": "productionFileCount",
    "classification_confidence": "classificationConfidence",
    "last_scanned_at": "lastScannedAt",
    "last_scanned_cycle": "lastScannedCycle",
    "scan_count": "scanCount",
    "proposal_yield": "proposalYield",
    "success_count": "successCount",
    "failure_count": "failureCount",
    "polished_at": "polishedAt",
    "merge_count": "mergeCount",
    "closed_count": "closedCount",
    "category_stats": "categoryStats",
}


@dataclass(slots=True)
class Sector:
    """Scan and outcome history for one repository region.

    Timestamps are epoch milliseconds; ``0`` means never.
    """

    path: str
    purpose: str = ""
    production: bool = True
    file_count: int = 0
    production_file_count: int = 0
    classification_confidence: str = Confidence.LOW.value
    last_scanned_at: int = 0
    last_scanned_cycle: int = 0
    scan_count: int = 0
    proposal_yield: float = 0.0
    success_count: int = 0
    failure_count: int = 0
    polished_at: int = 0
    merge_count: int = 0
    closed_count: int = 0
    category_stats: dict[str, dict[str, int]] = field(default_factory=dict)

    @property
    def never_scanned(self) -> bool:
        return self.last_scanned_at == 0

    @property
    def outcome_total(self) -> int:
        return self.success_count + self.failure_count

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for attribute, key in _DISK_KEYS.items():
            value = getattr(self, attribute)
            if attribute == "category_stats":
                value = {name: dict(stats) for name, stats in value.items()}
            payload[key] = value
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Sector:
        """Normalize a persisted sector, filling defaults for missing fields."""
        values: dict[str, Any] = {}
        for attribute, key in _DISK_KEYS.items():
            if key in payload and payload[key] is not None:
                values[attribute] = payload[key]
            elif attribute in payload and payload[attribute] is not None:
                values[attribute] = payload[attribute]

        file_count = int(values.get("file_count", 0))
        stats = values.get("category_stats") or {}
        return cls(
            path=normalize_sector_path(str(values.get("path", "."))),
            purpose=str(values.get("purpose", "")),
            production=bool(values.get("production", True)),
            file_count=file_count,
            production_file_count=int(values.get("production_file_count", file_count)),
            classification_confidence=str(
                values.get("classification_confidence", Confidence.LOW.value)
            ),
            last_scanned_at=int(values.get("last_scanned_at", 0)),
            last_scanned_cycle=int(values.get("last_scanned_cycle", 0)),
            scan_count=int(values.get("scan_count", 0)),
            proposal_yield=float(values.get("proposal_yield", 0.0)),
            success_count=int(values.get("success_count", 0)),
            failure_count=int(values.get("failure_count", 0)),
            polished_at=int(values.get("polished_at", 0)),
            merge_count=int(values.get("merge_count", 0)),
            closed_count=int(values.get("closed_count", 0)),
            category_stats={
                str(name): {
                    "success": int(entry.get("success", 0)),
                    "failure": int(entry.get("failure", 0)),
                }
                for name, entry in dict(stats).items()
            },
        )


@dataclass(slots=True)
class SectorState:
    sectors: list[Sector] = field(default_factory=list)
    built_at: str = ""
    version: int = SECTORS_SCHEMA_VERSION

    def find(self, path: str) -> Sector | None:
        target = normalize_sector_path(path)
        for sector in self.sectors:
            if sector.path == target:
                return sector
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "builtAt": self.built_at,
            "sectors": [sector.to_dict() for sector in self.sectors],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> SectorState:
        version = int(payload.get("version", 0))
        if version != SECTORS_SCHEMA_VERSION:
            raise ValueError(
                f"unsupported sectors schema version {version}; "
                f"expected {SECTORS_SCHEMA_VERSION}"
            )
        raw = payload.get("sectors")
        if not isinstance(raw, list):
            raise ValueError("sectors document must contain a 'sectors' list")
        return cls(
            sectors=[Sector.from_dict(item) for item in raw if isinstance(item, Mapping)],
            built_at=str(payload.get("builtAt", "")),
            version=version,
        )


@dataclass(frozen=True, slots=True)
class SectorPick:
    sector: Sector
    scope: str


@dataclass(frozen=True, slots=True)
class CoverageMetrics:
    scanned_sectors: int
    total_sectors: int
    scanned_files: int
    total_files: int
    percent: int
    sector_percent: int
    unclassified_sectors: int

    def to_coverage(self) -> Coverage:
        return Coverage(
            sectors_scanned=self.scanned_sectors,
            sectors_total=self.total_sectors,
            files_scanned=self.scanned_files,
            files_total=self.total_files,
        )


@dataclass(frozen=True, slots=True)
class CategoryAffinity:
    boost: tuple[str, ...] = ()
    suppress: tuple[str, ...] = ()


def normalize_sector_path(path: str) -> str:
    """Trim, use forward slashes, strip a leading ``./`` and trailing ``/``."""
    normalized = path.strip().replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:].lstrip("/")
    normalized = normalized.rstrip("/")
    return normalized or "."


def sector_to_scope(sector: Sector) -> str:
    path = normalize_sector_path(sector.path)
    if path == ".":
        return ROOT_SECTOR_SCOPE
    return f"{path}/**"


def build_sectors(modules: Iterable[Mapping[str, Any]]) -> list[Sector]:
    """Seed one sector per detected module, keeping the first of each path."""
    seen: set[str] = set()
    sectors: list[Sector] = []
    for module in modules:
        path = normalize_sector_path(str(module.get("path", ".")))
        if path in seen:
            continue
        seen.add(path)
        file_count = int(module.get("file_count") or 0)
        production_files = module.get("production_file_count")
        production = module.get("production")
        sectors.append(
            Sector(
                path=path,
                purpose=str(module.get("purpose") or ""),
                production=True if production is None else bool(production),
                file_count=file_count,
                production_file_count=(
                    file_count if production_files is None else int(production_files)
                ),
                classification_confidence=str(
                    module.get("classification_confidence") or Confidence.LOW.value
                ),
            )
        )
    return sectors


def merge_sectors(fresh: Iterable[Sector], previous: Iterable[Sector]) -> list[Sector]:
    """Carry history from ``previous`` onto ``fresh`` by path.

    A file-count change above 20% keeps the history but clears ``polished_at``.
    """
    by_path = {sector.path: sector for sector in previous}
    merged: list[Sector] = []
    for sector in fresh:
        prior = by_path.get(sector.path)
        if prior is None:
            merged.append(replace(sector, category_stats=_copy_stats(sector.category_stats)))
            continue
        changed = (
            prior.file_count > 0
            and abs(sector.file_count - prior.file_count) / prior.file_count
            > FILE_COUNT_CHANGE_LIMIT
        )
        merged.append(
            replace(
                sector,
                last_scanned_at=prior.last_scanned_at,
                last_scanned_cycle=prior.last_scanned_cycle,
                scan_count=prior.scan_count,
                proposal_yield=prior.proposal_yield,
                success_count=prior.success_count,
                failure_count=prior.failure_count,
                polished_at=0 if changed else prior.polished_at,
                merge_count=prior.merge_count,
                closed_count=prior.closed_count,
                category_stats=_copy_stats(prior.category_stats),
            )
        )
    return merged


def is_polished(sector: Sector) -> bool:
    return (
        sector.scan_count >= POLISHED_MIN_SCANS
        and sector.proposal_yield < POLISHED_YIELD_THRESHOLD
    )


def is_barren(sector: Sector) -> bool:
    return (
        sector.scan_count > BARREN_MIN_SCANS and sector.proposal_yield < BARREN_YIELD_THRESHOLD
    )


def is_high_failure(sector: Sector) -> bool:
    if sector.failure_count < HIGH_FAILURE_MIN:
        return False
    return sector.failure_count / sector.outcome_total > HIGH_FAILURE_RATE


def pick_next_sector(state: SectorState, current_cycle: int, now: int) -> SectorPick | None:
    """Choose the next sector to scout, or ``None`` when no sector has files.

    Priority: never scanned, not scanned this cycle, not polished, neither
    barren nor high-failure, lower classification confidence, higher yield,
    staler (both >7 days and >1 day apart), then path.
    """
    with_files = [sector for sector in state.sectors if sector.file_count > 0]
    if not with_files:
        return None

    primary = [sector for sector in with_files if sector.production]
    if any(_is_cycle_fresh_candidate(sector, current_cycle) for sector in primary):
        candidates = primary
    else:
        candidates = with_files

    def compare(left: Sector, right: Sector) -> int:
        return _compare_sectors(left, right, current_cycle, now)

    chosen = sorted(candidates, key=functools.cmp_to_key(compare))[0]

    polished = is_polished(chosen)
    if polished and not chosen.polished_at:
        chosen.polished_at = now
    elif not polished and chosen.polished_at:
        chosen.polished_at = 0

    return SectorPick(sector=chosen, scope=sector_to_scope(chosen))


def record_scan_result(
    state: SectorState,
    path: str,
    current_cycle: int,
    proposal_count: int,
    reclassification: Mapping[str, Any] | None = None,
    *,
    now: int,
) -> Sector | None:
    sector = state.find(path)
    if sector is None:
        return None

    sector.last_scanned_at = now
    sector.last_scanned_cycle = current_cycle
    sector.scan_count += 1
    sector.proposal_yield = _ema(sector.proposal_yield, proposal_count)

    if reclassification:
        confidence = reclassification.get("confidence")
        if confidence in (Confidence.MEDIUM.value, Confidence.HIGH.value):
            production = reclassification.get("production")
            if production is not None:
                sector.production = bool(production)
            sector.classification_confidence = str(confidence)
    return sector


def record_ticket_outcome(
    state: SectorState, path: str, success: bool, category: str | None = None
) -> Sector | None:
    sector = state.find(path)
    if sector is None:
        return None

    if success:
        sector.success_count += 1
    else:
        sector.failure_count += 1

    total = sector.outcome_total
    if total > 0 and total % OUTCOME_DECAY_INTERVAL == 0:
        sector.success_count = round_half_up(sector.success_count * OUTCOME_DECAY_FACTOR)
        sector.failure_count = round_half_up(sector.failure_count * OUTCOME_DECAY_FACTOR)

    if category:
        stats = sector.category_stats.setdefault(category, {"success": 0, "failure": 0})
        stats["success" if success else "failure"] += 1
    return sector


def update_proposal_yield(state: SectorState, path: str, accepted_count: int) -> None:
    sector = state.find(path)
    if sector is not None:
        sector.proposal_yield = _ema(sector.proposal_yield, accepted_count)


def record_merge_outcome(state: SectorState, path: str, merged: bool) -> None:
    sector = state.find(path)
    if sector is None:
        return
    if merged:
        sector.merge_count += 1
    else:
        sector.closed_count += 1


def get_sector_category_affinity(sector: Sector) -> CategoryAffinity:
    boost: list[str] = []
    suppress: list[str] = []
    for category, stats in sector.category_stats.items():
        total = stats.get("success", 0) + stats.get("failure", 0)
        if total < AFFINITY_MIN_ATTEMPTS:
            continue
        rate = stats.get("success", 0) / total
        if rate > AFFINITY_BOOST_RATE:
            boost.append(category)
        elif rate < AFFINITY_SUPPRESS_RATE:
            suppress.append(category)
    return CategoryAffinity(boost=tuple(boost), suppress=tuple(suppress))


def get_sector_difficulty(sector: Sector) -> SectorDifficulty:
    total = sector.outcome_total
    if total < 3:
        return SectorDifficulty.EASY
    fail_rate = sector.failure_count / total
    if fail_rate > HIGH_FAILURE_RATE:
        return SectorDifficulty.HARD
    if fail_rate > AFFINITY_SUPPRESS_RATE:
        return SectorDifficulty.MODERATE
    return SectorDifficulty.EASY


def get_sector_min_confidence(sector: Sector, base: int) -> int:
    difficulty = get_sector_difficulty(sector)
    if difficulty is SectorDifficulty.HARD:
        return base + 20
    if difficulty is SectorDifficulty.MODERATE:
        return base + 10
    return base


def compute_coverage(state: SectorState) -> CoverageMetrics:
    """Production-only rollup of scanned sectors and files."""
    scanned_sectors = 0
    total_sectors = 0
    scanned_files = 0
    total_files = 0
    unclassified = 0
    for sector in state.sectors:
        if not sector.production:
            continue
        total_sectors += 1
        total_files += sector.production_file_count
        if sector.scan_count > 0:
            scanned_sectors += 1
            scanned_files += sector.production_file_count
        if sector.classification_confidence == Confidence.LOW.value:
            unclassified += 1

    percent = round_half_up(scanned_files / total_files * 100) if total_files else 0
    sector_percent = round_half_up(scanned_sectors / total_sectors * 100) if total_sectors else 0
    return CoverageMetrics(
        scanned_sectors=scanned_sectors,
        total_sectors=total_sectors,
        scanned_files=scanned_files,
        total_files=total_files,
        percent=percent,
        sector_percent=sector_percent,
        unclassified_sectors=unclassified,
    )


def build_sector_summary(state: SectorState, current_path: str, limit: int = 5) -> str:
    lines = ["### Nearby Sectors"]

    scanned = sorted(
        (s for s in state.sectors if s.scan_count > 0 and s.path != current_path),
        key=lambda s: s.last_scanned_at,
        reverse=True,
    )[:limit]
    if scanned:
        lines.append("Recently scanned:")
        lines.extend(
            f"- `{s.path}` (yield: {s.proposal_yield:.1f}, scans: {s.scan_count})"
            for s in scanned
        )

    unscanned = sorted(
        (
            s
            for s in state.sectors
            if s.scan_count == 0 and s.file_count > 0 and s.path != current_path
        ),
        key=lambda s: s.file_count,
        reverse=True,
    )[:limit]
    if unscanned:
        lines.append("Top unscanned:")
        lines.extend(f"- `{s.path}` ({s.file_count} files)" for s in unscanned)

    return "\n".join(lines)


def suggest_scope_adjustment(state: SectorState) -> ScopeAdjustment:
    scanned = [s for s in state.sectors if s.production and s.scan_count > 0]
    if len(scanned) < 3:
        return ScopeAdjustment.STABLE

    yields = sorted((s.proposal_yield for s in scanned), reverse=True)
    average = sum(yields) / len(yields)
    if average < POLISHED_YIELD_THRESHOLD:
        return ScopeAdjustment.WIDEN

    top = yields[:3]
    if sum(top) / len(top) > average * 2:
        return ScopeAdjustment.NARROW
    return ScopeAdjustment.STABLE


def _is_cycle_fresh_candidate(sector: Sector, current_cycle: int) -> bool:
    return sector.never_scanned or sector.last_scanned_cycle < current_cycle


def _compare_sectors(left: Sector, right: Sector, current_cycle: int, now: int) -> int:
    # Each rule yields (left_rank, right_rank); the lower rank sorts first.
    ranked_rules = (
        (0 if left.never_scanned else 1, 0 if right.never_scanned else 1),
        (
            0 if left.last_scanned_cycle < current_cycle else 1,
            0 if right.last_scanned_cycle < current_cycle else 1,
        ),
        (int(is_polished(left)), int(is_polished(right))),
        (
            int(is_barren(left) or is_high_failure(left)),
            int(is_barren(right) or is_high_failure(right)),
        ),
        (
            CONFIDENCE_RANK.get(left.classification_confidence, 0),
            CONFIDENCE_RANK.get(right.classification_confidence, 0),
        ),
    )
    for left_rank, right_rank in ranked_rules:
        if left_rank != right_rank:
            return -1 if left_rank < right_rank else 1

    if left.proposal_yield != right.proposal_yield:
        return -1 if left.proposal_yield > right.proposal_yield else 1

    left_days = (now - left.last_scanned_at) / MS_PER_DAY
    right_days = (now - right.last_scanned_at) / MS_PER_DAY
    if (
        left_days > TEMPORAL_DECAY_DAYS
        and right_days > TEMPORAL_DECAY_DAYS
        and abs(left_days - right_days) > 1
    ):
        return -1 if left_days > right_days else 1

    if left.path != right.path:
        return -1 if left.path < right.path else 1
    return 0


def _ema(previous: float, observation: float) -> float:
    return EMA_OLD_WEIGHT * previous + (1 - EMA_OLD_WEIGHT) * observation


def _copy_stats(stats: Mapping[str, Mapping[str, int]]) -> dict[str, dict[str, int]]:
    return {name: dict(entry) for name, entry in stats.items()}


__all__ = [
    "CategoryAffinity",
    "CoverageMetrics",
    "ScopeAdjustment",
    "Sector",
    "SectorDifficulty",
    "SectorPick",
    "SectorState",
    "build_sector_summary",
    "build_sectors",
    "compute_coverage",
    "get_sector_category_affinity",
    "get_sector_difficulty",
    "get_sector_min_confidence",
    "is_barren",
    "is_high_failure",
    "is_polished",
    "merge_sectors",
    "normalize_sector_path",
    "pick_next_sector",
    "record_merge_outcome",
    "record_scan_result",
    "record_ticket_outcome",
    "sector_to_scope",
    "suggest_scope_adjustment",
    "update_proposal_yield",
]
