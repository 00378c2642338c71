"""Unit tests for the sector scheduler."""

from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from loopwarden.knowledge_plane.sectors import (
    MS_PER_DAY,
    ROOT_SECTOR_SCOPE,
    ScopeAdjustment,
    Sector,
    SectorDifficulty,
    SectorState,
    build_sector_summary,
    build_sectors,
    compute_coverage,
    get_sector_category_affinity,
    get_sector_difficulty,
    get_sector_min_confidence,
    merge_sectors,
    normalize_sector_path,
    pick_next_sector,
    record_scan_result,
    record_ticket_outcome,
    sector_to_scope,
    suggest_scope_adjustment,
)

NOW = 1_800_000_000_000


def _sector(path: str, **changes: object) -> Sector:
    values: dict[str, object] = {"file_count": 10, "production_file_count": 10}
    values.update(changes)
    return Sector(path=path, **values)  # type: ignore[arg-type]


def test_never_scanned_sector_wins() -> None:
    state = SectorState(
        sectors=[
            _sector("src/a", last_scanned_at=NOW - 1000, last_scanned_cycle=0, scan_count=1),
            _sector("src/b"),
        ]
    )
    pick = pick_next_sector(state, 1, NOW)

    assert pick is not None
    assert pick.sector.path == "src/b"
    assert pick.scope == "src/b/**"


def test_falls_back_to_non_production_once_production_is_fresh() -> None:
    state = SectorState(
        sectors=[
            _sector("src", last_scanned_at=NOW - 1000, last_scanned_cycle=1, scan_count=1),
            _sector("scripts", production=False),
        ]
    )
    pick = pick_next_sector(state, 1, NOW)

    assert pick is not None
    assert pick.sector.path == "scripts"


def test_no_sector_with_files_returns_none() -> None:
    assert pick_next_sector(SectorState(sectors=[_sector("src", file_count=0)]), 1, NOW) is None


def test_polished_mark_is_set_and_cleared_on_pick() -> None:
    sector = _sector("src", last_scanned_at=NOW - 1, scan_count=5, proposal_yield=0.1)
    state = SectorState(sectors=[sector])

    pick_next_sector(state, 1, NOW)
    assert sector.polished_at == NOW

    sector.proposal_yield = 2.0
    pick_next_sector(state, 1, NOW)
    assert sector.polished_at == 0


def test_staler_sector_wins_final_tiebreak() -> None:
    state = SectorState(
        sectors=[
            _sector("a", last_scanned_at=NOW - 8 * MS_PER_DAY, scan_count=1),
            _sector("b", last_scanned_at=NOW - 10 * MS_PER_DAY, scan_count=1),
        ]
    )
    pick = pick_next_sector(state, 1, NOW)
    assert pick is not None
    assert pick.sector.path == "b"


def test_root_sector_scope_and_path_normalization() -> None:
    assert sector_to_scope(Sector(path=".")) == ROOT_SECTOR_SCOPE
    assert normalize_sector_path("./src/lib/") == "src/lib"
    assert normalize_sector_path("  ") == "."


def test_record_scan_result_updates_yield_and_respects_confidence() -> None:
    state = SectorState(sectors=[_sector("src")])

    record_scan_result(
        state, "src", 2, 10, {"production": False, "confidence": "low"}, now=NOW
    )
    sector = state.find("src")
    assert sector is not None
    assert sector.proposal_yield == pytest.approx(3.0)
    assert sector.scan_count == 1
    assert sector.last_scanned_cycle == 2
    assert sector.production is True

    record_scan_result(state, "./src/", 3, 0, {"production": False, "confidence": "high"}, now=NOW)
    assert sector.production is False
    assert sector.classification_confidence == "high"
    assert record_scan_result(state, "missing", 1, 0, now=NOW) is None


def test_outcome_counters_decay_every_twenty_observations() -> None:
    state = SectorState(sectors=[_sector("src", success_count=19)])
    record_ticket_outcome(state, "src", False, "docs")
    sector = state.find("src")

    assert sector is not None
    assert sector.success_count == 13
    assert sector.failure_count == 1
    assert sector.category_stats == {"docs": {"success": 0, "failure": 1}}


def test_merge_keeps_history_and_clears_polish_on_large_change() -> None:
    previous = [_sector("src", scan_count=4, polished_at=5, proposal_yield=1.5)]
    stable = merge_sectors([_sector("src", file_count=11)], previous)
    moved = merge_sectors([_sector("src", file_count=13)], previous)

    assert stable[0].scan_count == 4
    assert stable[0].polished_at == 5
    assert moved[0].proposal_yield == 1.5
    assert moved[0].polished_at == 0


@settings(max_examples=50, deadline=None)
@given(
    previous_count=st.integers(min_value=0, max_value=50),
    fresh_count=st.integers(min_value=0, max_value=50),
    scans=st.integers(min_value=0, max_value=9),
)
def test_merge_is_idempotent(previous_count: int, fresh_count: int, scans: int) -> None:
    previous = [_sector("src", file_count=previous_count, scan_count=scans, polished_at=7)]
    fresh = [_sector("src", file_count=fresh_count), _sector("lib")]

    once = merge_sectors(fresh, previous)
    assert merge_sectors(once, previous) == once


def test_build_sectors_deduplicates_paths() -> None:
    sectors = build_sectors(
        [
            {"path": "./src", "file_count": 4, "production": True},
            {"path": "src/", "file_count": 9},
            {"path": "docs", "file_count": 2, "production_file_count": 0},
        ]
    )
    assert [sector.path for sector in sectors] == ["src", "docs"]
    assert sectors[0].file_count == 4
    assert sectors[1].production_file_count == 0


def test_coverage_counts_production_sectors_only() -> None:
    state = SectorState(
        sectors=[
            _sector("src", scan_count=1, classification_confidence="high"),
            _sector("lib", production_file_count=30),
            _sector("scripts", production=False, scan_count=3),
        ]
    )
    coverage = compute_coverage(state)

    assert coverage.scanned_sectors == 1
    assert coverage.total_sectors == 2
    assert coverage.percent == 25
    assert coverage.sector_percent == 50
    assert coverage.unclassified_sectors == 1
    assert coverage.to_coverage().files_total == 40


def test_affinity_difficulty_and_min_confidence() -> None:
    sector = _sector(
        "src",
        success_count=1,
        failure_count=4,
        category_stats={
            "docs": {"success": 3, "failure": 0},
            "perf": {"success": 0, "failure": 3},
            "test": {"success": 1, "failure": 0},
        },
    )
    affinity = get_sector_category_affinity(sector)

    assert affinity.boost == ("docs",)
    assert affinity.suppress == ("perf",)
    assert get_sector_difficulty(sector) is SectorDifficulty.HARD
    assert get_sector_min_confidence(sector, 50) == 70
    assert get_sector_min_confidence(_sector("lib"), 50) == 50


def test_sector_state_round_trip_uses_disk_keys() -> None:
    state = SectorState(sectors=[_sector("src", scan_count=2)], built_at="2026-01-01")
    payload = state.to_dict()

    assert payload["sectors"][0]["fileCount"] == 10
    assert SectorState.from_dict(payload) == state
    with pytest.raises(ValueError, match="schema version"):
        SectorState.from_dict({"version": 1, "sectors": []})


def test_summary_and_scope_adjustment() -> None:
    state = SectorState(
        sectors=[
            _sector("src", scan_count=2, last_scanned_at=NOW, proposal_yield=0.1),
            _sector("lib", scan_count=1, last_scanned_at=NOW - 5, proposal_yield=0.1),
            _sector("app", scan_count=1, last_scanned_at=NOW - 9, proposal_yield=0.1),
            _sector("docs", file_count=40),
        ]
    )
    summary = build_sector_summary(state, "src")

    assert "- `lib` (yield: 0.1, scans: 1)" in summary
    assert "- `docs` (40 files)" in summary
    assert "`src`" not in summary
    assert suggest_scope_adjustment(state) is ScopeAdjustment.WIDEN
