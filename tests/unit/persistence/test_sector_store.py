"""Unit tests for sector state persistence."""

from __future__ import annotations

import json
from pathlib import Path

from loopwarden.knowledge_plane.sectors import Sector, SectorState
from loopwarden.persistence.sector_store import SectorStore


def test_missing_and_corrupt_files_load_as_none(tmp_path: Path) -> None:
    store = SectorStore(tmp_path)
    assert store.load() is None

    store.path.parent.mkdir(parents=True)
    store.path.write_text("[]", encoding="utf-8")
    assert store.load() is None

    store.path.write_text(json.dumps({"version": 1, "sectors": []}), encoding="utf-8")
    assert store.load() is None


def test_save_and_load_round_trip(tmp_path: Path) -> None:
    store = SectorStore(tmp_path)
    state = SectorState(sectors=[Sector(path="src", file_count=4, scan_count=2)], built_at="b")

    assert store.try_save(state)
    assert store.path == tmp_path / ".state" / "sectors.json"
    assert json.loads(store.path.read_text(encoding="utf-8"))["version"] == 2
    assert store.load() == state


def test_refresh_carries_history_forward(tmp_path: Path) -> None:
    store = SectorStore(tmp_path)
    store.save(
        SectorState(
            sectors=[Sector(path="src", file_count=10, scan_count=3, proposal_yield=1.2)]
        )
    )

    refreshed = store.refresh(
        [{"path": "src", "file_count": 10}, {"path": "docs", "file_count": 2}]
    )

    src = refreshed.find("src")
    assert src is not None
    assert src.scan_count == 3
    assert src.proposal_yield == 1.2
    assert refreshed.find("docs") is not None
    assert refreshed.built_at.endswith("Z")
    assert store.load() == refreshed
