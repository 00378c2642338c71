"""
loopwarden — sector state persistence

File: src/loopwarden/persistence/sector_store.py

Purpose
- Read and write ``<root>/.state/sectors.json`` (``{version, builtAt, sectors}``).

Functional requirements
- Writes are atomic.
- A missing, unreadable or wrong-version file yields ``None`` with a logged
  warning; losing sector history degrades scheduling, not correctness.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from loopwarden.constants import SECTORS_FILE
from loopwarden.knowledge_plane.sectors import SectorState, build_sectors, merge_sectors
from loopwarden.persistence.run_folder import state_dir
from loopwarden.utils.fs import PathLike, atomic_write, ensure_dir


class SectorStore:
    def __init__(self, repo_root: PathLike, *, logger: Any | None = None) -> None:
        self._path = state_dir(repo_root) / SECTORS_FILE
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> SectorState | None:
        if not self._path.exists():
            return None
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
            if not isinstance(payload, Mapping):
                raise ValueError("sectors document must be a JSON object")
            return SectorState.from_dict(payload)
        except (OSError, ValueError, TypeError) as exc:
            self._logger.warning("sector_store_load_failed", path=str(self._path), error=str(exc))
            return None

    def save(self, state: SectorState) -> None:
        ensure_dir(self._path.parent)
        atomic_write(self._path, json.dumps(state.to_dict(), indent=2) + "\n")

    def try_save(self, state: SectorState) -> bool:
        """Best-effort save for callers that must not fail on sector bookkeeping."""
        try:
            self.save(state)
        except OSError as exc:
            self._logger.warning("sector_store_save_failed", path=str(self._path), error=str(exc))
            return False
        return True

    def refresh(self, modules: Iterable[Mapping[str, Any]]) -> SectorState:
        """Rebuild from detected modules, carry over persisted history, and save."""
        fresh = build_sectors(modules)
        previous = self.load()
        sectors = merge_sectors(fresh, previous.sectors) if previous is not None else fresh
        state = SectorState(
            sectors=sectors,
            built_at=datetime.now(tz=UTC).isoformat(timespec="seconds").replace("+00:00", "Z"),
        )
        self.save(state)
        self._logger.info("sectors_refreshed", path=str(self._path), sectors=len(sectors))
        return state


__all__ = ["SectorStore"]
