"""
loopwarden — per-run folder layout

File: src/loopwarden/persistence/run_folder.py

Purpose
- Own the on-disk layout of one run under ``<root>/.state/runs/<run_id>/``:
  ``state.json``, ``events.ndjson``, ``diffs/`` and ``artifacts/``.

Functional requirements
- ``state.json`` is replaced atomically on every write.
- ``events.ndjson`` is append-only, one compact JSON object per line.
- Artifact and diff names are reduced to a single safe path component.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Final

from loopwarden.constants import (
    ARTIFACTS_DIR_NAME,
    DIFFS_DIR_NAME,
    EVENTS_FILE,
    RUNS_DIR_NAME,
    STATE_DIR_NAME,
    STATE_FILE,
)
from loopwarden.domain.events import RunEvent
from loopwarden.domain.models import RunState
from loopwarden.errors import RunStateError
from loopwarden.utils.fs import PathLike, append_line, atomic_write, ensure_dir

_UNSAFE_NAME_CHARS: Final[re.Pattern[str]] = re.compile(r"[^A-Za-z0-9._-]+")


def state_dir(repo_root: PathLike) -> Path:
    return Path(repo_root) / STATE_DIR_NAME


def runs_dir(repo_root: PathLike) -> Path:
    return state_dir(repo_root) / RUNS_DIR_NAME


def safe_file_name(name: str) -> str:
    """Collapse ``name`` to one path component without separators or dot-dot."""
    cleaned = _UNSAFE_NAME_CHARS.sub("_", name).strip("._")
    return cleaned or "unnamed"


class RunFolder:
    """File-system view of a single run."""

    def __init__(self, repo_root: PathLike, run_id: str) -> None:
        self._repo_root = Path(repo_root)
        self._run_id = run_id
        self._path = runs_dir(repo_root) / run_id

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def path(self) -> Path:
        return self._path

    @property
    def state_path(self) -> Path:
        return self._path / STATE_FILE

    @property
    def events_path(self) -> Path:
        return self._path / EVENTS_FILE

    @property
    def diffs_dir(self) -> Path:
        return self._path / DIFFS_DIR_NAME

    @property
    def artifacts_dir(self) -> Path:
        return self._path / ARTIFACTS_DIR_NAME

    def exists(self) -> bool:
        return self.state_path.is_file()

    def initialize(self) -> None:
        ensure_dir(self.diffs_dir)
        ensure_dir(self.artifacts_dir)

    def write_state(self, state: RunState) -> None:
        ensure_dir(self._path)
        rendered = json.dumps(state.to_dict(), sort_keys=True, indent=2)
        atomic_write(self.state_path, rendered + "\n")

    def read_state(self) -> RunState:
        try:
            raw = self.state_path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise RunStateError(f"no state.json for run {self._run_id} at {self._path}") from exc
        except OSError as exc:
            raise RunStateError(f"cannot read {self.state_path}: {exc}") from exc
        try:
            return RunState.from_dict(json.loads(raw))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            raise RunStateError(f"corrupt state.json for run {self._run_id}: {exc}") from exc

    def append_events(self, events: Iterable[RunEvent]) -> None:
        ensure_dir(self._path)
        for event in events:
            append_line(self.events_path, event.to_json_line())

    def read_events(self) -> list[RunEvent]:
        if not self.events_path.exists():
            return []
        events: list[RunEvent] = []
        with self.events_path.open("r", encoding="utf-8") as handle:
            for line in handle:
                stripped = line.strip()
                if stripped:
                    events.append(RunEvent.from_dict(json.loads(stripped)))
        return events

    def write_artifact(self, name: str, content: str | dict[str, Any] | list[Any]) -> Path:
        ensure_dir(self.artifacts_dir)
        target = self.artifacts_dir / safe_file_name(name)
        if isinstance(content, str):
            atomic_write(target, content)
        else:
            atomic_write(target, json.dumps(content, indent=2, sort_keys=True) + "\n")
        return target

    def write_diff(self, step: int, ticket_id: str, diff: str) -> Path:
        ensure_dir(self.diffs_dir)
        target = self.diffs_dir / f"{step}-{safe_file_name(ticket_id)}.patch"
        atomic_write(target, diff)
        return target


__all__ = ["RunFolder", "runs_dir", "safe_file_name", "state_dir"]
