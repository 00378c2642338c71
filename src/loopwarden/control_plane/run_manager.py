"""
loopwarden — run lifecycle manager

File: src/loopwarden/control_plane/run_manager.py

Purpose
- Own the active ``RunState`` for one repository: create or resume a run,
  hold the per-repository session lock, and commit transitions.
- Report budget exhaustion, budget warnings and a compact digest.

Functional requirements
- ``commit`` writes state.json atomically first, then appends the
  transition's events to events.ndjson; artifact and diff effects are
  written by the same commit.
- An ended run rejects every further commit with ``RunEndedError``.
- Budget exhaustion is advisory; the manager never changes phase on its own.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from loopwarden import constants
from loopwarden.control_plane.transitions import Transition, WriteArtifact, WriteDiff
from loopwarden.domain import ids
from loopwarden.domain.events import RunEvent, iso_timestamp
from loopwarden.domain.models import EventType, Phase, RunState
from loopwarden.errors import NoActiveRunError, RunAlreadyActiveError, RunEndedError
from loopwarden.persistence.run_folder import RunFolder
from loopwarden.persistence.session_lock import SessionLock
from loopwarden.spindle.detector import compute_spindle_risk
from loopwarden.utils.fs import PathLike

if TYPE_CHECKING:
    from loopwarden.config.settings import RunSettings

Clock = Callable[[], int]


def epoch_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True, slots=True)
class RunOptions:
    """Session settings fixed at run creation."""

    project_id: str
    step_budget: int = constants.DEFAULT_STEP_BUDGET
    ticket_step_budget: int = constants.DEFAULT_TICKET_STEP_BUDGET
    max_lines_per_ticket: int = constants.DEFAULT_MAX_LINES_PER_TICKET
    max_tool_calls_per_ticket: int = constants.DEFAULT_MAX_TOOL_CALLS_PER_TICKET
    max_prs: int = constants.DEFAULT_MAX_PRS
    min_confidence: int = constants.DEFAULT_MIN_CONFIDENCE
    min_impact_score: int = constants.DEFAULT_MIN_IMPACT_SCORE
    max_proposals_per_scout: int = constants.DEFAULT_MAX_PROPOSALS_PER_SCOUT
    scope: str = constants.DEFAULT_SCOPE
    categories: tuple[str, ...] = constants.DEFAULT_CATEGORIES
    parallel: int = constants.DEFAULT_PARALLEL
    max_cycles: int = constants.DEFAULT_MAX_CYCLES
    create_prs: bool = False
    draft_prs: bool = True
    cross_verify: bool = False
    skip_review: bool = False
    time_budget_ms: int | None = None
    run_id: str | None = None

    def __post_init__(self) -> None:
        if not self.project_id:
            raise ValueError("RunOptions.project_id must be non-empty")
        for name in (
            "step_budget",
            "ticket_step_budget",
            "max_tool_calls_per_ticket",
            "max_lines_per_ticket",
            "max_prs",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"RunOptions.{name} must be > 0")
        if self.max_cycles < 1:
            raise ValueError("RunOptions.max_cycles must be >= 1")
        if self.time_budget_ms is not None and self.time_budget_ms <= 0:
            raise ValueError("RunOptions.time_budget_ms must be > 0 when set")

    @classmethod
    def from_settings(cls, settings: RunSettings, project_id: str, **overrides: Any) -> RunOptions:
        values: dict[str, Any] = {
            "project_id": project_id,
            "step_budget": settings.step_budget,
            "ticket_step_budget": settings.ticket_step_budget,
            "max_lines_per_ticket": settings.max_lines_per_ticket,
            "max_tool_calls_per_ticket": settings.max_tool_calls_per_ticket,
            "max_prs": settings.max_prs,
            "min_confidence": settings.min_confidence,
            "min_impact_score": settings.min_impact_score,
            "max_proposals_per_scout": settings.max_proposals_per_scout,
            "scope": settings.scope,
            "categories": tuple(settings.categories),
            "parallel": settings.parallel,
            "max_cycles": settings.max_cycles,
            "create_prs": settings.create_prs,
            "draft_prs": settings.draft_prs,
            "cross_verify": settings.cross_verify,
            "skip_review": settings.skip_review,
            "time_budget_ms": settings.time_budget_ms,
        }
        values.update(overrides)
        return cls(**values)


@dataclass(frozen=True, slots=True)
class BudgetCheck:
    exhausted: bool
    which: str | None = None


@dataclass(frozen=True, slots=True)
class RunDigest:
    step: int
    phase: Phase
    tickets_completed: int
    tickets_failed: int
    budget_remaining: int
    ticket_budget_remaining: int
    spindle_risk: str
    time_remaining_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "step": self.step,
            "phase": self.phase.value,
            "tickets_completed": self.tickets_completed,
            "tickets_failed": self.tickets_failed,
            "budget_remaining": self.budget_remaining,
            "ticket_budget_remaining": self.ticket_budget_remaining,
            "spindle_risk": self.spindle_risk,
        }
        if self.time_remaining_ms is not None:
            payload["time_remaining_ms"] = self.time_remaining_ms
        return payload


class RunManager:
    """Single owner of a repository's active run and its on-disk folder."""

    def __init__(
        self,
        repo_root: PathLike,
        *,
        clock: Clock | None = None,
        lock: SessionLock | None = None,
        logger: Any | None = None,
    ) -> None:
        self._repo_root = Path(repo_root)
        self._clock = clock if clock is not None else epoch_ms
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._lock = lock if lock is not None else SessionLock(self._repo_root, logger=self._logger)
        self._state: RunState | None = None
        self._folder: RunFolder | None = None
        self._commit_lock = asyncio.Lock()

    # -- lifecycle -------------------------------------------------------------

    @property
    def repo_root(self) -> Path:
        return self._repo_root

    @property
    def current(self) -> RunState | None:
        return self._state

    @property
    def commit_lock(self) -> asyncio.Lock:
        """Held by async callers across a begin/commit pair that awaits in between."""
        return self._commit_lock

    @property
    def run_dir(self) -> Path:
        return self._require_folder().path

    @property
    def folder(self) -> RunFolder:
        return self._require_folder()

    def now_ms(self) -> int:
        return self._clock()

    def require(self) -> RunState:
        if self._state is None:
            raise NoActiveRunError()
        return self._state

    def create(self, options: RunOptions) -> RunState:
        """Start a new run: take the session lock, lay out the folder, log SESSION_START.

        Raises ``RunAlreadyActiveError`` while this manager holds a run that has
        not ended, and ``SessionLockError`` when any other session holds the lock.
        """
        if self._state is not None and not self._state.is_ended:
            raise RunAlreadyActiveError(self._state.run_id)
        self._lock.acquire()
        try:
            return self._start(options)
        except BaseException:
            self._folder = None
            self._state = None
            self._lock.release()
            raise

    def _start(self, options: RunOptions) -> RunState:
        started_at = self._clock()
        run_id = options.run_id or ids.generate_run_id(timestamp_ms=started_at)
        state = RunState(
            run_id=run_id,
            project_id=options.project_id,
            repo_root=str(self._repo_root),
            started_at=started_at,
            step_budget=options.step_budget,
            ticket_step_budget=options.ticket_step_budget,
            max_lines_per_ticket=options.max_lines_per_ticket,
            max_tool_calls_per_ticket=options.max_tool_calls_per_ticket,
            max_prs=options.max_prs,
            min_confidence=options.min_confidence,
            min_impact_score=options.min_impact_score,
            max_proposals_per_scout=options.max_proposals_per_scout,
            scope=options.scope,
            categories=list(options.categories),
            parallel=options.parallel,
            max_cycles=options.max_cycles,
            create_prs=options.create_prs,
            draft_prs=options.draft_prs,
            cross_verify=options.cross_verify,
            skip_review=options.skip_review,
            expires_at=(
                started_at + options.time_budget_ms if options.time_budget_ms is not None else None
            ),
        )
        folder = RunFolder(self._repo_root, run_id)
        folder.initialize()
        self._folder = folder
        self._state = None

        tx = Transition.begin(state)
        tx.emit(
            EventType.SESSION_START,
            {
                "run_id": run_id,
                "project_id": options.project_id,
                "step_budget": state.step_budget,
                "ticket_step_budget": state.ticket_step_budget,
                "max_prs": state.max_prs,
                "scope": state.scope,
                "parallel": state.parallel,
                "expires_at": state.expires_at,
            },
        )
        self._write(tx)
        self._logger.info("run_created", run_id=run_id, project_id=options.project_id)
        return self.require()

    def load(self, run_id: str) -> RunState:
        """Resume a persisted run; an ended run is loaded read-only."""
        active = self._state
        if active is not None and not active.is_ended and active.run_id != run_id:
            raise RunAlreadyActiveError(active.run_id)
        folder = RunFolder(self._repo_root, run_id)
        state = folder.read_state()
        if not state.is_ended:
            self._lock.acquire()
        self._folder = folder
        self._state = state
        self._logger.info("run_loaded", run_id=run_id, phase=state.phase.value)
        return state

    def begin(self) -> Transition:
        state = self.require()
        if state.is_ended:
            raise RunEndedError(state.run_id)
        return Transition.begin(state)

    def commit(self, tx: Transition) -> RunState:
        current = self.require()
        if current.is_ended:
            raise RunEndedError(current.run_id)
        if tx.state.run_id != current.run_id:
            raise ValueError(
                f"transition belongs to run {tx.state.run_id}, active run is {current.run_id}"
            )
        return self._write(tx)

    def end(self) -> RunState:
        """Emit SESSION_END, stamp ``ended_at`` and release the session lock."""
        tx = self.begin()
        state = tx.state
        tx.emit(
            EventType.SESSION_END,
            {
                "phase": state.phase.value,
                "step_count": state.step_count,
                "tickets_completed": state.tickets_completed,
                "tickets_failed": state.tickets_failed,
                "tickets_blocked": state.tickets_blocked,
                "prs_created": state.prs_created,
            },
        )
        state.ended_at = self._clock()
        ended = self._write(tx)
        self._lock.release()
        self._logger.info(
            "run_ended",
            run_id=ended.run_id,
            phase=ended.phase.value,
            tickets_completed=ended.tickets_completed,
            tickets_failed=ended.tickets_failed,
        )
        return ended

    def _write(self, tx: Transition) -> RunState:
        folder = self._require_folder()
        for effect in tx.effects:
            if isinstance(effect, WriteArtifact):
                folder.write_artifact(effect.name, effect.content)
            elif isinstance(effect, WriteDiff):
                folder.write_diff(effect.step, effect.ticket_id, effect.diff)
        folder.write_state(tx.state)
        ts = iso_timestamp()
        folder.append_events(
            RunEvent(ts=ts, step=event.step, type=event.type, payload=event.payload)
            for event in tx.events
        )
        self._state = tx.state
        return tx.state

    def _require_folder(self) -> RunFolder:
        if self._folder is None:
            raise NoActiveRunError()
        return self._folder

    # -- single-transition conveniences ----------------------------------------

    def _apply(self, change: Callable[[Transition], object]) -> RunState:
        tx = self.begin()
        change(tx)
        return self.commit(tx)

    def append_event(self, event_type: EventType, payload: Mapping[str, Any] | None = None) -> None:
        self._apply(lambda tx: tx.emit(event_type, payload))

    def set_phase(self, phase: Phase) -> RunState:
        return self._apply(lambda tx: tx.set_phase(phase))

    def assign_ticket(self, ticket_id: str) -> RunState:
        return self._apply(lambda tx: tx.assign_ticket(ticket_id))

    def complete_ticket(self) -> RunState:
        return self._apply(lambda tx: tx.complete_ticket())

    def fail_ticket(self, reason: str) -> RunState:
        return self._apply(lambda tx: tx.fail_ticket(reason))

    def block_ticket(self, reason: str) -> RunState:
        return self._apply(lambda tx: tx.block_ticket(reason))

    def add_hint(self, hint: str) -> RunState:
        return self._apply(lambda tx: tx.add_hint(hint))

    def consume_hints(self) -> list[str]:
        tx = self.begin()
        hints = tx.consume_hints()
        self.commit(tx)
        return hints

    def init_ticket_workers(self, ticket_ids: Sequence[str]) -> RunState:
        return self._apply(lambda tx: tx.init_ticket_workers(ticket_ids))

    def save_artifact(self, name: str, content: str | dict[str, Any] | list[Any]) -> Path:
        return self._require_folder().write_artifact(name, content)

    def save_diff(self, ticket_id: str, diff: str) -> Path:
        return self._require_folder().write_diff(self.require().step_count, ticket_id, diff)

    # -- budgets -----------------------------------------------------------------

    def is_budget_exhausted(self, state: RunState | None = None) -> BudgetCheck:
        return check_budget(state or self.require(), self._clock())

    def get_budget_warnings(self, state: RunState | None = None) -> list[str]:
        return budget_warnings(state or self.require(), self._clock())

    def build_digest(self, state: RunState | None = None) -> RunDigest:
        return build_digest(state or self.require(), self._clock())


def check_budget(state: RunState, now: int) -> BudgetCheck:
    """First exhausted budget in order: step, ticket step, tool calls, PR cap, wall clock."""
    if state.step_count >= state.step_budget:
        return BudgetCheck(exhausted=True, which="step_budget")
    if state.ticket_step_count >= state.ticket_step_budget:
        return BudgetCheck(exhausted=True, which="ticket_step_budget")
    if state.ticket_tool_calls >= state.max_tool_calls_per_ticket:
        return BudgetCheck(exhausted=True, which="tool_call_budget")
    if state.create_prs and state.prs_created >= state.max_prs:
        return BudgetCheck(exhausted=True, which="pr_budget")
    if state.expires_at is not None and now >= state.expires_at:
        return BudgetCheck(exhausted=True, which="time_budget")
    return BudgetCheck(exhausted=False)


def budget_warnings(state: RunState, now: int) -> list[str]:
    threshold = constants.BUDGET_WARNING_THRESHOLD
    warnings: list[str] = []
    if state.step_count >= state.step_budget * threshold:
        warnings.append(f"step_budget: {state.step_count}/{state.step_budget}")
    if state.ticket_step_count >= state.ticket_step_budget * threshold:
        warnings.append(f"ticket_step_budget: {state.ticket_step_count}/{state.ticket_step_budget}")
    if state.ticket_tool_calls >= state.max_tool_calls_per_ticket * threshold:
        calls = f"{state.ticket_tool_calls}/{state.max_tool_calls_per_ticket}"
        warnings.append(f"tool_call_budget: {calls}")
    if state.create_prs and state.prs_created >= state.max_prs * threshold:
        warnings.append(f"pr_budget: {state.prs_created}/{state.max_prs}")
    if state.expires_at is not None:
        total = state.expires_at - state.started_at
        elapsed = now - state.started_at
        if total > 0 and elapsed >= total * threshold:
            warnings.append(f"time_budget: {elapsed}/{total}ms")
    return warnings


def build_digest(state: RunState, now: int) -> RunDigest:
    return RunDigest(
        step=state.step_count,
        phase=state.phase,
        tickets_completed=state.tickets_completed,
        tickets_failed=state.tickets_failed,
        budget_remaining=max(0, state.step_budget - state.step_count),
        ticket_budget_remaining=max(0, state.ticket_step_budget - state.ticket_step_count),
        spindle_risk=compute_spindle_risk(state.spindle).value,
        time_remaining_ms=(
            max(0, state.expires_at - now) if state.expires_at is not None else None
        ),
    )


__all__ = [
    "BudgetCheck",
    "Clock",
    "RunDigest",
    "RunManager",
    "RunOptions",
    "budget_warnings",
    "build_digest",
    "check_budget",
    "epoch_ms",
]
