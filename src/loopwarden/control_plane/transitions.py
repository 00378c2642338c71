"""
loopwarden — pure run-state transitions

File: src/loopwarden/control_plane/transitions.py

Purpose
- Give every state change a name and make it a plain operation over a
  private working copy of ``RunState``.
- Collect the events and side effects a change implies so the caller can
  apply them and persist the result in one commit.

Functional requirements
- A ``Transition`` never touches the file system, repositories or the
  sector store; it only records ``Effect`` values describing that work.
- Events are stamped with the step count at the moment they are emitted.
- ``assign_ticket`` resets every per-ticket counter and the spindle state.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from loopwarden.domain.models import (
    EventType,
    Phase,
    RunState,
    SpindleState,
    Ticket,
    TicketStatus,
    TicketWorkerState,
    WorkerPhase,
)
from loopwarden.knowledge_plane.learnings import LearningCategory, LearningSource
from loopwarden.knowledge_plane.sectors import SectorState


@dataclass(frozen=True, slots=True)
class PendingEvent:
    type: EventType
    payload: dict[str, Any]
    step: int


@dataclass(frozen=True, slots=True)
class WriteArtifact:
    name: str
    content: str | dict[str, Any] | list[Any]


@dataclass(frozen=True, slots=True)
class WriteDiff:
    step: int
    ticket_id: str
    diff: str


@dataclass(frozen=True, slots=True)
class UpdateTicketStatus:
    ticket_id: str
    status: TicketStatus


@dataclass(frozen=True, slots=True)
class CreateTicket:
    ticket: Ticket


@dataclass(frozen=True, slots=True)
class SaveSectors:
    """Persist a sector state that a handler updated on its private copy."""

    sectors: SectorState


@dataclass(frozen=True, slots=True)
class RecordSectorOutcome:
    path: str
    success: bool
    category: str | None = None


@dataclass(frozen=True, slots=True)
class RecordLearning:
    text: str
    source: LearningSource
    category: LearningCategory = LearningCategory.GOTCHA
    paths: tuple[str, ...] = ()
    commands: tuple[str, ...] = ()


Effect = (
    WriteArtifact
    | WriteDiff
    | UpdateTicketStatus
    | CreateTicket
    | SaveSectors
    | RecordSectorOutcome
    | RecordLearning
)


@dataclass(slots=True)
class Transition:
    """Working copy of a run plus the events and effects of one change."""

    state: RunState
    events: list[PendingEvent] = field(default_factory=list)
    effects: list[Effect] = field(default_factory=list)

    @classmethod
    def begin(cls, state: RunState) -> Transition:
        return cls(state=state.clone())

    # -- bookkeeping ---------------------------------------------------------

    def emit(self, event_type: EventType, payload: Mapping[str, Any] | None = None) -> None:
        self.events.append(
            PendingEvent(type=event_type, payload=dict(payload or {}), step=self.state.step_count)
        )

    def effect(self, effect: Effect) -> None:
        self.effects.append(effect)

    def save_artifact(self, name: str, content: str | dict[str, Any] | list[Any]) -> None:
        self.effects.append(WriteArtifact(name=name, content=content))

    def save_diff(self, ticket_id: str, diff: str) -> None:
        self.effects.append(WriteDiff(step=self.state.step_count, ticket_id=ticket_id, diff=diff))

    def update_ticket_status(self, ticket_id: str, status: TicketStatus) -> None:
        self.effects.append(UpdateTicketStatus(ticket_id=ticket_id, status=status))

    def record_learning(
        self,
        text: str,
        *,
        source: LearningSource,
        category: LearningCategory = LearningCategory.GOTCHA,
        paths: Sequence[str] = (),
        commands: Sequence[str] = (),
    ) -> None:
        self.effects.append(
            RecordLearning(
                text=text,
                source=source,
                category=category,
                paths=tuple(paths),
                commands=tuple(commands),
            )
        )

    def record_sector_outcome(self, success: bool, category: str | None = None) -> None:
        """Attribute a ticket outcome to the sector the current scout picked."""
        if self.state.selected_sector_path:
            self.effects.append(
                RecordSectorOutcome(
                    path=self.state.selected_sector_path, success=success, category=category
                )
            )

    # -- phase machine -------------------------------------------------------

    def set_phase(self, phase: Phase) -> None:
        old_phase = self.state.phase
        self.state.phase = phase
        self.state.phase_entry_step = self.state.step_count
        self.emit(
            EventType.ADVANCE_RETURNED,
            {"old_phase": old_phase.value, "new_phase": phase.value},
        )

    def increment_step(self) -> None:
        self.state.step_count += 1
        self.state.ticket_step_count += 1
        self.state.total_tool_calls += 1
        self.state.ticket_tool_calls += 1

    def assign_ticket(self, ticket_id: str) -> None:
        state = self.state
        state.current_ticket_id = ticket_id
        state.current_ticket_plan = None
        state.plan_approved = False
        state.plan_rejections = 0
        state.qa_retries = 0
        state.scout_retries = 0
        state.ticket_step_count = 0
        state.ticket_lines_changed = 0
        state.ticket_tool_calls = 0
        state.last_plan_rejection_reason = None
        state.last_qa_failure = None
        state.spindle = SpindleState()
        self.emit(EventType.TICKET_ASSIGNED, {"ticket_id": ticket_id})

    def complete_ticket(self) -> None:
        ticket_id = self.state.current_ticket_id
        self.state.tickets_completed += 1
        self._clear_ticket()
        self.emit(EventType.TICKET_COMPLETED, {"ticket_id": ticket_id})

    def fail_ticket(self, reason: str) -> None:
        ticket_id = self.state.current_ticket_id
        self.state.tickets_failed += 1
        self._clear_ticket()
        self.emit(EventType.TICKET_FAILED, {"ticket_id": ticket_id, "reason": reason})

    def block_ticket(self, reason: str) -> None:
        """Give up on the current ticket pending human review; the run continues."""
        ticket_id = self.state.current_ticket_id
        self.state.tickets_blocked += 1
        self._clear_ticket()
        self.emit(
            EventType.TICKET_FAILED, {"ticket_id": ticket_id, "reason": reason, "blocked": True}
        )

    def _clear_ticket(self) -> None:
        self.state.current_ticket_id = None
        self.state.current_ticket_plan = None
        self.state.plan_approved = False

    # -- hints ---------------------------------------------------------------

    def add_hint(self, hint: str) -> None:
        self.state.hints.append(hint)
        self.emit(EventType.USER_OVERRIDE, {"hint": hint})

    def consume_hints(self) -> list[str]:
        hints = list(self.state.hints)
        self.state.hints.clear()
        for hint in hints:
            self.emit(EventType.HINT_CONSUMED, {"hint": hint})
        return hints

    # -- parallel workers ----------------------------------------------------

    def init_ticket_workers(self, ticket_ids: Sequence[str]) -> None:
        for ticket_id in ticket_ids:
            self.state.ticket_workers[ticket_id] = TicketWorkerState(ticket_id=ticket_id)
            self.emit(EventType.TICKET_ASSIGNED, {"ticket_id": ticket_id, "parallel": True})

    def worker(self, ticket_id: str) -> TicketWorkerState | None:
        return self.state.ticket_workers.get(ticket_id)

    def update_ticket_worker(self, ticket_id: str, **changes: Any) -> TicketWorkerState:
        worker = self.state.ticket_workers.get(ticket_id)
        if worker is None:
            raise KeyError(ticket_id)
        for name, value in changes.items():
            if not hasattr(worker, name):
                raise AttributeError(f"TicketWorkerState has no field {name!r}")
            setattr(worker, name, value)
        return worker

    def complete_ticket_worker(self, ticket_id: str) -> None:
        worker = self.state.ticket_workers.pop(ticket_id, None)
        if worker is None:
            return
        worker.phase = WorkerPhase.DONE
        self.state.step_count += worker.step_count
        self.state.tickets_completed += 1
        self.emit(EventType.TICKET_COMPLETED, {"ticket_id": ticket_id, "parallel": True})

    def fail_ticket_worker(self, ticket_id: str, reason: str) -> None:
        worker = self.state.ticket_workers.pop(ticket_id, None)
        if worker is None:
            return
        worker.phase = WorkerPhase.FAILED
        worker.failure_reason = reason
        self.state.step_count += worker.step_count
        self.state.tickets_failed += 1
        self.emit(
            EventType.TICKET_FAILED, {"ticket_id": ticket_id, "reason": reason, "parallel": True}
        )

    # -- loop recovery -------------------------------------------------------

    def record_spindle_recovery(self) -> int:
        """Reset loop tracking after a forgiven abort/block and count the forgiveness."""
        self.state.spindle_recoveries += 1
        self.state.spindle = SpindleState()
        return self.state.spindle_recoveries


__all__ = [
    "CreateTicket",
    "Effect",
    "PendingEvent",
    "RecordLearning",
    "RecordSectorOutcome",
    "SaveSectors",
    "Transition",
    "UpdateTicketStatus",
    "WriteArtifact",
    "WriteDiff",
]
