"""
loopwarden — event ingestion

File: src/loopwarden/control_plane/event_processor.py

Purpose
- Accept one agent event, validate and normalize its payload, and apply the
  matching handler to the active run in a single committed transition.

Functional requirements
- Every accepted event is appended to the run's event log before the
  handler's own events.
- Under PARALLEL_EXECUTE, events naming a ticket with a live worker are
  routed to that worker and never move the session phase.
- Repository and knowledge effects are applied before state is committed;
  when one raises, nothing is committed.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any, Final

import structlog

from loopwarden.control_plane.effects import EffectSink
from loopwarden.control_plane.handlers import (
    WORKER_EVENT_TYPES,
    HandlerContext,
    ProcessResult,
    handle_plan_submitted,
    handle_pr_created,
    handle_proposals_filtered,
    handle_proposals_reviewed,
    handle_qa_command_result,
    handle_qa_failed,
    handle_qa_passed,
    handle_scout_output,
    handle_ticket_result,
    handle_worker_event,
)
from loopwarden.control_plane.handlers.context import changed, filter_and_create, unchanged
from loopwarden.control_plane.run_manager import RunManager
from loopwarden.control_plane.transitions import Transition
from loopwarden.domain.events import UserOverride, parse_event
from loopwarden.domain.models import EventType, Phase, Ticket, TicketStatus
from loopwarden.knowledge_plane.learnings import LearningsStore
from loopwarden.persistence.repositories import TicketRepository
from loopwarden.persistence.sector_store import SectorStore

Handler = Callable[[Transition, Any, HandlerContext], ProcessResult]

_HANDLERS: Final[dict[EventType, Handler]] = {
    EventType.SCOUT_OUTPUT: handle_scout_output,
    EventType.PROPOSALS_REVIEWED: handle_proposals_reviewed,
    EventType.PROPOSALS_FILTERED: handle_proposals_filtered,
    EventType.PLAN_SUBMITTED: handle_plan_submitted,
    EventType.TICKET_RESULT: handle_ticket_result,
    EventType.QA_COMMAND_RESULT: handle_qa_command_result,
    EventType.QA_PASSED: handle_qa_passed,
    EventType.QA_FAILED: handle_qa_failed,
    EventType.PR_CREATED: handle_pr_created,
}

_OPEN_TICKET_STATUSES: Final[tuple[TicketStatus, ...]] = (
    TicketStatus.READY,
    TicketStatus.IN_PROGRESS,
)


class EventProcessor:
    """Validates incoming agent events and drives the phase machine."""

    def __init__(
        self,
        run: RunManager,
        tickets: TicketRepository,
        *,
        sector_store: SectorStore | None = None,
        learnings: LearningsStore | None = None,
        logger: Any | None = None,
    ) -> None:
        self._run = run
        self._tickets = tickets
        self._sector_store = sector_store
        self._learnings = learnings
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._effects = EffectSink(
            tickets, sector_store=sector_store, learnings=learnings, logger=self._logger
        )

    async def process(
        self, event_type: EventType | str, payload: Mapping[str, Any] | None = None
    ) -> ProcessResult:
        """Apply one event; raises ``ValueError`` for unknown or malformed events."""
        raw = dict(payload or {})
        typed = parse_event(event_type, raw)
        kind = EventType(event_type)

        async with self._run.commit_lock:
            tx = self._run.begin()
            state = tx.state
            tx.emit(kind, raw)

            worker_ticket = getattr(typed, "ticket_id", None)
            if (
                state.phase is Phase.PARALLEL_EXECUTE
                and kind in WORKER_EVENT_TYPES
                and worker_ticket
                and worker_ticket in state.ticket_workers
            ):
                ctx = await self._context(state.project_id, worker_ticket)
                result = handle_worker_event(tx, worker_ticket, kind, typed, ctx)
            elif isinstance(typed, UserOverride):
                ctx = await self._context(state.project_id, state.current_ticket_id)
                result = self._user_override(tx, typed, ctx)
            else:
                ctx = await self._context(state.project_id, state.current_ticket_id)
                result = _HANDLERS[kind](tx, typed, ctx)

            await self._effects.apply(tx.effects)
            committed = self._run.commit(tx)
        self._logger.info(
            "event_processed",
            run_id=committed.run_id,
            event_type=kind.value,
            processed=result.processed,
            phase=committed.phase.value,
            phase_changed=result.phase_changed,
        )
        return result

    def _user_override(
        self, tx: Transition, payload: UserOverride, ctx: HandlerContext
    ) -> ProcessResult:
        state = tx.state
        messages: list[str] = []
        if payload.hint:
            state.hints.append(payload.hint)
            messages.append("Hint queued")

        if payload.cancel:
            if state.current_ticket_id is not None:
                tx.update_ticket_status(state.current_ticket_id, TicketStatus.ABORTED)
            return changed(tx, Phase.DONE, "Session cancelled by user")

        if payload.skip_review:
            state.skip_review = True
            messages.append("Review disabled")
            if state.pending_proposals:
                pending = state.pending_proposals
                state.pending_proposals = None
                result = filter_and_create(tx, pending, ctx)
                if state.phase is Phase.SCOUT and ctx.ready_count > 0:
                    return changed(
                        tx,
                        Phase.NEXT_TICKET,
                        f"Review skipped, created {len(result.accepted)} tickets",
                    )

        return unchanged("; ".join(messages) or "No override applied")

    async def _context(self, project_id: str, ticket_id: str | None) -> HandlerContext:
        ticket = await self._tickets.get_by_id(ticket_id) if ticket_id else None
        open_tickets: list[Ticket] = []
        ready_count = 0
        for status in _OPEN_TICKET_STATUSES:
            listed = await self._tickets.list_by_project(project_id, status=status)
            open_tickets.extend(listed)
            if status is TicketStatus.READY:
                ready_count = len(listed)
        sectors = self._sector_store.load() if self._sector_store is not None else None
        learnings = tuple(self._learnings.load()) if self._learnings is not None else ()
        return HandlerContext(
            now_ms=self._run.now_ms(),
            ticket=ticket,
            sectors=sectors,
            existing_titles=tuple(item.title for item in open_tickets),
            ready_count=ready_count,
            learnings=learnings,
        )


__all__ = ["EventProcessor", "Handler"]
