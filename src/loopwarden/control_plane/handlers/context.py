"""
loopwarden — shared handler context

File: src/loopwarden/control_plane/handlers/context.py

Purpose
- Carry the data event handlers need from the ticket repository, the sector
  store and the learnings registry, fetched before the transition starts.
- Provide the result record and small helpers every handler uses.

Functional requirements
- Handlers are synchronous and pure over ``(Transition, payload, context)``;
  all I/O happens before (prefetch) or after (effects, commit).
- ``sectors`` is a private copy; a handler that changes it must emit
  ``SaveSectors`` for the change to be persisted.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from loopwarden.constants import CATCH_ALL_SCOPES, MAX_SCOUT_RETRIES
from loopwarden.control_plane.proposals import FilterResult, filter_proposals
from loopwarden.control_plane.transitions import CreateTicket, Transition
from loopwarden.domain.models import EventType, Phase, RunState, Ticket
from loopwarden.knowledge_plane.learnings import Learning
from loopwarden.knowledge_plane.sectors import SectorState
from loopwarden.scope.policy import ScopePolicy, derive_scope_policy


@dataclass(frozen=True, slots=True)
class ProcessResult:
    processed: bool
    phase_changed: bool = False
    new_phase: Phase | None = None
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "phase_changed": self.phase_changed,
            "new_phase": self.new_phase.value if self.new_phase is not None else None,
            "message": self.message,
        }


@dataclass(slots=True)
class HandlerContext:
    now_ms: int
    ticket: Ticket | None = None
    sectors: SectorState | None = None
    existing_titles: tuple[str, ...] = ()
    ready_count: int = 0
    learnings: tuple[Learning, ...] = field(default_factory=tuple)


def changed(tx: Transition, phase: Phase, message: str) -> ProcessResult:
    tx.set_phase(phase)
    return ProcessResult(processed=True, phase_changed=True, new_phase=phase, message=message)


def unchanged(message: str) -> ProcessResult:
    return ProcessResult(processed=True, message=message)


def ignored(message: str) -> ProcessResult:
    return ProcessResult(processed=False, message=message)


def ticket_allowed_paths(state: RunState, ticket: Ticket) -> list[str]:
    if ticket.allowed_paths:
        return list(ticket.allowed_paths)
    if state.scope not in CATCH_ALL_SCOPES:
        return [state.scope]
    return []


def policy_for(
    state: RunState,
    ticket: Ticket,
    learnings: Sequence[Learning] = (),
    worktree_root: str | None = None,
) -> ScopePolicy:
    return derive_scope_policy(
        ticket_allowed_paths(state, ticket),
        ticket.category,
        state.max_lines_per_ticket,
        learnings=list(learnings) or None,
        worktree_root=worktree_root,
    )


def filter_and_create(
    tx: Transition, raw_proposals: Sequence[Mapping[str, Any]], ctx: HandlerContext
) -> FilterResult:
    """Filter proposals against the run and queue ticket creation for survivors."""
    state = tx.state
    result = filter_proposals(raw_proposals, state, ctx.existing_titles)
    state.deferred_proposals = result.deferred
    tx.emit(
        EventType.PROPOSALS_FILTERED,
        {
            **result.counts,
            "rejected": [
                {"title": rejection.title, "reason": rejection.reason}
                for rejection in result.rejected
            ],
            "deferred": len(result.deferred),
        },
    )
    if result.accepted:
        tickets = [proposal.to_ticket(state.project_id) for proposal in result.accepted]
        for ticket in tickets:
            tx.effect(CreateTicket(ticket))
        tx.emit(
            EventType.TICKETS_CREATED,
            {
                "count": len(tickets),
                "ticket_ids": [ticket.id for ticket in tickets],
                "titles": [ticket.title for ticket in tickets],
            },
        )
        ctx.ready_count += len(tickets)
    return result


def retry_or_done(tx: Transition, reason: str) -> ProcessResult:
    """Stay in SCOUT for another attempt, or finish once retries run out."""
    state = tx.state
    if state.scout_retries < MAX_SCOUT_RETRIES:
        state.scout_retries += 1
        return unchanged(
            f"{reason}; retrying scout (attempt {state.scout_retries + 1}/{MAX_SCOUT_RETRIES + 1})"
        )
    return changed(tx, Phase.DONE, f"{reason} after {MAX_SCOUT_RETRIES + 1} attempts")


__all__ = [
    "HandlerContext",
    "ProcessResult",
    "changed",
    "filter_and_create",
    "ignored",
    "policy_for",
    "retry_or_done",
    "ticket_allowed_paths",
    "unchanged",
]
