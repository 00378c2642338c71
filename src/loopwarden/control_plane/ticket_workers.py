"""
loopwarden — parallel ticket workers

File: src/loopwarden/control_plane/ticket_workers.py

Purpose
- Step one ticket's sub-state machine (PLAN, EXECUTE, QA, optional
  CROSS_QA, PR) while the session sits in PARALLEL_EXECUTE.

Functional requirements
- Each call counts one worker step; exceeding the per-ticket step budget
  fails the worker.
- EXECUTE, QA and CROSS_QA are supervised by the spindle detector; any
  verdict fails the worker (no session-wide recovery is spent).
- Plans are constrained to the ticket's worktree under the state directory.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Final

from loopwarden.constants import MAX_PLAN_REJECTIONS, MAX_QA_RETRIES
from loopwarden.control_plane.advance import Constraints
from loopwarden.control_plane.handlers.context import HandlerContext, policy_for
from loopwarden.control_plane.handlers.worker import fail_worker, worktree_root
from loopwarden.control_plane.transitions import Transition
from loopwarden.domain.models import EventType, Ticket, WorkerPhase
from loopwarden.knowledge_plane.learnings import Learning
from loopwarden.spindle.detector import DEFAULT_SPINDLE_CONFIG, SpindleConfig, check_spindle

if TYPE_CHECKING:
    from loopwarden.control_plane.advance import Advancer

_SUPERVISED: Final[frozenset[WorkerPhase]] = frozenset(
    {WorkerPhase.EXECUTE, WorkerPhase.QA, WorkerPhase.CROSS_QA}
)


class WorkerAction(StrEnum):
    PROMPT = "PROMPT"
    DONE = "DONE"
    FAILED = "FAILED"


@dataclass(frozen=True, slots=True)
class WorkerResponse:
    ticket_id: str
    action: WorkerAction
    phase: WorkerPhase
    reason: str
    constraints: Constraints | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ticket_id": self.ticket_id,
            "action": self.action.value,
            "phase": self.phase.value,
            "reason": self.reason,
            "constraints": self.constraints.to_dict() if self.constraints is not None else None,
            "context": dict(self.context),
        }


def step_ticket_worker(
    tx: Transition,
    ticket_id: str,
    ticket: Ticket | None,
    *,
    now_ms: int,
    learnings: tuple[Learning, ...] = (),
    spindle_config: SpindleConfig = DEFAULT_SPINDLE_CONFIG,
) -> WorkerResponse:
    state = tx.state
    worker = tx.worker(ticket_id)
    if worker is None:
        return WorkerResponse(
            ticket_id=ticket_id,
            action=WorkerAction.FAILED,
            phase=WorkerPhase.FAILED,
            reason=f"No active worker for ticket {ticket_id}",
        )
    ctx = HandlerContext(now_ms=now_ms, ticket=ticket, learnings=learnings)

    def failed(reason: str) -> WorkerResponse:
        fail_worker(tx, ticket_id, reason, ctx)
        return WorkerResponse(
            ticket_id=ticket_id, action=WorkerAction.FAILED, phase=WorkerPhase.FAILED, reason=reason
        )

    worker.step_count += 1
    if worker.step_count > state.ticket_step_budget:
        return failed(f"Ticket step budget exhausted ({worker.step_count - 1})")

    if worker.phase in _SUPERVISED:
        verdict = check_spindle(worker.spindle, spindle_config)
        if verdict.tripped:
            reason = verdict.reason.value if verdict.reason is not None else "unknown"
            tx.emit(
                EventType.SPINDLE_ABORT if verdict.should_abort else EventType.SPINDLE_WARNING,
                {**verdict.to_dict(), "ticket_id": ticket_id, "parallel": True},
            )
            return failed(f"Spindle loop detected: {reason}")

    if worker.phase.is_terminal:
        action = WorkerAction.DONE if worker.phase is WorkerPhase.DONE else WorkerAction.FAILED
        return WorkerResponse(
            ticket_id=ticket_id,
            action=action,
            phase=worker.phase,
            reason=worker.failure_reason or "Worker finished",
        )
    if ticket is None:
        return failed("Ticket not found")

    policy = policy_for(state, ticket, learnings, worktree_root(ticket_id))
    if worker.phase is WorkerPhase.PLAN:
        if not policy.plan_required or worker.plan_approved:
            worker.plan_approved = True
            worker.phase = WorkerPhase.EXECUTE
        elif worker.plan_rejections >= MAX_PLAN_REJECTIONS:
            return failed(f"Plan rejected {worker.plan_rejections} times")
        else:
            return _prompt(worker.phase, ticket_id, f"Plan ticket: {ticket.title}", policy, ticket)

    if worker.phase is WorkerPhase.EXECUTE:
        return _prompt(
            worker.phase,
            ticket_id,
            f"Execute ticket: {ticket.title}",
            policy,
            ticket,
            plan=worker.plan.to_dict() if worker.plan is not None else None,
            last_qa_failure=worker.last_qa_failure,
        )

    if worker.phase in (WorkerPhase.QA, WorkerPhase.CROSS_QA):
        if worker.qa_retries >= MAX_QA_RETRIES:
            return failed(f"QA failed {worker.qa_retries} times")
        label = "Cross-verify" if worker.phase is WorkerPhase.CROSS_QA else "Run QA for"
        return _prompt(
            worker.phase,
            ticket_id,
            f"{label} ticket: {ticket.title}",
            policy,
            ticket,
            commands=list(ticket.verification_commands),
            independent=worker.phase is WorkerPhase.CROSS_QA,
        )

    return WorkerResponse(
        ticket_id=ticket_id,
        action=WorkerAction.PROMPT,
        phase=worker.phase,
        reason=f"Create PR for ticket: {ticket.title}",
        context={"ticket": ticket.to_dict(), "draft": state.draft_prs},
    )


def _prompt(
    phase: WorkerPhase,
    ticket_id: str,
    reason: str,
    policy: Any,
    ticket: Ticket,
    **context: Any,
) -> WorkerResponse:
    return WorkerResponse(
        ticket_id=ticket_id,
        action=WorkerAction.PROMPT,
        phase=phase,
        reason=reason,
        constraints=Constraints.from_policy(policy, ticket),
        context={
            "ticket": ticket.to_dict(),
            "worktree": worktree_root(ticket_id),
            **context,
        },
    )


async def advance_ticket_worker(advancer: Advancer, ticket_id: str) -> WorkerResponse:
    """Step one parallel worker and commit the result."""
    run = advancer.run
    run.require()
    async with run.commit_lock:
        ticket = await advancer.tickets.get_by_id(ticket_id)
        learnings = await advancer.load_learnings()
        tx = run.begin()
        response = step_ticket_worker(
            tx,
            ticket_id,
            ticket,
            now_ms=run.now_ms(),
            learnings=learnings,
            spindle_config=advancer.spindle_config,
        )
        await advancer.effects.apply(tx.effects)
        run.commit(tx)
    return response


__all__ = [
    "WorkerAction",
    "WorkerResponse",
    "advance_ticket_worker",
    "step_ticket_worker",
]
