"""
loopwarden — per-ticket worker event handling

File: src/loopwarden/control_plane/handlers/worker.py

Purpose
- Route events that name a ticket running under PARALLEL_EXECUTE to that
  ticket's worker sub-state instead of the session phase machine.

Functional requirements
- Plans are validated against the ticket's policy rooted at its worktree.
- A finished worker is removed from the run and folds its step count into
  the session total; the session phase is left alone.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Final

from loopwarden.constants import MAX_QA_RETRIES, STATE_DIR_NAME, WORKTREES_DIR_NAME
from loopwarden.control_plane.handlers.context import (
    HandlerContext,
    ProcessResult,
    ignored,
    policy_for,
    unchanged,
)
from loopwarden.control_plane.qa import classify_qa_error
from loopwarden.control_plane.transitions import Transition
from loopwarden.domain.events import (
    PlanSubmitted,
    PrCreated,
    QaCommandResult,
    QaFailed,
    QaPassed,
    TicketResult,
)
from loopwarden.domain.models import (
    CommitPlan,
    EventType,
    RiskLevel,
    TicketStatus,
    TicketWorkerState,
    WorkerPhase,
)
from loopwarden.scope.policy import validate_plan_scope
from loopwarden.spindle.detector import record_command_failure, record_diff, record_plan_hash

WORKER_EVENT_TYPES: Final[frozenset[EventType]] = frozenset(
    {
        EventType.PLAN_SUBMITTED,
        EventType.TICKET_RESULT,
        EventType.QA_COMMAND_RESULT,
        EventType.QA_PASSED,
        EventType.QA_FAILED,
        EventType.PR_CREATED,
    }
)

_QA_PHASES: Final[frozenset[WorkerPhase]] = frozenset({WorkerPhase.QA, WorkerPhase.CROSS_QA})


def worktree_root(ticket_id: str) -> str:
    return f"{STATE_DIR_NAME}/{WORKTREES_DIR_NAME}/{ticket_id}"


def fail_worker(tx: Transition, ticket_id: str, reason: str, ctx: HandlerContext) -> None:
    tx.update_ticket_status(ticket_id, TicketStatus.BLOCKED)
    tx.record_sector_outcome(False, ctx.ticket.category if ctx.ticket is not None else None)
    tx.fail_ticket_worker(ticket_id, reason)


def complete_worker(tx: Transition, ticket_id: str, ctx: HandlerContext) -> None:
    tx.update_ticket_status(ticket_id, TicketStatus.DONE)
    tx.record_sector_outcome(True, ctx.ticket.category if ctx.ticket is not None else None)
    tx.complete_ticket_worker(ticket_id)


def handle_worker_event(
    tx: Transition,
    ticket_id: str,
    event_type: EventType,
    payload: Any,
    ctx: HandlerContext,
) -> ProcessResult:
    worker = tx.worker(ticket_id)
    if worker is None:
        return ignored(f"No worker for ticket {ticket_id}")
    handler = _WORKER_HANDLERS.get(event_type)
    if handler is None:
        return ignored(f"{event_type.value} is not a worker event")
    return handler(tx, worker, payload, ctx)


def _plan_submitted(
    tx: Transition, worker: TicketWorkerState, payload: PlanSubmitted, ctx: HandlerContext
) -> ProcessResult:
    ticket_id = worker.ticket_id
    if worker.phase is not WorkerPhase.PLAN:
        return ignored(f"Plan ignored for {ticket_id} in phase {worker.phase.value}")
    if ctx.ticket is None:
        fail_worker(tx, ticket_id, "Ticket not found", ctx)
        return unchanged(f"Ticket {ticket_id} not found, worker failed")

    plan = CommitPlan(
        ticket_id=ticket_id,
        files_to_touch=payload.files_to_touch,
        expected_tests=payload.expected_tests,
        estimated_lines=payload.estimated_lines,
        risk_level=payload.risk_level,
    )
    policy = policy_for(tx.state, ctx.ticket, ctx.learnings, worktree_root(ticket_id))
    result = validate_plan_scope(plan.files_to_touch, plan.estimated_lines, plan.risk_level, policy)
    if not result.valid:
        worker.plan_rejections += 1
        tx.emit(
            EventType.PLAN_REJECTED,
            {"ticket_id": ticket_id, "reason": result.reason, "attempt": worker.plan_rejections},
        )
        return unchanged(f"Plan rejected for {ticket_id}: {result.reason}")

    if plan.risk_level == RiskLevel.HIGH.value:
        fail_worker(tx, ticket_id, "High-risk plan requires human approval", ctx)
        return unchanged(f"High-risk plan for {ticket_id} requires human approval")

    record_plan_hash(worker.spindle, plan.to_dict())
    worker.plan = plan
    worker.plan_approved = True
    worker.phase = WorkerPhase.EXECUTE
    tx.emit(
        EventType.PLAN_APPROVED,
        {"ticket_id": ticket_id, "risk_level": plan.risk_level, "auto": False},
    )
    return unchanged(f"Plan approved for {ticket_id}")


def _ticket_result(
    tx: Transition, worker: TicketWorkerState, payload: TicketResult, ctx: HandlerContext
) -> ProcessResult:
    ticket_id = worker.ticket_id
    if payload.succeeded:
        if payload.pr_url:
            worker.pr_url = payload.pr_url
            if tx.state.create_prs:
                tx.state.prs_created += 1
            complete_worker(tx, ticket_id, ctx)
            return unchanged(f"Ticket {ticket_id} complete: {payload.pr_url}")
        if worker.phase is WorkerPhase.EXECUTE:
            tx.state.total_lines_changed += payload.lines_changed
            record_diff(
                worker.spindle,
                payload.diff
                or ("\n".join(payload.changed_files) if payload.changed_files else None),
            )
            if payload.diff:
                tx.save_diff(ticket_id, payload.diff)
            worker.phase = WorkerPhase.CROSS_QA if tx.state.cross_verify else WorkerPhase.QA
            return unchanged(f"Ticket {ticket_id} moved to {worker.phase.value}")
        complete_worker(tx, ticket_id, ctx)
        return unchanged(f"Ticket {ticket_id} complete")

    if payload.status == "failed":
        fail_worker(tx, ticket_id, payload.summary or "Ticket execution failed", ctx)
        return unchanged(f"Ticket {ticket_id} failed")
    return unchanged(f"Ticket result for {ticket_id} recorded (status: {payload.status})")


def _qa_command_result(
    tx: Transition, worker: TicketWorkerState, payload: QaCommandResult, ctx: HandlerContext
) -> ProcessResult:
    if not payload.success:
        record_command_failure(worker.spindle, payload.command, payload.output)
    return unchanged(
        f"QA command {'passed' if payload.success else 'failed'} for {worker.ticket_id}"
    )


def _qa_passed(
    tx: Transition, worker: TicketWorkerState, payload: QaPassed, ctx: HandlerContext
) -> ProcessResult:
    ticket_id = worker.ticket_id
    if worker.phase not in _QA_PHASES:
        return ignored(f"QA pass ignored for {ticket_id} in phase {worker.phase.value}")
    if not tx.state.create_prs:
        complete_worker(tx, ticket_id, ctx)
        return unchanged(f"QA passed, ticket {ticket_id} complete")
    tx.update_ticket_status(ticket_id, TicketStatus.DONE)
    worker.phase = WorkerPhase.PR
    return unchanged(f"QA passed for {ticket_id}, creating PR")


def _qa_failed(
    tx: Transition, worker: TicketWorkerState, payload: QaFailed, ctx: HandlerContext
) -> ProcessResult:
    ticket_id = worker.ticket_id
    if worker.phase not in _QA_PHASES:
        return ignored(f"QA failure ignored for {ticket_id} in phase {worker.phase.value}")
    record_diff(worker.spindle, None)
    worker.qa_retries += 1
    worker.last_qa_failure = payload.error[:500]
    if worker.qa_retries >= MAX_QA_RETRIES:
        error_class = classify_qa_error(payload.error)
        fail_worker(
            tx, ticket_id, f"QA failed {worker.qa_retries} times ({error_class.value})", ctx
        )
        return unchanged(f"QA failed {worker.qa_retries} times for {ticket_id}")
    worker.phase = WorkerPhase.EXECUTE
    return unchanged(f"QA failed for {ticket_id}, retrying (attempt {worker.qa_retries})")


def _pr_created(
    tx: Transition, worker: TicketWorkerState, payload: PrCreated, ctx: HandlerContext
) -> ProcessResult:
    worker.pr_url = payload.url
    if tx.state.create_prs:
        tx.state.prs_created += 1
    complete_worker(tx, worker.ticket_id, ctx)
    return unchanged(f"PR created for {worker.ticket_id}: {payload.url}")


_WORKER_HANDLERS: Final[
    dict[EventType, Callable[[Transition, TicketWorkerState, Any, HandlerContext], ProcessResult]]
] = {
    EventType.PLAN_SUBMITTED: _plan_submitted,
    EventType.TICKET_RESULT: _ticket_result,
    EventType.QA_COMMAND_RESULT: _qa_command_result,
    EventType.QA_PASSED: _qa_passed,
    EventType.QA_FAILED: _qa_failed,
    EventType.PR_CREATED: _pr_created,
}


__all__ = [
    "WORKER_EVENT_TYPES",
    "complete_worker",
    "fail_worker",
    "handle_worker_event",
    "worktree_root",
]
