"""Plan, ticket-result and PR handlers for the single-ticket flow."""

from __future__ import annotations

from loopwarden.constants import MAX_PLAN_REJECTIONS
from loopwarden.control_plane.handlers.context import (
    HandlerContext,
    ProcessResult,
    changed,
    ignored,
    policy_for,
    unchanged,
)
from loopwarden.control_plane.transitions import Transition
from loopwarden.domain.events import PlanSubmitted, PrCreated, TicketResult
from loopwarden.domain.models import CommitPlan, EventType, Phase, RiskLevel, TicketStatus
from loopwarden.knowledge_plane.learnings import LearningSource
from loopwarden.scope.patterns import normalize_path
from loopwarden.scope.policy import validate_plan_scope
from loopwarden.spindle.detector import record_diff, record_output, record_plan_hash


def handle_plan_submitted(
    tx: Transition, payload: PlanSubmitted, ctx: HandlerContext
) -> ProcessResult:
    state = tx.state
    if state.phase is not Phase.PLAN:
        return ignored(f"Plan ignored in phase {state.phase.value}")
    ticket = ctx.ticket
    if ticket is None or state.current_ticket_id is None:
        return ignored("No ticket is assigned")

    plan = CommitPlan(
        ticket_id=state.current_ticket_id,
        files_to_touch=payload.files_to_touch,
        expected_tests=payload.expected_tests,
        estimated_lines=payload.estimated_lines,
        risk_level=payload.risk_level,
    )
    policy = policy_for(state, ticket, ctx.learnings)
    result = validate_plan_scope(plan.files_to_touch, plan.estimated_lines, plan.risk_level, policy)

    if not result.valid:
        reason = result.reason or "Plan rejected"
        state.plan_rejections += 1
        state.last_plan_rejection_reason = reason
        tx.emit(EventType.PLAN_REJECTED, {"reason": reason, "attempt": state.plan_rejections})
        tx.record_learning(
            f"Plan rejected for '{ticket.title}': {reason}",
            source=LearningSource.PLAN_REJECTION,
            paths=ticket.allowed_paths,
        )
        return unchanged(
            f"Plan rejected: {reason} (attempt {state.plan_rejections}/{MAX_PLAN_REJECTIONS})"
        )

    state.current_ticket_plan = plan
    record_plan_hash(state.spindle, plan.to_dict())

    if plan.risk_level == RiskLevel.HIGH.value:
        tx.emit(
            EventType.PLAN_REJECTED,
            {"reason": "High-risk plan requires human approval", "attempt": state.plan_rejections},
        )
        return changed(tx, Phase.BLOCKED_NEEDS_HUMAN, "High-risk plan requires human approval")

    state.plan_approved = True
    tx.emit(EventType.PLAN_APPROVED, {"risk_level": plan.risk_level, "auto": False})
    return changed(tx, Phase.EXECUTE, f"Plan approved ({plan.risk_level} risk)")


def handle_ticket_result(
    tx: Transition, payload: TicketResult, ctx: HandlerContext
) -> ProcessResult:
    state = tx.state
    if state.phase is not Phase.EXECUTE:
        return ignored(f"Ticket result ignored in phase {state.phase.value}")
    ticket = ctx.ticket
    ticket_id = state.current_ticket_id
    if ticket is None or ticket_id is None:
        return ignored("No ticket is assigned")

    tx.save_artifact(
        f"{state.step_count}-ticket-result.json",
        {
            "ticket_id": ticket_id,
            "status": payload.status,
            "changed_files": list(payload.changed_files),
            "lines_added": payload.lines_added,
            "lines_removed": payload.lines_removed,
            "summary": payload.summary,
        },
    )

    if payload.succeeded:
        plan = state.current_ticket_plan
        if plan is not None and plan.files_to_touch:
            planned = {normalize_path(path) for path in plan.paths}
            outside = [
                path for path in payload.changed_files if normalize_path(path) not in planned
            ]
            if outside:
                tx.emit(EventType.SCOPE_BLOCKED, {"ticket_id": ticket_id, "files": outside})
                tx.record_learning(
                    f"Changed files outside the approved plan: {', '.join(outside)}",
                    source=LearningSource.SCOPE_VIOLATION,
                    paths=outside,
                )
                return unchanged(
                    f"Changed files not in plan: {', '.join(outside)}. "
                    "Revert those changes and re-submit."
                )

        max_lines = policy_for(state, ticket, ctx.learnings).max_lines
        if payload.lines_changed > max_lines:
            return unchanged(
                f"Lines changed ({payload.lines_changed}) exceeds budget ({max_lines}). "
                "Reduce changes."
            )

        state.total_lines_changed += payload.lines_changed
        state.ticket_lines_changed += payload.lines_changed
        if payload.diff:
            tx.save_diff(ticket_id, payload.diff)
        record_diff(
            state.spindle,
            payload.diff or ("\n".join(payload.changed_files) if payload.changed_files else None),
        )
        if payload.summary:
            record_output(state.spindle, payload.summary)
        return changed(tx, Phase.QA, "Changes recorded, running QA")

    if payload.status == "failed":
        reason = payload.summary or "Ticket execution failed"
        tx.record_learning(
            f"Ticket '{ticket.title}' failed: {reason}",
            source=LearningSource.TICKET_FAILURE,
            paths=ticket.allowed_paths,
        )
        tx.record_sector_outcome(False, ticket.category)
        tx.update_ticket_status(ticket_id, TicketStatus.BLOCKED)
        tx.fail_ticket(reason)
        return changed(tx, Phase.NEXT_TICKET, f"Ticket failed: {reason}")

    return unchanged(f"Ticket result recorded (status: {payload.status})")


def handle_pr_created(tx: Transition, payload: PrCreated, ctx: HandlerContext) -> ProcessResult:
    state = tx.state
    if state.phase is not Phase.PR:
        return ignored(f"PR event ignored in phase {state.phase.value}")
    ticket = ctx.ticket
    tx.record_sector_outcome(True, ticket.category if ticket is not None else None)
    tx.save_artifact(
        f"{state.step_count}-pr-created.json",
        {"ticket_id": state.current_ticket_id, "url": payload.url, "branch": payload.branch},
    )
    state.prs_created += 1
    tx.complete_ticket()
    return changed(tx, Phase.NEXT_TICKET, f"PR created: {payload.url}")


__all__ = ["handle_plan_submitted", "handle_pr_created", "handle_ticket_result"]
