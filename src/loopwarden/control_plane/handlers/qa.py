"""QA command, pass and failure handlers."""

from __future__ import annotations

import re
from typing import Final

from loopwarden.control_plane.handlers.context import (
    HandlerContext,
    ProcessResult,
    changed,
    ignored,
    unchanged,
)
from loopwarden.control_plane.qa import (
    classify_qa_error,
    extract_error_signature,
    max_retries_for,
)
from loopwarden.control_plane.transitions import Transition
from loopwarden.domain.events import QaCommandResult, QaFailed, QaPassed
from loopwarden.domain.models import Phase, QaFailure, TicketStatus
from loopwarden.knowledge_plane.learnings import LearningSource
from loopwarden.spindle.detector import record_command_failure, record_diff

QA_SUMMARY_CHARS: Final[int] = 500
_SLUG_CHARS: Final[re.Pattern[str]] = re.compile(r"[^a-z0-9]+")


def command_slug(command: str) -> str:
    return _SLUG_CHARS.sub("-", command.lower()).strip("-")[:30] or "command"


def handle_qa_command_result(
    tx: Transition, payload: QaCommandResult, ctx: HandlerContext
) -> ProcessResult:
    state = tx.state
    if not payload.success:
        record_command_failure(state.spindle, payload.command, payload.output)
    outcome = "pass" if payload.success else "fail"
    tx.save_artifact(
        f"{state.step_count}-qa-{command_slug(payload.command)}-{outcome}.log",
        f"$ {payload.command}\n\n{payload.output}",
    )
    return unchanged(f"QA command {'passed' if payload.success else 'failed'}: {payload.command}")


def handle_qa_passed(tx: Transition, payload: QaPassed, ctx: HandlerContext) -> ProcessResult:
    state = tx.state
    if state.phase is not Phase.QA:
        return ignored(f"QA pass ignored in phase {state.phase.value}")
    ticket_id = state.current_ticket_id
    if ticket_id is None:
        return ignored("No ticket is assigned")

    tx.update_ticket_status(ticket_id, TicketStatus.DONE)
    tx.save_artifact(
        f"{state.step_count}-qa-summary.json",
        {
            "ticket_id": ticket_id,
            "passed": True,
            "attempt": state.qa_retries + 1,
            "summary": payload.summary,
        },
    )
    if not state.create_prs:
        tx.record_sector_outcome(True, ctx.ticket.category if ctx.ticket is not None else None)
        tx.complete_ticket()
        return changed(tx, Phase.NEXT_TICKET, "QA passed, ticket complete")
    return changed(tx, Phase.PR, "QA passed, creating PR")


def handle_qa_failed(tx: Transition, payload: QaFailed, ctx: HandlerContext) -> ProcessResult:
    state = tx.state
    if state.phase is not Phase.QA:
        return ignored(f"QA failure ignored in phase {state.phase.value}")
    ticket_id = state.current_ticket_id
    if ticket_id is None:
        return ignored("No ticket is assigned")

    record_diff(state.spindle, None)
    tx.save_artifact(
        f"{state.step_count}-qa-failed-attempt-{state.qa_retries + 1}.json",
        {
            "ticket_id": ticket_id,
            "failed_commands": list(payload.failed_commands),
            "error": payload.error,
        },
    )
    state.qa_retries += 1

    error_class = classify_qa_error(payload.error)
    state.last_qa_failure = QaFailure(
        error_class=error_class,
        summary=payload.error[:QA_SUMMARY_CHARS],
        failed_commands=payload.failed_commands,
        signature=extract_error_signature(payload.error),
    )
    limit = max_retries_for(error_class)
    if state.qa_retries < limit:
        return changed(
            tx,
            Phase.EXECUTE,
            f"QA failed ({error_class.value}), retrying (attempt {state.qa_retries}/{limit})",
        )

    ticket = ctx.ticket
    tx.record_learning(
        f"QA kept failing ({error_class.value}): {payload.error[:200]}",
        source=LearningSource.QA_FAILURE,
        paths=ticket.allowed_paths if ticket is not None else (),
        commands=payload.failed_commands,
    )
    tx.record_sector_outcome(False, ticket.category if ticket is not None else None)
    tx.update_ticket_status(ticket_id, TicketStatus.BLOCKED)
    tx.block_ticket(f"QA failed {state.qa_retries} times ({error_class.value})")
    return changed(
        tx, Phase.NEXT_TICKET, f"QA failed {state.qa_retries} times, moving to next ticket"
    )


__all__ = [
    "QA_SUMMARY_CHARS",
    "command_slug",
    "handle_qa_command_result",
    "handle_qa_failed",
    "handle_qa_passed",
]
