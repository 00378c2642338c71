from loopwarden.control_plane.handlers.context import HandlerContext, ProcessResult
from loopwarden.control_plane.handlers.qa import (
    handle_qa_command_result,
    handle_qa_failed,
    handle_qa_passed,
)
from loopwarden.control_plane.handlers.scout import (
    handle_proposals_filtered,
    handle_proposals_reviewed,
    handle_scout_output,
)
from loopwarden.control_plane.handlers.ticket import (
    handle_plan_submitted,
    handle_pr_created,
    handle_ticket_result,
)
from loopwarden.control_plane.handlers.worker import WORKER_EVENT_TYPES, handle_worker_event

__all__ = [
    "WORKER_EVENT_TYPES",
    "HandlerContext",
    "ProcessResult",
    "handle_plan_submitted",
    "handle_pr_created",
    "handle_proposals_filtered",
    "handle_proposals_reviewed",
    "handle_qa_command_result",
    "handle_qa_failed",
    "handle_qa_passed",
    "handle_scout_output",
    "handle_ticket_result",
    "handle_worker_event",
]
