"""Domain package: identifiers, run/ticket records and typed event payloads."""

from loopwarden.domain.events import ACCEPTED_EVENT_TYPES, RunEvent, parse_event
from loopwarden.domain.models import (
    CommitPlan,
    Complexity,
    Confidence,
    Coverage,
    EventType,
    Phase,
    PlannedFile,
    QaErrorClass,
    QaFailure,
    RiskLevel,
    RunState,
    SpindleRisk,
    SpindleState,
    Ticket,
    TicketCategory,
    TicketStatus,
    TicketWorkerState,
    WorkerPhase,
)

__all__ = [
    "ACCEPTED_EVENT_TYPES",
    "CommitPlan",
    "Complexity",
    "Confidence",
    "Coverage",
    "EventType",
    "Phase",
    "PlannedFile",
    "QaErrorClass",
    "QaFailure",
    "RiskLevel",
    "RunEvent",
    "RunState",
    "SpindleRisk",
    "SpindleState",
    "Ticket",
    "TicketCategory",
    "TicketStatus",
    "TicketWorkerState",
    "WorkerPhase",
    "parse_event",
]
