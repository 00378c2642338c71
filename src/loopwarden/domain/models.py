"""
loopwarden — domain models

File: src/loopwarden/domain/models.py

Purpose
- Define the enums and records shared by the run lifecycle, scope policy,
  spindle detector and sector scheduler.

Functional requirements
- ``RunState.from_dict(state.to_dict()) == state`` for every reachable state.
- Plans keep an unrecognised ``risk_level`` verbatim so validation can reject it.
- Mutable containers are only used where the run lifecycle mutates them in place.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Final


class Phase(StrEnum):
    SCOUT = "SCOUT"
    PLAN = "PLAN"
    EXECUTE = "EXECUTE"
    QA = "QA"
    PR = "PR"
    NEXT_TICKET = "NEXT_TICKET"
    PARALLEL_EXECUTE = "PARALLEL_EXECUTE"
    DONE = "DONE"
    BLOCKED_NEEDS_HUMAN = "BLOCKED_NEEDS_HUMAN"
    FAILED_BUDGET = "FAILED_BUDGET"
    FAILED_VALIDATION = "FAILED_VALIDATION"
    FAILED_SPINDLE = "FAILED_SPINDLE"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_PHASES


TERMINAL_PHASES: Final[frozenset[Phase]] = frozenset(
    {
        Phase.DONE,
        Phase.BLOCKED_NEEDS_HUMAN,
        Phase.FAILED_BUDGET,
        Phase.FAILED_VALIDATION,
        Phase.FAILED_SPINDLE,
    }
)


class WorkerPhase(StrEnum):
    PLAN = "PLAN"
    EXECUTE = "EXECUTE"
    QA = "QA"
    CROSS_QA = "CROSS_QA"
    PR = "PR"
    DONE = "DONE"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkerPhase.DONE, WorkerPhase.FAILED)


class EventType(StrEnum):
    SESSION_START = "SESSION_START"
    ADVANCE_CALLED = "ADVANCE_CALLED"
    ADVANCE_RETURNED = "ADVANCE_RETURNED"
    SCOUT_OUTPUT = "SCOUT_OUTPUT"
    PROPOSALS_REVIEWED = "PROPOSALS_REVIEWED"
    PROPOSALS_FILTERED = "PROPOSALS_FILTERED"
    TICKETS_CREATED = "TICKETS_CREATED"
    TICKET_ASSIGNED = "TICKET_ASSIGNED"
    PLAN_SUBMITTED = "PLAN_SUBMITTED"
    PLAN_APPROVED = "PLAN_APPROVED"
    PLAN_REJECTED = "PLAN_REJECTED"
    TOOL_CALL_ATTEMPTED = "TOOL_CALL_ATTEMPTED"
    SCOPE_ALLOWED = "SCOPE_ALLOWED"
    SCOPE_BLOCKED = "SCOPE_BLOCKED"
    TICKET_RESULT = "TICKET_RESULT"
    QA_STARTED = "QA_STARTED"
    QA_COMMAND_RESULT = "QA_COMMAND_RESULT"
    QA_PASSED = "QA_PASSED"
    QA_FAILED = "QA_FAILED"
    PR_CREATED = "PR_CREATED"
    TICKET_COMPLETED = "TICKET_COMPLETED"
    TICKET_FAILED = "TICKET_FAILED"
    BUDGET_WARNING = "BUDGET_WARNING"
    BUDGET_EXHAUSTED = "BUDGET_EXHAUSTED"
    SPINDLE_WARNING = "SPINDLE_WARNING"
    SPINDLE_ABORT = "SPINDLE_ABORT"
    HINT_CONSUMED = "HINT_CONSUMED"
    USER_OVERRIDE = "USER_OVERRIDE"
    SESSION_END = "SESSION_END"


class RiskLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


VALID_RISK_LEVELS: Final[frozenset[str]] = frozenset(level.value for level in RiskLevel)


class Confidence(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


CONFIDENCE_RANK: Final[dict[str, int]] = {
    Confidence.LOW.value: 0,
    Confidence.MEDIUM.value: 1,
    Confidence.HIGH.value: 2,
}


class TicketStatus(StrEnum):
    BACKLOG = "backlog"
    READY = "ready"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    BLOCKED = "blocked"
    ABORTED = "aborted"


class TicketCategory(StrEnum):
    REFACTOR = "refactor"
    DOCS = "docs"
    TEST = "test"
    PERF = "perf"
    SECURITY = "security"
    FIX = "fix"
    CLEANUP = "cleanup"
    TYPES = "types"


class Complexity(StrEnum):
    TRIVIAL = "trivial"
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


LIGHT_COMPLEXITIES: Final[frozenset[str]] = frozenset(
    {Complexity.TRIVIAL.value, Complexity.SIMPLE.value}
)
HEAVY_COMPLEXITIES: Final[frozenset[str]] = frozenset(
    {Complexity.MODERATE.value, Complexity.COMPLEX.value}
)


class SpindleRisk(StrEnum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class QaErrorClass(StrEnum):
    ENVIRONMENT = "environment"
    TIMEOUT = "timeout"
    CODE = "code"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class PlannedFile:
    """One entry of a plan's ``files_to_touch`` list."""

    path: str
    action: str = "modify"
    reason: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.path, str):
            raise ValueError("PlannedFile.path must be a string")

    @classmethod
    def from_value(cls, value: object) -> PlannedFile:
        """Accept either a bare path string or a mapping with ``path``."""
        if isinstance(value, str):
            return cls(path=value)
        if isinstance(value, Mapping):
            path = value.get("path", "")
            return cls(
                path=str(path) if path is not None else "",
                action=str(value.get("action") or "modify"),
                reason=str(value.get("reason") or ""),
            )
        raise ValueError(f"unsupported planned file entry: {value!r}")

    def to_dict(self) -> dict[str, str]:
        return {"path": self.path, "action": self.action, "reason": self.reason}


@dataclass(frozen=True, slots=True)
class CommitPlan:
    """A submitted plan, normalized but not yet validated."""

    ticket_id: str
    files_to_touch: tuple[PlannedFile, ...] = ()
    expected_tests: tuple[str, ...] = ()
    estimated_lines: int = 50
    risk_level: str = RiskLevel.LOW.value

    @property
    def paths(self) -> list[str]:
        return [entry.path for entry in self.files_to_touch]

    def to_dict(self) -> dict[str, Any]:
        return {
            "ticket_id": self.ticket_id,
            "files_to_touch": [entry.to_dict() for entry in self.files_to_touch],
            "expected_tests": list(self.expected_tests),
            "estimated_lines": self.estimated_lines,
            "risk_level": self.risk_level,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> CommitPlan:
        return cls(
            ticket_id=str(payload.get("ticket_id", "")),
            files_to_touch=tuple(
                PlannedFile.from_value(entry) for entry in payload.get("files_to_touch", ())
            ),
            expected_tests=tuple(str(item) for item in payload.get("expected_tests", ())),
            estimated_lines=int(payload.get("estimated_lines", 50)),
            risk_level=str(payload.get("risk_level", "")),
        )


@dataclass(slots=True)
class SpindleState:
    """Rolling loop/stall signals for the item currently being worked."""

    output_hashes: list[str] = field(default_factory=list)
    diff_hashes: list[str] = field(default_factory=list)
    iterations_since_change: int = 0
    total_output_chars: int = 0
    total_change_chars: int = 0
    failing_command_signatures: list[str] = field(default_factory=list)
    plan_hashes: list[str] = field(default_factory=list)
    file_edit_counts: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "output_hashes": list(self.output_hashes),
            "diff_hashes": list(self.diff_hashes),
            "iterations_since_change": self.iterations_since_change,
            "total_output_chars": self.total_output_chars,
            "total_change_chars": self.total_change_chars,
            "failing_command_signatures": list(self.failing_command_signatures),
            "plan_hashes": list(self.plan_hashes),
            "file_edit_counts": dict(self.file_edit_counts),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> SpindleState:
        if not payload:
            return cls()
        return cls(
            output_hashes=[str(item) for item in payload.get("output_hashes", ())],
            diff_hashes=[str(item) for item in payload.get("diff_hashes", ())],
            iterations_since_change=int(payload.get("iterations_since_change", 0)),
            total_output_chars=int(payload.get("total_output_chars", 0)),
            total_change_chars=int(payload.get("total_change_chars", 0)),
            failing_command_signatures=[
                str(item) for item in payload.get("failing_command_signatures", ())
            ],
            plan_hashes=[str(item) for item in payload.get("plan_hashes", ())],
            file_edit_counts={
                str(key): int(value)
                for key, value in dict(payload.get("file_edit_counts", {})).items()
            },
        )


@dataclass(slots=True)
class TicketWorkerState:
    """Sub-state machine for one ticket running under PARALLEL_EXECUTE."""

    ticket_id: str
    phase: WorkerPhase = WorkerPhase.PLAN
    plan: CommitPlan | None = None
    plan_approved: bool = False
    plan_rejections: int = 0
    qa_retries: int = 0
    step_count: int = 0
    spindle: SpindleState = field(default_factory=SpindleState)
    last_qa_failure: str | None = None
    pr_url: str | None = None
    failure_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ticket_id": self.ticket_id,
            "phase": self.phase.value,
            "plan": self.plan.to_dict() if self.plan is not None else None,
            "plan_approved": self.plan_approved,
            "plan_rejections": self.plan_rejections,
            "qa_retries": self.qa_retries,
            "step_count": self.step_count,
            "spindle": self.spindle.to_dict(),
            "last_qa_failure": self.last_qa_failure,
            "pr_url": self.pr_url,
            "failure_reason": self.failure_reason,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> TicketWorkerState:
        plan_payload = payload.get("plan")
        return cls(
            ticket_id=str(payload["ticket_id"]),
            phase=WorkerPhase(payload.get("phase", WorkerPhase.PLAN.value)),
            plan=CommitPlan.from_dict(plan_payload) if plan_payload else None,
            plan_approved=bool(payload.get("plan_approved", False)),
            plan_rejections=int(payload.get("plan_rejections", 0)),
            qa_retries=int(payload.get("qa_retries", 0)),
            step_count=int(payload.get("step_count", 0)),
            spindle=SpindleState.from_dict(payload.get("spindle")),
            last_qa_failure=payload.get("last_qa_failure"),
            pr_url=payload.get("pr_url"),
            failure_reason=payload.get("failure_reason"),
        )


@dataclass(slots=True)
class Coverage:
    """Production-only scan coverage snapshot."""

    sectors_scanned: int = 0
    sectors_total: int = 0
    files_scanned: int = 0
    files_total: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "sectors_scanned": self.sectors_scanned,
            "sectors_total": self.sectors_total,
            "files_scanned": self.files_scanned,
            "files_total": self.files_total,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> Coverage:
        if not payload:
            return cls()
        return cls(
            sectors_scanned=int(payload.get("sectors_scanned", 0)),
            sectors_total=int(payload.get("sectors_total", 0)),
            files_scanned=int(payload.get("files_scanned", 0)),
            files_total=int(payload.get("files_total", 0)),
        )


@dataclass(slots=True)
class QaFailure:
    """Most recent classified QA failure for the active ticket."""

    error_class: QaErrorClass
    summary: str
    failed_commands: tuple[str, ...] = ()
    signature: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_class": self.error_class.value,
            "summary": self.summary,
            "failed_commands": list(self.failed_commands),
            "signature": self.signature,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> QaFailure:
        return cls(
            error_class=QaErrorClass(payload.get("error_class", QaErrorClass.UNKNOWN.value)),
            summary=str(payload.get("summary", "")),
            failed_commands=tuple(str(item) for item in payload.get("failed_commands", ())),
            signature=payload.get("signature"),
        )


@dataclass(slots=True)
class RunState:
    """Single source of truth for one orchestration session."""

    run_id: str
    project_id: str
    repo_root: str
    started_at: int
    phase: Phase = Phase.SCOUT
    phase_entry_step: int = 0

    # Budgets and counters.
    step_count: int = 0
    step_budget: int = 200
    ticket_step_count: int = 0
    ticket_step_budget: int = 12
    total_lines_changed: int = 0
    ticket_lines_changed: int = 0
    max_lines_per_ticket: int = 500
    total_tool_calls: int = 0
    ticket_tool_calls: int = 0
    max_tool_calls_per_ticket: int = 50
    tickets_completed: int = 0
    tickets_failed: int = 0
    tickets_blocked: int = 0
    prs_created: int = 0
    max_prs: int = 5

    # Active ticket.
    current_ticket_id: str | None = None
    current_ticket_plan: CommitPlan | None = None
    plan_approved: bool = False
    plan_rejections: int = 0
    qa_retries: int = 0
    last_plan_rejection_reason: str | None = None
    last_qa_failure: QaFailure | None = None

    # Scouting.
    scout_retries: int = 0
    scout_cycles: int = 0
    max_cycles: int = 1
    scouted_dirs: list[str] = field(default_factory=list)
    scout_exploration_log: list[dict[str, Any]] = field(default_factory=list)
    selected_sector_path: str | None = None
    coverage: Coverage = field(default_factory=Coverage)
    pending_proposals: list[dict[str, Any]] | None = None
    deferred_proposals: list[dict[str, Any]] = field(default_factory=list)

    # Loop detection.
    spindle: SpindleState = field(default_factory=SpindleState)
    spindle_recoveries: int = 0

    # Session options.
    min_confidence: int = 55
    min_impact_score: int = 3
    max_proposals_per_scout: int = 5
    scope: str = "**"
    categories: list[str] = field(
        default_factory=lambda: ["refactor", "docs", "test", "perf", "security"]
    )
    parallel: int = 2
    create_prs: bool = False
    draft_prs: bool = True
    cross_verify: bool = False
    skip_review: bool = False

    hints: list[str] = field(default_factory=list)
    ticket_workers: dict[str, TicketWorkerState] = field(default_factory=dict)

    expires_at: int | None = None
    ended_at: int | None = None

    def __post_init__(self) -> None:
        if not self.run_id:
            raise ValueError("RunState.run_id must be non-empty")
        if self.step_budget <= 0 or self.ticket_step_budget <= 0:
            raise ValueError("step budgets must be > 0")
        self.parallel = max(1, min(5, self.parallel))

    @property
    def is_ended(self) -> bool:
        return self.ended_at is not None

    def clone(self) -> RunState:
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "project_id": self.project_id,
            "repo_root": self.repo_root,
            "started_at": self.started_at,
            "phase": self.phase.value,
            "phase_entry_step": self.phase_entry_step,
            "step_count": self.step_count,
            "step_budget": self.step_budget,
            "ticket_step_count": self.ticket_step_count,
            "ticket_step_budget": self.ticket_step_budget,
            "total_lines_changed": self.total_lines_changed,
            "ticket_lines_changed": self.ticket_lines_changed,
            "max_lines_per_ticket": self.max_lines_per_ticket,
            "total_tool_calls": self.total_tool_calls,
            "ticket_tool_calls": self.ticket_tool_calls,
            "max_tool_calls_per_ticket": self.max_tool_calls_per_ticket,
            "tickets_completed": self.tickets_completed,
            "tickets_failed": self.tickets_failed,
            "tickets_blocked": self.tickets_blocked,
            "prs_created": self.prs_created,
            "max_prs": self.max_prs,
            "current_ticket_id": self.current_ticket_id,
            "current_ticket_plan": (
                self.current_ticket_plan.to_dict() if self.current_ticket_plan else None
            ),
            "plan_approved": self.plan_approved,
            "plan_rejections": self.plan_rejections,
            "qa_retries": self.qa_retries,
            "last_plan_rejection_reason": self.last_plan_rejection_reason,
            "last_qa_failure": self.last_qa_failure.to_dict() if self.last_qa_failure else None,
            "scout_retries": self.scout_retries,
            "scout_cycles": self.scout_cycles,
            "max_cycles": self.max_cycles,
            "scouted_dirs": list(self.scouted_dirs),
            "scout_exploration_log": copy.deepcopy(self.scout_exploration_log),
            "selected_sector_path": self.selected_sector_path,
            "coverage": self.coverage.to_dict(),
            "pending_proposals": copy.deepcopy(self.pending_proposals),
            "deferred_proposals": copy.deepcopy(self.deferred_proposals),
            "spindle": self.spindle.to_dict(),
            "spindle_recoveries": self.spindle_recoveries,
            "min_confidence": self.min_confidence,
            "min_impact_score": self.min_impact_score,
            "max_proposals_per_scout": self.max_proposals_per_scout,
            "scope": self.scope,
            "categories": list(self.categories),
            "parallel": self.parallel,
            "create_prs": self.create_prs,
            "draft_prs": self.draft_prs,
            "cross_verify": self.cross_verify,
            "skip_review": self.skip_review,
            "hints": list(self.hints),
            "ticket_workers": {
                ticket_id: worker.to_dict() for ticket_id, worker in self.ticket_workers.items()
            },
            "expires_at": self.expires_at,
            "ended_at": self.ended_at,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> RunState:
        plan_payload = payload.get("current_ticket_plan")
        qa_payload = payload.get("last_qa_failure")
        pending = payload.get("pending_proposals")
        return cls(
            run_id=str(payload["run_id"]),
            project_id=str(payload.get("project_id", "")),
            repo_root=str(payload.get("repo_root", "")),
            started_at=int(payload["started_at"]),
            phase=Phase(payload.get("phase", Phase.SCOUT.value)),
            phase_entry_step=int(payload.get("phase_entry_step", 0)),
            step_count=int(payload.get("step_count", 0)),
            step_budget=int(payload.get("step_budget", 200)),
            ticket_step_count=int(payload.get("ticket_step_count", 0)),
            ticket_step_budget=int(payload.get("ticket_step_budget", 12)),
            total_lines_changed=int(payload.get("total_lines_changed", 0)),
            ticket_lines_changed=int(payload.get("ticket_lines_changed", 0)),
            max_lines_per_ticket=int(payload.get("max_lines_per_ticket", 500)),
            total_tool_calls=int(payload.get("total_tool_calls", 0)),
            ticket_tool_calls=int(payload.get("ticket_tool_calls", 0)),
            max_tool_calls_per_ticket=int(payload.get("max_tool_calls_per_ticket", 50)),
            tickets_completed=int(payload.get("tickets_completed", 0)),
            tickets_failed=int(payload.get("tickets_failed", 0)),
            tickets_blocked=int(payload.get("tickets_blocked", 0)),
            prs_created=int(payload.get("prs_created", 0)),
            max_prs=int(payload.get("max_prs", 5)),
            current_ticket_id=payload.get("current_ticket_id"),
            current_ticket_plan=CommitPlan.from_dict(plan_payload) if plan_payload else None,
            plan_approved=bool(payload.get("plan_approved", False)),
            plan_rejections=int(payload.get("plan_rejections", 0)),
            qa_retries=int(payload.get("qa_retries", 0)),
            last_plan_rejection_reason=payload.get("last_plan_rejection_reason"),
            last_qa_failure=QaFailure.from_dict(qa_payload) if qa_payload else None,
            scout_retries=int(payload.get("scout_retries", 0)),
            scout_cycles=int(payload.get("scout_cycles", 0)),
            max_cycles=int(payload.get("max_cycles", 1)),
            scouted_dirs=[str(item) for item in payload.get("scouted_dirs", ())],
            scout_exploration_log=copy.deepcopy(list(payload.get("scout_exploration_log", ()))),
            selected_sector_path=payload.get("selected_sector_path"),
            coverage=Coverage.from_dict(payload.get("coverage")),
            pending_proposals=copy.deepcopy(list(pending)) if pending is not None else None,
            deferred_proposals=copy.deepcopy(list(payload.get("deferred_proposals", ()))),
            spindle=SpindleState.from_dict(payload.get("spindle")),
            spindle_recoveries=int(payload.get("spindle_recoveries", 0)),
            min_confidence=int(payload.get("min_confidence", 55)),
            min_impact_score=int(payload.get("min_impact_score", 3)),
            max_proposals_per_scout=int(payload.get("max_proposals_per_scout", 5)),
            scope=str(payload.get("scope", "**")),
            categories=[str(item) for item in payload.get("categories", ())],
            parallel=int(payload.get("parallel", 2)),
            create_prs=bool(payload.get("create_prs", False)),
            draft_prs=bool(payload.get("draft_prs", True)),
            cross_verify=bool(payload.get("cross_verify", False)),
            skip_review=bool(payload.get("skip_review", False)),
            hints=[str(item) for item in payload.get("hints", ())],
            ticket_workers={
                str(ticket_id): TicketWorkerState.from_dict(worker)
                for ticket_id, worker in dict(payload.get("ticket_workers", {})).items()
            },
            expires_at=payload.get("expires_at"),
            ended_at=payload.get("ended_at"),
        )


@dataclass(slots=True)
class Ticket:
    """A unit of proposed work tracked by the repository layer."""

    id: str
    project_id: str
    title: str
    description: str = ""
    status: TicketStatus = TicketStatus.READY
    priority: int = 0
    category: str = "refactor"
    allowed_paths: list[str] = field(default_factory=list)
    forbidden_paths: list[str] = field(default_factory=list)
    verification_commands: list[str] = field(default_factory=list)
    complexity: Complexity = Complexity.MODERATE

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Ticket.id must be non-empty")
        if not self.title:
            raise ValueError("Ticket.title must be non-empty")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "priority": self.priority,
            "category": self.category,
            "allowed_paths": list(self.allowed_paths),
            "forbidden_paths": list(self.forbidden_paths),
            "verification_commands": list(self.verification_commands),
            "complexity": self.complexity.value,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Ticket:
        return cls(
            id=str(payload["id"]),
            project_id=str(payload.get("project_id", "")),
            title=str(payload["title"]),
            description=str(payload.get("description", "")),
            status=TicketStatus(payload.get("status", TicketStatus.READY.value)),
            priority=int(payload.get("priority", 0)),
            category=str(payload.get("category", "refactor")),
            allowed_paths=_str_list(payload.get("allowed_paths")),
            forbidden_paths=_str_list(payload.get("forbidden_paths")),
            verification_commands=_str_list(payload.get("verification_commands")),
            complexity=Complexity(payload.get("complexity", Complexity.MODERATE.value)),
        )


def _str_list(value: object) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, Sequence):
        return [str(item) for item in value]
    raise ValueError(f"expected a list of strings, got {type(value).__name__}")


__all__ = [
    "CONFIDENCE_RANK",
    "HEAVY_COMPLEXITIES",
    "LIGHT_COMPLEXITIES",
    "TERMINAL_PHASES",
    "VALID_RISK_LEVELS",
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
    "RunState",
    "SpindleRisk",
    "SpindleState",
    "Ticket",
    "TicketCategory",
    "TicketStatus",
    "TicketWorkerState",
    "WorkerPhase",
]
