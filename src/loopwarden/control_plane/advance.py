"""
loopwarden — advance driver

File: src/loopwarden/control_plane/advance.py

Purpose
- Decide what the calling agent should do next: one ``advance()`` call is
  one step of the session, committed as a single transition.
- Supervise EXECUTE and QA with the spindle detector and apply the
  session-wide recovery policy.

Functional requirements
- Each call increments the step counter and emits ADVANCE_CALLED; a
  terminal run answers STOP without spending a step.
- Step budget and wall-clock expiry end the run in FAILED_BUDGET; the
  per-ticket step budget or tool-call cap blocks the ticket and stops for
  a human.
- Phases that resolve without agent work (NEXT_TICKET, an approved PLAN,
  an empty PARALLEL_EXECUTE) are followed in a loop, never by recursion.
- An abort or block verdict fails the ticket, resets the spindle and counts
  a recovery; the third recovery ends the run.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Final

import structlog

from loopwarden.constants import (
    MAX_PLAN_REJECTIONS,
    MAX_QA_RETRIES,
    MAX_SPINDLE_RECOVERIES,
)
from loopwarden.control_plane.effects import EffectSink
from loopwarden.control_plane.handlers.context import policy_for
from loopwarden.control_plane.run_manager import (
    RunDigest,
    RunManager,
    budget_warnings,
    build_digest,
)
from loopwarden.control_plane.transitions import SaveSectors, Transition
from loopwarden.control_plane.waves import (
    WaveItem,
    get_adaptive_parallel_count,
    partition_into_waves,
)
from loopwarden.domain.models import EventType, Phase, RunState, Ticket, TicketStatus
from loopwarden.knowledge_plane.learnings import Learning, LearningsStore
from loopwarden.knowledge_plane.sectors import (
    SectorState,
    build_sector_summary,
    compute_coverage,
    get_sector_category_affinity,
    get_sector_min_confidence,
    pick_next_sector,
)
from loopwarden.persistence.repositories import TicketRepository
from loopwarden.persistence.sector_store import SectorStore
from loopwarden.scope.policy import ScopePolicy
from loopwarden.spindle.detector import (
    DEFAULT_SPINDLE_CONFIG,
    SpindleConfig,
    check_spindle,
    file_edit_warnings,
)

SCOUT_MAX_FILES: Final[int] = 100
MAX_TRANSITIONS_PER_ADVANCE: Final[int] = 8

TERMINAL_REASONS: Final[dict[Phase, str]] = {
    Phase.DONE: "Session completed successfully",
    Phase.BLOCKED_NEEDS_HUMAN: "Ticket blocked, needs human review",
    Phase.FAILED_BUDGET: "Budget exhausted",
    Phase.FAILED_VALIDATION: "Validation failed",
    Phase.FAILED_SPINDLE: "Loop detected by spindle",
}


class NextAction(StrEnum):
    PROMPT = "PROMPT"
    PARALLEL_EXECUTE = "PARALLEL_EXECUTE"
    STOP = "STOP"


@dataclass(frozen=True, slots=True)
class Constraints:
    """File and command limits handed to the agent with each prompt."""

    allowed_paths: tuple[str, ...] = ()
    denied_paths: tuple[str, ...] = ()
    denied_patterns: tuple[str, ...] = ()
    max_files: int = 0
    max_lines: int = 0
    required_commands: tuple[str, ...] = ()
    plan_required: bool = False

    @classmethod
    def from_policy(cls, policy: ScopePolicy, ticket: Ticket | None = None) -> Constraints:
        return cls(
            allowed_paths=policy.allowed_paths,
            denied_paths=policy.denied_paths,
            denied_patterns=tuple(pattern.pattern for pattern in policy.denied_patterns),
            max_files=policy.max_files,
            max_lines=policy.max_lines,
            required_commands=tuple(ticket.verification_commands) if ticket is not None else (),
            plan_required=policy.plan_required,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed_paths": list(self.allowed_paths),
            "denied_paths": list(self.denied_paths),
            "denied_patterns": list(self.denied_patterns),
            "max_files": self.max_files,
            "max_lines": self.max_lines,
            "required_commands": list(self.required_commands),
            "plan_required": self.plan_required,
        }


@dataclass(frozen=True, slots=True)
class AdvanceResponse:
    next_action: NextAction
    phase: Phase
    reason: str
    digest: RunDigest
    constraints: Constraints | None = None
    context: dict[str, Any] = field(default_factory=dict)
    parallel_tickets: tuple[str, ...] = ()

    @property
    def stopped(self) -> bool:
        return self.next_action is NextAction.STOP

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "next_action": self.next_action.value,
            "phase": self.phase.value,
            "reason": self.reason,
            "constraints": self.constraints.to_dict() if self.constraints is not None else None,
            "digest": self.digest.to_dict(),
            "context": dict(self.context),
        }
        if self.parallel_tickets:
            payload["parallel_tickets"] = list(self.parallel_tickets)
        return payload


@dataclass(slots=True)
class AdvanceInputs:
    """Everything ``advance`` reads from collaborators, fetched before the transition."""

    now_ms: int
    ready: list[Ticket] = field(default_factory=list)
    current: Ticket | None = None
    sectors: SectorState | None = None
    learnings: tuple[Learning, ...] = ()


class Advancer:
    """Drives the session phase machine one step per call."""

    def __init__(
        self,
        run: RunManager,
        tickets: TicketRepository,
        *,
        sector_store: SectorStore | None = None,
        learnings: LearningsStore | None = None,
        spindle_config: SpindleConfig = DEFAULT_SPINDLE_CONFIG,
        logger: Any | None = None,
    ) -> None:
        self._run = run
        self._tickets = tickets
        self._sector_store = sector_store
        self._learnings = learnings
        self._spindle_config = spindle_config
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._effects = EffectSink(
            tickets, sector_store=sector_store, learnings=learnings, logger=self._logger
        )

    @property
    def run(self) -> RunManager:
        return self._run

    @property
    def tickets(self) -> TicketRepository:
        return self._tickets

    @property
    def spindle_config(self) -> SpindleConfig:
        return self._spindle_config

    @property
    def effects(self) -> EffectSink:
        return self._effects

    async def load_learnings(self) -> tuple[Learning, ...]:
        return tuple(self._learnings.load()) if self._learnings is not None else ()

    async def advance(self) -> AdvanceResponse:
        async with self._run.commit_lock:
            state = self._run.require()
            inputs = await self._inputs(state.project_id, state.current_ticket_id)
            tx = self._run.begin()
            response = self.step(tx, inputs)
            await self._effects.apply(tx.effects)
            committed = self._run.commit(tx)
        self._logger.info(
            "advance_returned",
            run_id=committed.run_id,
            step=committed.step_count,
            next_action=response.next_action.value,
            phase=response.phase.value,
            reason=response.reason,
        )
        return response

    # -- pure step ---------------------------------------------------------------

    def step(self, tx: Transition, inputs: AdvanceInputs) -> AdvanceResponse:
        """Advance ``tx`` by one step using prefetched ``inputs``."""
        state = tx.state
        if state.phase.is_terminal:
            tx.emit(EventType.ADVANCE_CALLED, {"phase": state.phase.value, "terminal": True})
            return self._stop(tx, inputs, TERMINAL_REASONS[state.phase])

        tx.increment_step()
        tx.emit(EventType.ADVANCE_CALLED, {"phase": state.phase.value, "step": state.step_count})

        if state.step_count >= state.step_budget:
            tx.emit(
                EventType.BUDGET_EXHAUSTED,
                {"which": "step_budget", "step": state.step_count, "budget": state.step_budget},
            )
            tx.set_phase(Phase.FAILED_BUDGET)
            return self._stop(
                tx, inputs, f"Step budget exhausted ({state.step_count}/{state.step_budget})"
            )
        if state.expires_at is not None and inputs.now_ms >= state.expires_at:
            tx.emit(EventType.BUDGET_EXHAUSTED, {"which": "time_budget", "step": state.step_count})
            tx.set_phase(Phase.FAILED_BUDGET)
            return self._stop(tx, inputs, "Time budget exhausted")

        warnings = budget_warnings(state, inputs.now_ms)
        if warnings:
            tx.emit(EventType.BUDGET_WARNING, {"warnings": warnings})

        if state.phase in (Phase.EXECUTE, Phase.QA):
            stopped = self._supervise(tx, inputs)
            if stopped is not None:
                return stopped

        for _ in range(MAX_TRANSITIONS_PER_ADVANCE):
            if state.phase.is_terminal:
                return self._stop(tx, inputs, TERMINAL_REASONS[state.phase])
            response = self._dispatch(tx, inputs)
            if response is not None:
                return response
        raise RuntimeError(f"advance did not settle from phase {state.phase.value}")

    def _dispatch(self, tx: Transition, inputs: AdvanceInputs) -> AdvanceResponse | None:
        phase = tx.state.phase
        if phase is Phase.SCOUT:
            return self._scout(tx, inputs)
        if phase is Phase.NEXT_TICKET:
            return self._next_ticket(tx, inputs)
        if phase is Phase.PLAN:
            return self._plan(tx, inputs)
        if phase is Phase.EXECUTE:
            return self._execute(tx, inputs)
        if phase is Phase.QA:
            return self._qa(tx, inputs)
        if phase is Phase.PR:
            return self._pr(tx, inputs)
        if phase is Phase.PARALLEL_EXECUTE:
            return self._parallel(tx, inputs)
        raise ValueError(f"unhandled phase: {phase.value}")

    # -- spindle supervision -------------------------------------------------------

    def _supervise(self, tx: Transition, inputs: AdvanceInputs) -> AdvanceResponse | None:
        state = tx.state
        edits = file_edit_warnings(state.spindle, self._spindle_config.max_file_edits)
        if edits:
            tx.emit(EventType.SPINDLE_WARNING, {"file_edits": edits})

        result = check_spindle(state.spindle, self._spindle_config)
        if not result.tripped:
            return None

        reason = result.reason.value if result.reason is not None else "unknown"
        if result.should_abort:
            tx.emit(EventType.SPINDLE_ABORT, result.to_dict())
            terminal = Phase.FAILED_SPINDLE
        else:
            tx.emit(
                EventType.SPINDLE_WARNING,
                {**result.to_dict(), "action": Phase.BLOCKED_NEEDS_HUMAN.value},
            )
            terminal = Phase.BLOCKED_NEEDS_HUMAN
        self._logger.warning(
            "spindle_tripped",
            run_id=state.run_id,
            ticket_id=state.current_ticket_id,
            reason=reason,
            confidence=result.confidence,
            abort=result.should_abort,
        )

        if state.current_ticket_id is not None:
            tx.update_ticket_status(state.current_ticket_id, TicketStatus.BLOCKED)
            tx.record_sector_outcome(
                False, inputs.current.category if inputs.current is not None else None
            )
        tx.fail_ticket(f"Spindle {'abort' if result.should_abort else 'block'}: {reason}")
        inputs.current = None
        recoveries = tx.record_spindle_recovery()
        if recoveries >= MAX_SPINDLE_RECOVERIES:
            tx.set_phase(terminal)
            return self._stop(
                tx,
                inputs,
                f"Spindle loop detected: {reason} "
                f"(recoveries {recoveries}/{MAX_SPINDLE_RECOVERIES})",
            )
        tx.set_phase(Phase.NEXT_TICKET)
        return None

    # -- phases -----------------------------------------------------------------------

    def _scout(self, tx: Transition, inputs: AdvanceInputs) -> AdvanceResponse | None:
        state = tx.state
        if state.pending_proposals and not state.skip_review:
            return self._prompt(
                tx,
                inputs,
                f"Review {len(state.pending_proposals)} pending proposals",
                constraints=None,
                context={"review": True, "pending_proposals": list(state.pending_proposals)},
            )
        if inputs.ready:
            tx.set_phase(Phase.NEXT_TICKET)
            return None

        hints = tx.consume_hints()
        context: dict[str, Any] = {
            "hints": hints,
            "scouted_dirs": list(state.scouted_dirs),
            "exploration_log": list(state.scout_exploration_log),
            "categories": list(state.categories),
            "min_confidence": state.min_confidence,
            "max_proposals": state.max_proposals_per_scout,
            "attempt": state.scout_retries + 1,
        }
        upcoming_cycle = state.scout_cycles + 1 if state.scout_retries == 0 else state.scout_cycles
        sectors = inputs.sectors
        if sectors is not None:
            pick = pick_next_sector(sectors, upcoming_cycle, inputs.now_ms)
            if pick is not None:
                state.scope = pick.scope
                state.selected_sector_path = pick.sector.path
                affinity = get_sector_category_affinity(pick.sector)
                context.update(
                    sector=pick.sector.path,
                    sector_purpose=pick.sector.purpose,
                    min_confidence=get_sector_min_confidence(pick.sector, state.min_confidence),
                    category_boost=list(affinity.boost),
                    category_suppress=list(affinity.suppress),
                    sector_summary=build_sector_summary(sectors, pick.sector.path),
                )
                tx.effect(SaveSectors(sectors))
            state.coverage = compute_coverage(sectors).to_coverage()
        if state.scout_retries == 0:
            state.scout_cycles += 1
        context["scope"] = state.scope
        context["cycle"] = state.scout_cycles

        constraints = Constraints(
            allowed_paths=(state.scope,),
            max_files=SCOUT_MAX_FILES,
            plan_required=False,
        )
        return self._prompt(
            tx,
            inputs,
            f"Scout {state.scope} (cycle {state.scout_cycles}/{state.max_cycles})",
            constraints=constraints,
            context=context,
        )

    def _next_ticket(self, tx: Transition, inputs: AdvanceInputs) -> AdvanceResponse | None:
        state = tx.state
        if state.create_prs and state.prs_created >= state.max_prs:
            tx.set_phase(Phase.DONE)
            return self._stop(tx, inputs, f"PR limit reached ({state.prs_created}/{state.max_prs})")

        if not inputs.ready:
            if state.scout_cycles < state.max_cycles:
                state.scout_retries = 0
                tx.set_phase(Phase.SCOUT)
                return None
            tx.set_phase(Phase.DONE)
            coverage = state.coverage
            suffix = ""
            if coverage.sectors_total:
                suffix = (
                    f" (coverage: {coverage.sectors_scanned}/{coverage.sectors_total} sectors, "
                    f"{coverage.files_scanned}/{coverage.files_total} files)"
                )
            return self._stop(tx, inputs, f"No more tickets to process{suffix}")

        slots = state.parallel
        if state.create_prs:
            slots = min(slots, state.max_prs - state.prs_created)
        if slots > 1 and len(inputs.ready) > 1:
            batch = select_parallel_batch(inputs.ready, slots)
            if len(batch) > 1:
                ids = [ticket.id for ticket in batch]
                for ticket_id in ids:
                    tx.update_ticket_status(ticket_id, TicketStatus.IN_PROGRESS)
                tx.init_ticket_workers(ids)
                picked = set(ids)
                inputs.ready = [ticket for ticket in inputs.ready if ticket.id not in picked]
                tx.set_phase(Phase.PARALLEL_EXECUTE)
                return AdvanceResponse(
                    next_action=NextAction.PARALLEL_EXECUTE,
                    phase=Phase.PARALLEL_EXECUTE,
                    reason=f"Running {len(ids)} tickets in parallel",
                    digest=build_digest(state, inputs.now_ms),
                    context={"tickets": [ticket.to_dict() for ticket in batch]},
                    parallel_tickets=tuple(ids),
                )

        ticket = inputs.ready.pop(0)
        tx.update_ticket_status(ticket.id, TicketStatus.IN_PROGRESS)
        tx.assign_ticket(ticket.id)
        inputs.current = ticket
        policy = policy_for(state, ticket, inputs.learnings)
        if policy.plan_required:
            tx.set_phase(Phase.PLAN)
        else:
            state.plan_approved = True
            tx.emit(EventType.PLAN_APPROVED, {"ticket_id": ticket.id, "auto": True})
            tx.set_phase(Phase.EXECUTE)
        return None

    def _plan(self, tx: Transition, inputs: AdvanceInputs) -> AdvanceResponse | None:
        state = tx.state
        if state.plan_approved:
            tx.set_phase(Phase.EXECUTE)
            return None
        ticket = inputs.current
        if ticket is None or state.current_ticket_id is None:
            tx.set_phase(Phase.NEXT_TICKET)
            return None
        if state.plan_rejections >= MAX_PLAN_REJECTIONS:
            tx.update_ticket_status(ticket.id, TicketStatus.BLOCKED)
            tx.record_sector_outcome(False, ticket.category)
            tx.block_ticket(f"Plan rejected {state.plan_rejections} times")
            inputs.current = None
            tx.set_phase(Phase.BLOCKED_NEEDS_HUMAN)
            return self._stop(
                tx, inputs, f"Commit plan rejected {MAX_PLAN_REJECTIONS} times, needs human review"
            )

        policy = policy_for(state, ticket, inputs.learnings)
        reason = f"Plan ticket: {ticket.title}"
        if state.plan_rejections:
            reason = (
                f"Re-plan ticket: {ticket.title} "
                f"(attempt {state.plan_rejections + 1}/{MAX_PLAN_REJECTIONS})"
            )
        return self._prompt(
            tx,
            inputs,
            reason,
            constraints=Constraints.from_policy(policy, ticket),
            context={
                "ticket": ticket.to_dict(),
                "last_rejection": state.last_plan_rejection_reason,
                "hints": tx.consume_hints(),
                "risk": (
                    policy.risk_assessment.to_dict() if policy.risk_assessment is not None else None
                ),
            },
        )

    def _execute(self, tx: Transition, inputs: AdvanceInputs) -> AdvanceResponse | None:
        state = tx.state
        ticket = inputs.current
        if ticket is None or state.current_ticket_id is None:
            tx.set_phase(Phase.NEXT_TICKET)
            return None
        exhausted = _ticket_budget_exhausted(state)
        if exhausted is not None:
            which, label, used, budget = exhausted
            tx.emit(
                EventType.BUDGET_EXHAUSTED,
                {"which": which, "ticket_id": ticket.id, "used": used, "budget": budget},
            )
            tx.update_ticket_status(ticket.id, TicketStatus.BLOCKED)
            tx.record_sector_outcome(False, ticket.category)
            reason = f"{label} exhausted ({used}/{budget})"
            tx.fail_ticket(reason)
            inputs.current = None
            tx.set_phase(Phase.BLOCKED_NEEDS_HUMAN)
            return self._stop(tx, inputs, reason)

        policy = policy_for(state, ticket, inputs.learnings)
        plan = state.current_ticket_plan
        return self._prompt(
            tx,
            inputs,
            f"Execute ticket: {ticket.title}",
            constraints=Constraints.from_policy(policy, ticket),
            context={
                "ticket": ticket.to_dict(),
                "plan": plan.to_dict() if plan is not None else None,
                "last_qa_failure": (
                    state.last_qa_failure.to_dict() if state.last_qa_failure is not None else None
                ),
                "hints": tx.consume_hints(),
            },
        )

    def _qa(self, tx: Transition, inputs: AdvanceInputs) -> AdvanceResponse | None:
        state = tx.state
        ticket = inputs.current
        if ticket is None or state.current_ticket_id is None:
            tx.set_phase(Phase.NEXT_TICKET)
            return None
        if state.qa_retries >= MAX_QA_RETRIES:
            tx.update_ticket_status(ticket.id, TicketStatus.BLOCKED)
            tx.record_sector_outcome(False, ticket.category)
            tx.fail_ticket(f"QA failed {state.qa_retries} times")
            inputs.current = None
            tx.set_phase(Phase.NEXT_TICKET)
            return None

        tx.emit(EventType.QA_STARTED, {"ticket_id": ticket.id, "attempt": state.qa_retries + 1})
        return self._prompt(
            tx,
            inputs,
            f"Run QA for ticket: {ticket.title} (attempt {state.qa_retries + 1}/{MAX_QA_RETRIES})",
            constraints=Constraints(required_commands=tuple(ticket.verification_commands)),
            context={"ticket": ticket.to_dict(), "commands": list(ticket.verification_commands)},
        )

    def _pr(self, tx: Transition, inputs: AdvanceInputs) -> AdvanceResponse | None:
        state = tx.state
        ticket = inputs.current
        if ticket is None or state.current_ticket_id is None:
            tx.set_phase(Phase.NEXT_TICKET)
            return None
        return self._prompt(
            tx,
            inputs,
            f"Create PR for ticket: {ticket.title}",
            constraints=None,
            context={"ticket": ticket.to_dict(), "draft": state.draft_prs},
        )

    def _parallel(self, tx: Transition, inputs: AdvanceInputs) -> AdvanceResponse | None:
        state = tx.state
        if not state.ticket_workers:
            tx.set_phase(Phase.NEXT_TICKET)
            return None
        ids = tuple(state.ticket_workers)
        return AdvanceResponse(
            next_action=NextAction.PARALLEL_EXECUTE,
            phase=Phase.PARALLEL_EXECUTE,
            reason=f"{len(ids)} tickets in progress",
            digest=build_digest(state, inputs.now_ms),
            context={
                "workers": {
                    ticket_id: worker.phase.value
                    for ticket_id, worker in state.ticket_workers.items()
                }
            },
            parallel_tickets=ids,
        )

    # -- helpers --------------------------------------------------------------------

    def _prompt(
        self,
        tx: Transition,
        inputs: AdvanceInputs,
        reason: str,
        *,
        constraints: Constraints | None,
        context: dict[str, Any],
    ) -> AdvanceResponse:
        return AdvanceResponse(
            next_action=NextAction.PROMPT,
            phase=tx.state.phase,
            reason=reason,
            digest=build_digest(tx.state, inputs.now_ms),
            constraints=constraints,
            context=context,
        )

    def _stop(self, tx: Transition, inputs: AdvanceInputs, reason: str) -> AdvanceResponse:
        return AdvanceResponse(
            next_action=NextAction.STOP,
            phase=tx.state.phase,
            reason=reason,
            digest=build_digest(tx.state, inputs.now_ms),
        )

    async def _inputs(self, project_id: str, ticket_id: str | None) -> AdvanceInputs:
        ready = await self._tickets.list_by_project(project_id, status=TicketStatus.READY)
        ready.sort(key=lambda ticket: ticket.priority, reverse=True)
        current = await self._tickets.get_by_id(ticket_id) if ticket_id else None
        return AdvanceInputs(
            now_ms=self._run.now_ms(),
            ready=ready,
            current=current,
            sectors=self._sector_store.load() if self._sector_store is not None else None,
            learnings=await self.load_learnings(),
        )


def _ticket_budget_exhausted(state: RunState) -> tuple[str, str, int, int] | None:
    """Return ``(which, label, used, budget)`` for the first spent per-ticket budget."""
    if state.ticket_step_count >= state.ticket_step_budget:
        return (
            "ticket_step_budget",
            "Ticket step budget",
            state.ticket_step_count,
            state.ticket_step_budget,
        )
    if state.ticket_tool_calls >= state.max_tool_calls_per_ticket:
        return (
            "tool_call_budget",
            "Tool call budget",
            state.ticket_tool_calls,
            state.max_tool_calls_per_ticket,
        )
    return None


def select_parallel_batch(ready: Sequence[Ticket], slots: int) -> list[Ticket]:
    """First conflict-free wave of ``ready``, capped by ``slots`` and the adaptive count."""
    items = [WaveItem.from_ticket(ticket) for ticket in ready]
    waves = partition_into_waves(items)
    if not waves:
        return []
    wave = waves[0]
    limit = min(slots, get_adaptive_parallel_count(wave))
    return [item.payload for item in wave[:limit]]


async def advance(
    run: RunManager,
    tickets: TicketRepository,
    *,
    sector_store: SectorStore | None = None,
    learnings: LearningsStore | None = None,
    spindle_config: SpindleConfig = DEFAULT_SPINDLE_CONFIG,
    logger: Any | None = None,
) -> AdvanceResponse:
    """One-shot form of ``Advancer(...).advance()``."""
    advancer = Advancer(
        run,
        tickets,
        sector_store=sector_store,
        learnings=learnings,
        spindle_config=spindle_config,
        logger=logger,
    )
    return await advancer.advance()


__all__ = [
    "SCOUT_MAX_FILES",
    "TERMINAL_REASONS",
    "AdvanceInputs",
    "AdvanceResponse",
    "Advancer",
    "Constraints",
    "NextAction",
    "advance",
    "select_parallel_batch",
]
