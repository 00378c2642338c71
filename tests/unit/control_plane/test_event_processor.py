"""Unit tests for event ingestion against a real run folder."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from loopwarden.control_plane.event_processor import EventProcessor
from loopwarden.control_plane.run_manager import RunManager, RunOptions
from loopwarden.domain.models import (
    EventType,
    Phase,
    QaErrorClass,
    Ticket,
    TicketStatus,
    WorkerPhase,
)
from loopwarden.knowledge_plane.learnings import LearningSource, LearningsStore
from loopwarden.persistence.repositories import InMemoryTicketRepository


def _proposal(title: str, **changes: Any) -> dict[str, Any]:
    raw: dict[str, Any] = {
        "category": "refactor",
        "title": title,
        "description": "Tidy it up",
        "allowed_paths": ["src/a.py"],
        "files": ["src/a.py"],
        "confidence": 80,
        "risk": "low",
        "impact_score": 6,
    }
    raw.update(changes)
    return raw


def _ticket(ticket_id: str = "t1", **changes: Any) -> Ticket:
    values: dict[str, Any] = {
        "id": ticket_id,
        "project_id": "proj",
        "title": f"Ticket {ticket_id}",
        "allowed_paths": ["src/**"],
        "verification_commands": ["pytest -q"],
    }
    values.update(changes)
    return Ticket(**values)


def _setup(
    root: Path,
    tickets: list[Ticket] | None = None,
    *,
    learnings: LearningsStore | None = None,
    **options: Any,
) -> tuple[RunManager, InMemoryTicketRepository, EventProcessor]:
    run = RunManager(root, clock=lambda: 1_000)
    run.create(RunOptions(project_id="proj", run_id="run-a", **options))
    repo = InMemoryTicketRepository(tickets or [])
    return run, repo, EventProcessor(run, repo, learnings=learnings)


def _enter(run: RunManager, phase: Phase, ticket_id: str | None = None) -> None:
    tx = run.begin()
    if ticket_id is not None:
        tx.assign_ticket(ticket_id)
    tx.set_phase(phase)
    run.commit(tx)


def _event_types(run: RunManager) -> list[EventType]:
    return [event.type for event in run.folder.read_events()]


async def _status(repo: InMemoryTicketRepository, ticket_id: str) -> TicketStatus:
    ticket = await repo.get_by_id(ticket_id)
    assert ticket is not None
    return ticket.status


# -- scout --------------------------------------------------------------------------


async def test_scout_output_creates_tickets_when_review_is_skipped(tmp_path: Path) -> None:
    run, repo, processor = _setup(tmp_path, skip_review=True)

    result = await processor.process(
        EventType.SCOUT_OUTPUT,
        {"proposals": [_proposal("Simplify config loader")], "explored_dirs": ["src"]},
    )

    assert result.phase_changed
    assert result.new_phase is Phase.NEXT_TICKET
    [ticket] = await repo.list_by_project("proj", status=TicketStatus.READY)
    assert ticket.title == "Simplify config loader"
    state = run.require()
    assert state.scouted_dirs == ["src"]
    assert state.scout_exploration_log[0]["proposals"] == 1
    types = _event_types(run)
    assert types[1] is EventType.SCOUT_OUTPUT
    assert EventType.PROPOSALS_FILTERED in types
    assert EventType.TICKETS_CREATED in types


async def test_scout_output_waits_for_review(tmp_path: Path) -> None:
    run, repo, processor = _setup(tmp_path)

    pending = await processor.process(
        "SCOUT_OUTPUT", {"proposals": [_proposal("Simplify config loader")]}
    )

    assert pending.message == "1 proposals pending review"
    assert not pending.phase_changed
    assert run.require().pending_proposals is not None
    assert await repo.list_by_project("proj") == []

    reviewed = await processor.process(
        EventType.PROPOSALS_REVIEWED,
        {"reviewed_proposals": [{"title": "simplify config loader", "impact_score": 9}]},
    )

    assert reviewed.new_phase is Phase.NEXT_TICKET
    assert run.require().pending_proposals is None
    [ticket] = await repo.list_by_project("proj")
    assert ticket.title == "Simplify config loader"


async def test_review_that_zeroes_confidence_records_a_learning(tmp_path: Path) -> None:
    store = LearningsStore(tmp_path / "learnings.yaml")
    run, repo, processor = _setup(tmp_path, learnings=store)
    await processor.process(EventType.SCOUT_OUTPUT, {"proposals": [_proposal("Risky rewrite")]})

    result = await processor.process(
        EventType.PROPOSALS_REVIEWED,
        {"reviewed_proposals": [{"title": "Risky rewrite", "confidence": 0}]},
    )

    assert not result.phase_changed
    assert run.require().scout_retries == 1
    assert await repo.list_by_project("proj") == []
    [learning] = store.load()
    assert learning.source is LearningSource.REVIEWER_FEEDBACK
    assert "from 80 to 0" in learning.text


async def test_empty_scouts_retry_then_finish(tmp_path: Path) -> None:
    run, _, processor = _setup(tmp_path)

    messages = [
        (await processor.process(EventType.SCOUT_OUTPUT, {"proposals": []})).message
        for _ in range(4)
    ]

    assert messages[0] == "No proposals found; retrying scout (attempt 2/4)"
    assert messages[-1] == "No proposals found after 4 attempts"
    assert run.require().phase is Phase.DONE


async def test_scout_output_outside_scout_is_ignored_but_logged(tmp_path: Path) -> None:
    run, _, processor = _setup(tmp_path)
    _enter(run, Phase.PLAN)

    result = await processor.process(EventType.SCOUT_OUTPUT, {"proposals": [_proposal("x")]})

    assert not result.processed
    assert result.message == "Scout output ignored in phase PLAN"
    assert _event_types(run)[-1] is EventType.SCOUT_OUTPUT


# -- plan / execute -----------------------------------------------------------------


async def test_plan_approval_moves_to_execute(tmp_path: Path) -> None:
    run, _, processor = _setup(tmp_path, [_ticket()])
    _enter(run, Phase.PLAN, "t1")

    result = await processor.process(
        EventType.PLAN_SUBMITTED,
        {"files_to_touch": ["src/a.py"], "estimated_lines": 20, "risk_level": "low"},
    )

    assert result.new_phase is Phase.EXECUTE
    state = run.require()
    assert state.plan_approved
    assert state.current_ticket_plan is not None
    assert state.current_ticket_plan.paths == ["src/a.py"]
    assert len(state.spindle.plan_hashes) == 1
    assert EventType.PLAN_APPROVED in _event_types(run)


async def test_plan_outside_allowed_paths_is_rejected(tmp_path: Path) -> None:
    store = LearningsStore(tmp_path / "learnings.yaml")
    run, _, processor = _setup(tmp_path, [_ticket()], learnings=store)
    _enter(run, Phase.PLAN, "t1")

    result = await processor.process(
        EventType.PLAN_SUBMITTED, {"files": ["docs/x.md"], "risk_level": "low"}
    )

    assert not result.phase_changed
    assert result.message == (
        "Plan rejected: File docs/x.md is outside allowed paths: src/** (attempt 1/3)"
    )
    state = run.require()
    assert state.phase is Phase.PLAN
    assert state.plan_rejections == 1
    assert [learning.source for learning in store.load()] == [LearningSource.PLAN_REJECTION]


async def test_high_risk_plan_needs_a_human(tmp_path: Path) -> None:
    run, _, processor = _setup(tmp_path, [_ticket()])
    _enter(run, Phase.PLAN, "t1")

    result = await processor.process(
        EventType.PLAN_SUBMITTED, {"files_to_touch": ["src/a.py"], "risk_level": "high"}
    )

    assert result.new_phase is Phase.BLOCKED_NEEDS_HUMAN


async def test_ticket_result_outside_plan_is_sent_back(tmp_path: Path) -> None:
    run, _, processor = _setup(tmp_path, [_ticket()])
    _enter(run, Phase.PLAN, "t1")
    await processor.process(
        EventType.PLAN_SUBMITTED, {"files_to_touch": ["src/a.py"], "risk_level": "low"}
    )

    result = await processor.process(
        EventType.TICKET_RESULT,
        {"status": "done", "changed_files": ["src/a.py", "src/b.py"], "lines_added": 4},
    )

    assert not result.phase_changed
    assert result.message.startswith("Changed files not in plan: src/b.py")
    assert run.require().phase is Phase.EXECUTE
    assert EventType.SCOPE_BLOCKED in _event_types(run)


async def test_successful_ticket_result_moves_to_qa(tmp_path: Path) -> None:
    run, _, processor = _setup(tmp_path, [_ticket()])
    _enter(run, Phase.PLAN, "t1")
    await processor.process(
        EventType.PLAN_SUBMITTED, {"files_to_touch": ["src/a.py"], "risk_level": "low"}
    )

    result = await processor.process(
        EventType.TICKET_RESULT,
        {
            "status": "done",
            "changed_files": ["./src/a.py"],
            "lines_added": 4,
            "lines_removed": 1,
            "diff": "+++ b/src/a.py\n+x\n",
            "summary": "done",
        },
    )

    assert result.new_phase is Phase.QA
    state = run.require()
    assert state.total_lines_changed == 5
    assert state.ticket_lines_changed == 5
    assert state.spindle.iterations_since_change == 0
    assert [path.name for path in run.folder.diffs_dir.iterdir()] == ["0-t1.patch"]


async def test_failed_ticket_result_blocks_the_ticket(tmp_path: Path) -> None:
    run, repo, processor = _setup(tmp_path, [_ticket()])
    _enter(run, Phase.EXECUTE, "t1")

    result = await processor.process(
        EventType.TICKET_RESULT, {"status": "failed", "summary": "cannot compile"}
    )

    assert result.message == "Ticket failed: cannot compile"
    assert result.new_phase is Phase.NEXT_TICKET
    assert await _status(repo, "t1") is TicketStatus.BLOCKED
    state = run.require()
    assert state.tickets_failed == 1
    assert state.current_ticket_id is None


# -- QA / PR ------------------------------------------------------------------------


async def test_qa_pass_completes_the_ticket(tmp_path: Path) -> None:
    run, repo, processor = _setup(tmp_path, [_ticket()])
    _enter(run, Phase.QA, "t1")

    result = await processor.process(EventType.QA_PASSED, {"summary": "all green"})

    assert result.new_phase is Phase.NEXT_TICKET
    assert await _status(repo, "t1") is TicketStatus.DONE
    assert run.require().tickets_completed == 1


async def test_qa_pass_then_pr_when_prs_are_enabled(tmp_path: Path) -> None:
    run, _, processor = _setup(tmp_path, [_ticket()], create_prs=True)
    _enter(run, Phase.QA, "t1")

    passed = await processor.process(EventType.QA_PASSED, {})
    created = await processor.process(
        EventType.PR_CREATED, {"url": "https://example.test/pr/1", "branch": "lw/t1"}
    )

    assert passed.new_phase is Phase.PR
    assert created.message == "PR created: https://example.test/pr/1"
    state = run.require()
    assert state.phase is Phase.NEXT_TICKET
    assert state.prs_created == 1
    assert state.tickets_completed == 1


async def test_code_failures_retry_in_execute(tmp_path: Path) -> None:
    run, _, processor = _setup(tmp_path, [_ticket()])
    _enter(run, Phase.QA, "t1")

    result = await processor.process(
        EventType.QA_FAILED,
        {"failed_commands": ["pytest -q"], "error": "E   TypeError: bad operand"},
    )

    assert result.new_phase is Phase.EXECUTE
    assert result.message == "QA failed (code), retrying (attempt 1/3)"
    failure = run.require().last_qa_failure
    assert failure is not None
    assert failure.error_class is QaErrorClass.CODE
    assert failure.signature == "TypeError: bad operand"


async def test_environment_failure_blocks_after_one_attempt(tmp_path: Path) -> None:
    store = LearningsStore(tmp_path / "learnings.yaml")
    run, repo, processor = _setup(tmp_path, [_ticket()], learnings=store)
    _enter(run, Phase.QA, "t1")

    result = await processor.process(
        EventType.QA_FAILED, {"failed_commands": ["ruff"], "error": "ruff: command not found"}
    )

    assert result.new_phase is Phase.NEXT_TICKET
    assert await _status(repo, "t1") is TicketStatus.BLOCKED
    assert run.require().tickets_blocked == 1
    [learning] = store.load()
    assert learning.source is LearningSource.QA_FAILURE


async def test_qa_command_result_is_logged_as_an_artifact(tmp_path: Path) -> None:
    run, _, processor = _setup(tmp_path, [_ticket()])
    _enter(run, Phase.QA, "t1")

    await processor.process(
        EventType.QA_COMMAND_RESULT,
        {"command": "pytest -q", "success": False, "stdout": "1 failed", "exit_code": 1},
    )

    log = run.folder.artifacts_dir / "0-qa-pytest-q-fail.log"
    assert log.read_text(encoding="utf-8") == "$ pytest -q\n\n1 failed"
    assert len(run.require().spindle.failing_command_signatures) == 1


# -- user overrides -----------------------------------------------------------------


async def test_hint_is_queued(tmp_path: Path) -> None:
    run, _, processor = _setup(tmp_path)

    result = await processor.process(EventType.USER_OVERRIDE, {"hint": "look at utils"})

    assert result.message == "Hint queued"
    assert run.require().hints == ["look at utils"]


async def test_cancel_aborts_the_current_ticket(tmp_path: Path) -> None:
    run, repo, processor = _setup(tmp_path, [_ticket()])
    _enter(run, Phase.EXECUTE, "t1")

    result = await processor.process(EventType.USER_OVERRIDE, {"cancel": True})

    assert result.message == "Session cancelled by user"
    assert run.require().phase is Phase.DONE
    assert await _status(repo, "t1") is TicketStatus.ABORTED


async def test_skip_review_releases_pending_proposals(tmp_path: Path) -> None:
    run, repo, processor = _setup(tmp_path)
    await processor.process(EventType.SCOUT_OUTPUT, {"proposals": [_proposal("Cache parser")]})

    result = await processor.process(EventType.USER_OVERRIDE, {"skip_review": True})

    assert result.message == "Review skipped, created 1 tickets"
    state = run.require()
    assert state.skip_review
    assert state.pending_proposals is None
    assert state.phase is Phase.NEXT_TICKET
    assert len(await repo.list_by_project("proj")) == 1


# -- parallel workers ---------------------------------------------------------------


def _start_workers(run: RunManager, ids: list[str]) -> None:
    tx = run.begin()
    tx.init_ticket_workers(ids)
    tx.set_phase(Phase.PARALLEL_EXECUTE)
    run.commit(tx)


async def test_worker_events_route_to_the_named_worker(tmp_path: Path) -> None:
    run, repo, processor = _setup(tmp_path, [_ticket("t1"), _ticket("t2")])
    _start_workers(run, ["t1", "t2"])

    planned = await processor.process(
        EventType.PLAN_SUBMITTED,
        {"ticket_id": "t1", "files_to_touch": ["src/a.py"], "risk_level": "low"},
    )
    executed = await processor.process(
        EventType.TICKET_RESULT,
        {"ticket_id": "t1", "status": "done", "diff": "+++ b/src/a.py\n+x\n", "lines_added": 1},
    )

    assert planned.message == "Plan approved for t1"
    assert executed.message == "Ticket t1 moved to QA"
    assert not planned.phase_changed and not executed.phase_changed
    state = run.require()
    assert state.phase is Phase.PARALLEL_EXECUTE
    assert state.ticket_workers["t1"].phase is WorkerPhase.QA
    assert state.ticket_workers["t2"].phase is WorkerPhase.PLAN

    done = await processor.process(EventType.QA_PASSED, {"ticket_id": "t1"})

    assert done.message == "QA passed, ticket t1 complete"
    assert "t1" not in run.require().ticket_workers
    assert await _status(repo, "t1") is TicketStatus.DONE


async def test_worker_plan_escaping_the_worktree_is_rejected(tmp_path: Path) -> None:
    run, _, processor = _setup(tmp_path, [_ticket("t1", allowed_paths=[])])
    _start_workers(run, ["t1"])

    result = await processor.process(
        EventType.PLAN_SUBMITTED,
        {"ticket_id": "t1", "files_to_touch": ["../../../etc/hosts"], "risk_level": "low"},
    )

    assert result.message.startswith("Plan rejected for t1")
    assert run.require().ticket_workers["t1"].plan_rejections == 1


async def test_untargeted_events_fall_through_to_the_session(tmp_path: Path) -> None:
    run, _, processor = _setup(tmp_path, [_ticket("t1")])
    _start_workers(run, ["t1"])

    result = await processor.process(EventType.QA_PASSED, {"ticket_id": "unknown"})

    assert not result.processed
    assert result.message == "QA pass ignored in phase PARALLEL_EXECUTE"


# -- validation and atomicity -------------------------------------------------------


@pytest.mark.parametrize(
    ("event_type", "payload"),
    [
        ("NOT_AN_EVENT", {}),
        (EventType.SESSION_START, {}),
        (EventType.PLAN_SUBMITTED, {"files_to_touch": [42]}),
    ],
)
async def test_malformed_events_raise(
    tmp_path: Path, event_type: Any, payload: dict[str, Any]
) -> None:
    run, _, processor = _setup(tmp_path)

    with pytest.raises(ValueError):
        await processor.process(event_type, payload)
    assert _event_types(run) == [EventType.SESSION_START]


class _BrokenRepository(InMemoryTicketRepository):
    async def create(self, ticket: Ticket) -> Ticket:
        raise RuntimeError("database unavailable")


async def test_failed_effects_commit_nothing(tmp_path: Path) -> None:
    run = RunManager(tmp_path, clock=lambda: 1_000)
    run.create(RunOptions(project_id="proj", run_id="run-a", skip_review=True))
    processor = EventProcessor(run, _BrokenRepository())

    with pytest.raises(RuntimeError, match="database unavailable"):
        await processor.process(EventType.SCOUT_OUTPUT, {"proposals": [_proposal("x y z")]})

    assert run.require().phase is Phase.SCOUT
    assert run.folder.read_state().phase is Phase.SCOUT
    assert _event_types(run) == [EventType.SESSION_START]
