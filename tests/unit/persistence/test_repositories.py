"""Unit tests for the in-memory ticket and run repositories."""

from __future__ import annotations

import pytest

from loopwarden.domain.models import Ticket, TicketStatus
from loopwarden.errors import TicketNotFoundError
from loopwarden.persistence.repositories import (
    InMemoryRunRepository,
    InMemoryTicketRepository,
    RunRecord,
    RunStatus,
)


def _ticket(ticket_id: str, project_id: str = "proj") -> Ticket:
    return Ticket(id=ticket_id, project_id=project_id, title=f"Ticket {ticket_id}")


async def test_ticket_repository_crud() -> None:
    repo = InMemoryTicketRepository([_ticket("t1")])
    await repo.create(_ticket("t2"))
    await repo.create(_ticket("t3", project_id="other"))

    updated = await repo.update_status("t1", TicketStatus.IN_PROGRESS)

    assert updated.status is TicketStatus.IN_PROGRESS
    fetched = await repo.get_by_id("t1")
    assert fetched is not None
    assert fetched.status is TicketStatus.IN_PROGRESS
    assert [t.id for t in await repo.list_by_project("proj")] == ["t1", "t2"]
    ready = await repo.list_by_project("proj", status=TicketStatus.READY)
    assert [t.id for t in ready] == ["t2"]
    assert await repo.get_by_id("missing") is None


async def test_ticket_repository_returns_copies() -> None:
    repo = InMemoryTicketRepository([_ticket("t1")])
    fetched = await repo.get_by_id("t1")
    assert fetched is not None
    fetched.status = TicketStatus.DONE

    again = await repo.get_by_id("t1")
    assert again is not None
    assert again.status is TicketStatus.READY


async def test_ticket_repository_errors() -> None:
    repo = InMemoryTicketRepository([_ticket("t1")])
    with pytest.raises(TicketNotFoundError):
        await repo.update_status("nope", TicketStatus.DONE)
    with pytest.raises(ValueError, match="already exists"):
        await repo.create(_ticket("t1"))


async def test_run_repository() -> None:
    repo = InMemoryRunRepository()
    await repo.create(RunRecord(id="run-1", project_id="proj", started_at=1))

    ended = await repo.update_status("run-1", RunStatus.COMPLETED, ended_at=9)

    assert ended.status is RunStatus.COMPLETED
    assert ended.ended_at == 9
    assert [r.id for r in await repo.list_by_project("proj")] == ["run-1"]
    with pytest.raises(KeyError):
        await repo.update_status("run-2", RunStatus.FAILED)
    with pytest.raises(ValueError):
        RunRecord(id="", project_id="proj")
