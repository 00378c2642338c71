"""
loopwarden — ticket and run repositories

File: src/loopwarden/persistence/repositories.py

Purpose
- Define the async repository contracts the control plane depends on for
  tickets and run records, and provide in-memory implementations.

Functional requirements
- The control plane only needs ``get_by_id``, ``update_status``, ``create``
  and ``list_by_project``; the storage engine behind them is opaque.
- ``update_status`` on an unknown id raises ``TicketNotFoundError`` (tickets)
  or ``KeyError`` (runs).
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any, Protocol

from loopwarden.domain.models import Ticket, TicketStatus
from loopwarden.errors import TicketNotFoundError


class RunStatus(StrEnum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


@dataclass(slots=True)
class RunRecord:
    """Summary row for one session, kept by the repository layer."""

    id: str
    project_id: str
    status: RunStatus = RunStatus.RUNNING
    started_at: int = 0
    ended_at: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("RunRecord.id must be non-empty")


class TicketRepository(Protocol):
    """Storage contract for tickets."""

    async def get_by_id(self, ticket_id: str) -> Ticket | None: ...

    async def update_status(self, ticket_id: str, status: TicketStatus) -> Ticket: ...

    async def create(self, ticket: Ticket) -> Ticket: ...

    async def list_by_project(
        self, project_id: str, *, status: TicketStatus | None = None
    ) -> list[Ticket]: ...


class RunRepository(Protocol):
    """Storage contract for run records."""

    async def get_by_id(self, run_id: str) -> RunRecord | None: ...

    async def update_status(
        self, run_id: str, status: RunStatus, *, ended_at: int | None = None
    ) -> RunRecord: ...

    async def create(self, record: RunRecord) -> RunRecord: ...

    async def list_by_project(self, project_id: str) -> list[RunRecord]: ...


class InMemoryTicketRepository:
    """Dict-backed ticket repository preserving insertion order."""

    def __init__(self, tickets: Sequence[Ticket] = ()) -> None:
        self._tickets: dict[str, Ticket] = {ticket.id: ticket for ticket in tickets}
        self._lock = asyncio.Lock()

    async def get_by_id(self, ticket_id: str) -> Ticket | None:
        ticket = self._tickets.get(ticket_id)
        return replace(ticket) if ticket is not None else None

    async def update_status(self, ticket_id: str, status: TicketStatus) -> Ticket:
        async with self._lock:
            ticket = self._tickets.get(ticket_id)
            if ticket is None:
                raise TicketNotFoundError(ticket_id)
            updated = replace(ticket, status=status)
            self._tickets[ticket_id] = updated
            return replace(updated)

    async def create(self, ticket: Ticket) -> Ticket:
        async with self._lock:
            if ticket.id in self._tickets:
                raise ValueError(f"ticket already exists: {ticket.id}")
            self._tickets[ticket.id] = replace(ticket)
            return replace(ticket)

    async def list_by_project(
        self, project_id: str, *, status: TicketStatus | None = None
    ) -> list[Ticket]:
        return [
            replace(ticket)
            for ticket in self._tickets.values()
            if ticket.project_id == project_id and (status is None or ticket.status is status)
        ]


class InMemoryRunRepository:
    def __init__(self) -> None:
        self._runs: dict[str, RunRecord] = {}

    async def get_by_id(self, run_id: str) -> RunRecord | None:
        record = self._runs.get(run_id)
        return replace(record) if record is not None else None

    async def update_status(
        self, run_id: str, status: RunStatus, *, ended_at: int | None = None
    ) -> RunRecord:
        record = self._runs.get(run_id)
        if record is None:
            raise KeyError(run_id)
        updated = replace(record, status=status, ended_at=ended_at or record.ended_at)
        self._runs[run_id] = updated
        return replace(updated)

    async def create(self, record: RunRecord) -> RunRecord:
        if record.id in self._runs:
            raise ValueError(f"run already exists: {record.id}")
        self._runs[record.id] = replace(record)
        return replace(record)

    async def list_by_project(self, project_id: str) -> list[RunRecord]:
        return [replace(run) for run in self._runs.values() if run.project_id == project_id]


__all__ = [
    "InMemoryRunRepository",
    "InMemoryTicketRepository",
    "RunRecord",
    "RunRepository",
    "RunStatus",
    "TicketRepository",
]
