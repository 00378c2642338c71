"""Persistence: run folders, session lock, sector state and repositories."""

from loopwarden.persistence.repositories import (
    InMemoryRunRepository,
    InMemoryTicketRepository,
    RunRecord,
    RunRepository,
    RunStatus,
    TicketRepository,
)
from loopwarden.persistence.run_folder import RunFolder, runs_dir, state_dir
from loopwarden.persistence.sector_store import SectorStore
from loopwarden.persistence.session_lock import SessionLock, pid_alive

__all__ = [
    "InMemoryRunRepository",
    "InMemoryTicketRepository",
    "RunFolder",
    "RunRecord",
    "RunRepository",
    "RunStatus",
    "SectorStore",
    "SessionLock",
    "TicketRepository",
    "pid_alive",
    "runs_dir",
    "state_dir",
]
