"""Exception hierarchy for infrastructure and lifecycle failures.

Policy rejections, QA failures and spindle verdicts are returned as values;
only conditions that make continuing unsafe raise.
"""

from __future__ import annotations


class LoopwardenError(Exception):
    """Root of all loopwarden exceptions."""


class SessionLockError(LoopwardenError):
    """A live session already holds the per-repository lock."""

    def __init__(self, lock_path: str, holder_pid: int | None) -> None:
        self.lock_path = lock_path
        self.holder_pid = holder_pid
        holder = f"pid {holder_pid}" if holder_pid is not None else "another session"
        super().__init__(
            f"session already active ({holder} holds {lock_path}); "
            "end that session or remove the lock if the process is gone"
        )


class NoActiveRunError(LoopwardenError):
    """An operation needed a loaded run and none was present."""

    def __init__(self) -> None:
        super().__init__("no active run; call create() or load() first")


class RunAlreadyActiveError(LoopwardenError):
    """``create()`` was called while this manager still owns a live run."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(f"run {run_id} is already active; end it first")


class RunEndedError(LoopwardenError):
    """A mutation was attempted on a run that has already ended."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(f"run {run_id} has ended and can no longer be modified")


class RunStateError(LoopwardenError):
    """Persisted run state is missing or unreadable."""


class TicketNotFoundError(LoopwardenError):
    """A ticket lookup through the repository layer missed."""

    def __init__(self, ticket_id: str) -> None:
        self.ticket_id = ticket_id
        super().__init__(f"ticket not found: {ticket_id}")


__all__ = [
    "LoopwardenError",
    "NoActiveRunError",
    "RunAlreadyActiveError",
    "RunEndedError",
    "RunStateError",
    "SessionLockError",
    "TicketNotFoundError",
]
