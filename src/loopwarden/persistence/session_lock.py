"""Per-repository session lock: ``<root>/.state/session.lock`` holding a bare pid."""

from __future__ import annotations

import contextlib
import os
from pathlib import Path
from typing import Any

import structlog

from loopwarden.constants import SESSION_LOCK_FILE
from loopwarden.errors import SessionLockError
from loopwarden.persistence.run_folder import state_dir
from loopwarden.utils.fs import PathLike, ensure_dir


def pid_alive(pid: int) -> bool:
    """Return ``True`` when a process with ``pid`` exists."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user.
        return True
    except OSError:
        return False
    return True


class SessionLock:
    """Exclusive marker that one live process owns the repository's run state.

    A lock whose recorded pid is no longer alive is reclaimed silently.
    """

    def __init__(
        self,
        repo_root: PathLike,
        *,
        pid: int | None = None,
        logger: Any | None = None,
    ) -> None:
        self._path = state_dir(repo_root) / SESSION_LOCK_FILE
        self._pid = pid if pid is not None else os.getpid()
        self._held = False
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def held(self) -> bool:
        return self._held

    def holder(self) -> int | None:
        try:
            raw = self._path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        try:
            return int(raw)
        except ValueError:
            return None

    def acquire(self) -> None:
        """Take the lock; re-entry is allowed only through this same object."""
        if self._held:
            return
        ensure_dir(self._path.parent)
        for _ in range(2):
            try:
                fd = os.open(self._path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                holder = self.holder()
                if holder is not None and (holder == self._pid or pid_alive(holder)):
                    raise SessionLockError(str(self._path), holder) from None
                self._logger.warning(
                    "session_lock_reclaimed", path=str(self._path), stale_pid=holder
                )
                with contextlib.suppress(FileNotFoundError):
                    self._path.unlink()
                continue
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(str(self._pid))
            self._held = True
            self._logger.debug("session_lock_acquired", path=str(self._path), pid=self._pid)
            return
        raise SessionLockError(str(self._path), self.holder())

    def release(self) -> None:
        if not self._held:
            return
        if self.holder() == self._pid:
            with contextlib.suppress(FileNotFoundError):
                self._path.unlink()
        self._held = False
        self._logger.debug("session_lock_released", path=str(self._path), pid=self._pid)

    def __enter__(self) -> SessionLock:
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


__all__ = ["SessionLock", "pid_alive"]
