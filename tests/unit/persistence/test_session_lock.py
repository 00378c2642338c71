"""Unit tests for the per-repository session lock."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from loopwarden.errors import SessionLockError
from loopwarden.persistence import session_lock
from loopwarden.persistence.session_lock import SessionLock, pid_alive


def test_acquire_writes_pid_and_release_removes_it(tmp_path: Path) -> None:
    lock = SessionLock(tmp_path, pid=os.getpid())
    with lock:
        assert lock.held
        assert lock.path == tmp_path / ".state" / "session.lock"
        assert lock.holder() == os.getpid()
    assert not lock.held
    assert not lock.path.exists()


def test_reacquire_through_the_same_lock_is_a_no_op(tmp_path: Path) -> None:
    lock = SessionLock(tmp_path, pid=os.getpid())
    lock.acquire()
    lock.acquire()

    assert lock.held
    lock.release()
    assert not lock.path.exists()


def test_second_lock_in_the_same_process_is_refused(tmp_path: Path) -> None:
    first = SessionLock(tmp_path, pid=os.getpid())
    first.acquire()
    second = SessionLock(tmp_path, pid=os.getpid())

    with pytest.raises(SessionLockError) as excinfo:
        second.acquire()

    assert excinfo.value.holder_pid == os.getpid()
    assert not second.held
    assert first.held
    first.release()


def test_live_holder_blocks_acquire(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(session_lock, "pid_alive", lambda pid: True)
    SessionLock(tmp_path, pid=424242).acquire()

    contender = SessionLock(tmp_path, pid=os.getpid())
    with pytest.raises(SessionLockError) as excinfo:
        contender.acquire()

    assert excinfo.value.holder_pid == 424242
    assert "session already active" in str(excinfo.value)
    assert not contender.held


def test_stale_lock_is_reclaimed(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(session_lock, "pid_alive", lambda pid: False)
    SessionLock(tmp_path, pid=424242).acquire()

    lock = SessionLock(tmp_path, pid=os.getpid())
    lock.acquire()

    assert lock.holder() == os.getpid()


def test_unreadable_lock_contents_are_reclaimed(tmp_path: Path) -> None:
    lock = SessionLock(tmp_path, pid=os.getpid())
    lock.path.parent.mkdir(parents=True)
    lock.path.write_text("garbage", encoding="utf-8")

    lock.acquire()

    assert lock.holder() == os.getpid()


def test_release_leaves_foreign_lock_in_place(tmp_path: Path) -> None:
    lock = SessionLock(tmp_path, pid=os.getpid())
    lock.acquire()
    lock.path.write_text("1", encoding="utf-8")

    lock.release()

    assert lock.path.exists()


def test_pid_alive() -> None:
    assert pid_alive(os.getpid())
    assert not pid_alive(0)
    assert not pid_alive(-3)
