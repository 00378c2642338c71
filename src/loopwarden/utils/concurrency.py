"""Slot accounting and cooperative cancellation for parallel ticket waves."""

from __future__ import annotations

import asyncio
import inspect
from collections import deque
from contextlib import asynccontextmanager, suppress
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable

T = TypeVar("T")


class CancellationToken:
    """Set-once stop flag; running work is never interrupted, only polled."""

    def __init__(self) -> None:
        self._stopped = asyncio.Event()
        self._reason: str | None = None

    @property
    def is_cancelled(self) -> bool:
        return self._stopped.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> bool:
        """Request a stop; returns ``False`` when one was already requested."""
        if self._stopped.is_set():
            return False
        self._reason = reason
        self._stopped.set()
        return True

    async def wait(self) -> None:
        await self._stopped.wait()

    def raise_if_cancelled(self) -> None:
        if self.is_cancelled:
            raise asyncio.CancelledError(self._reason or "cancelled")


class CountingSemaphore:
    """Bounded worker slots with strict first-come hand-off.

    A released slot goes straight to the oldest queued ``acquire`` instead of
    back to the pool, so a late arrival can never overtake a waiter. ``peak``
    records the most slots ever held at once.
    """

    def __init__(self, slots: int) -> None:
        if slots < 1:
            raise ValueError(f"slots must be >= 1, got {slots}")
        self._slots = slots
        self._in_flight = 0
        self._peak = 0
        self._queue: deque[asyncio.Future[None]] = deque()

    @property
    def slots(self) -> int:
        return self._slots

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def peak(self) -> int:
        return self._peak

    @property
    def waiting(self) -> int:
        return len(self._queue)

    def _take(self) -> None:
        self._in_flight += 1
        self._peak = max(self._peak, self._in_flight)

    async def acquire(self) -> None:
        if self._in_flight < self._slots and not self._queue:
            self._take()
            return

        turn: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._queue.append(turn)
        try:
            await turn
        except asyncio.CancelledError:
            if turn.cancelled() or not turn.done():
                with suppress(ValueError):
                    self._queue.remove(turn)
            else:
                # handed a slot in the same tick as the cancel
                self.release()
            raise

    def release(self) -> None:
        if self._in_flight == 0:
            raise RuntimeError("release() without a held slot")
        self._in_flight -= 1
        while self._queue:
            turn = self._queue.popleft()
            if not turn.done():
                self._take()
                turn.set_result(None)
                return

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        await self.acquire()
        try:
            yield
        finally:
            self.release()

    def stats(self) -> dict[str, int]:
        return {
            "slots": self._slots,
            "in_flight": self._in_flight,
            "peak": self._peak,
            "waiting": self.waiting,
        }


async def run_with_timeout(
    work: Awaitable[T],
    timeout_seconds: float,
    token: CancellationToken | None = None,
) -> T:
    """Await ``work`` until it finishes, times out or ``token`` is cancelled.

    Raises ``TimeoutError`` or ``asyncio.CancelledError``; in both cases the
    work task is cancelled and awaited before returning.
    """
    if timeout_seconds <= 0 or (token is not None and token.is_cancelled):
        if inspect.iscoroutine(work):
            work.close()
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        raise asyncio.CancelledError(token.reason if token is not None else None)

    task = asyncio.ensure_future(work)
    watcher = asyncio.ensure_future(token.wait()) if token is not None else None
    pending = {task} if watcher is None else {task, watcher}
    try:
        done, _ = await asyncio.wait(
            pending, timeout=timeout_seconds, return_when=asyncio.FIRST_COMPLETED
        )
        if task in done:
            return task.result()
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        if watcher is not None and watcher in done:
            raise asyncio.CancelledError(token.reason if token is not None else None)
        raise TimeoutError(f"timed out after {timeout_seconds} seconds")
    finally:
        if not task.done():
            task.cancel()
        if watcher is not None:
            watcher.cancel()
            with suppress(asyncio.CancelledError):
                await watcher


__all__ = ["CancellationToken", "CountingSemaphore", "run_with_timeout"]
