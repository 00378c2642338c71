"""Unit tests for the async concurrency primitives."""

from __future__ import annotations

import asyncio

import pytest

from loopwarden.utils.concurrency import CancellationToken, CountingSemaphore, run_with_timeout


def test_semaphore_rejects_zero_slots() -> None:
    with pytest.raises(ValueError):
        CountingSemaphore(0)


async def test_semaphore_bounds_concurrency() -> None:
    semaphore = CountingSemaphore(2)
    active = 0
    peak = 0

    async def worker() -> None:
        nonlocal active, peak
        async with semaphore.slot():
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

    await asyncio.gather(*(worker() for _ in range(6)))

    assert peak == 2
    assert semaphore.stats() == {"slots": 2, "in_flight": 0, "peak": 2, "waiting": 0}


async def test_semaphore_hands_slots_to_waiters_in_fifo_order() -> None:
    semaphore = CountingSemaphore(1)
    await semaphore.acquire()
    order: list[int] = []

    async def waiter(index: int) -> None:
        await semaphore.acquire()
        order.append(index)
        semaphore.release()

    tasks = [asyncio.create_task(waiter(index)) for index in range(4)]
    await asyncio.sleep(0)
    assert semaphore.waiting == 4

    semaphore.release()
    await asyncio.gather(*tasks)

    assert order == [0, 1, 2, 3]
    assert semaphore.in_flight == 0
    assert semaphore.peak == 1


async def test_cancelled_waiter_does_not_consume_a_slot() -> None:
    semaphore = CountingSemaphore(1)
    await semaphore.acquire()
    blocked = asyncio.create_task(semaphore.acquire())
    await asyncio.sleep(0)

    blocked.cancel()
    with pytest.raises(asyncio.CancelledError):
        await blocked
    semaphore.release()

    assert semaphore.in_flight == 0
    assert semaphore.waiting == 0


def test_release_without_acquire_raises() -> None:
    semaphore = CountingSemaphore(1)
    with pytest.raises(RuntimeError):
        semaphore.release()


async def test_cancellation_token_keeps_first_reason() -> None:
    token = CancellationToken()
    assert not token.is_cancelled

    assert token.cancel("user stop")
    assert not token.cancel("second")

    assert token.is_cancelled
    assert token.reason == "user stop"
    with pytest.raises(asyncio.CancelledError):
        token.raise_if_cancelled()


async def test_run_with_timeout_returns_value() -> None:
    async def quick() -> int:
        return 7

    assert await run_with_timeout(quick(), 1.0) == 7


async def test_run_with_timeout_raises_timeout_error() -> None:
    async def slow() -> None:
        await asyncio.sleep(5)

    with pytest.raises(TimeoutError):
        await run_with_timeout(slow(), 0.01)


async def test_run_with_timeout_honours_cancel_token() -> None:
    token = CancellationToken()

    async def slow() -> None:
        await asyncio.sleep(5)

    async def cancel_soon() -> None:
        await asyncio.sleep(0.01)
        token.cancel("stop")

    canceller = asyncio.create_task(cancel_soon())
    with pytest.raises(asyncio.CancelledError):
        await run_with_timeout(slow(), 5.0, token)
    await canceller


async def test_run_with_timeout_rejects_non_positive_timeout() -> None:
    async def quick() -> int:
        return 1

    with pytest.raises(ValueError):
        await run_with_timeout(quick(), 0)
