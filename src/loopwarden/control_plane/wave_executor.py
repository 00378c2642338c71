"""
loopwarden — bounded-concurrency wave execution

File: src/loopwarden/control_plane/wave_executor.py

Purpose
- Run work items wave by wave with at most N in flight per wave, and tally
  outcomes into session totals.

Functional requirements
- Waves run strictly in sequence; items within a wave share a counting
  semaphore sized by the adaptive slot count (or a fixed override).
- Cancellation is cooperative: it is checked before each item starts and
  before each inter-wave pause; running items finish.
- One item's exception never aborts its siblings; it is recorded as a failure.
- Totals and sector outcomes are updated from the event loop thread only,
  after each item's awaited result.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog

from loopwarden.control_plane.waves import (
    WaveItem,
    cap_for_milestone,
    get_adaptive_parallel_count,
    partition_into_waves,
)
from loopwarden.knowledge_plane.sectors import record_ticket_outcome
from loopwarden.persistence.sector_store import SectorStore
from loopwarden.utils.concurrency import CancellationToken, CountingSemaphore, run_with_timeout


@dataclass(frozen=True, slots=True)
class ItemOutcome:
    item_id: str
    success: bool
    pr_url: str | None = None
    error: str | None = None


@dataclass(slots=True)
class WaveTotals:
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    waves_run: int = 0
    pr_urls: list[str] = field(default_factory=list)
    outcomes: list[ItemOutcome] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "completed": self.completed,
            "failed": self.failed,
            "skipped": self.skipped,
            "waves_run": self.waves_run,
            "pr_urls": list(self.pr_urls),
        }


ItemRunner = Callable[[WaveItem], Awaitable[ItemOutcome]]


class WaveExecutor:
    """Executes conflict-free waves with a bounded worker pool."""

    def __init__(
        self,
        *,
        slots: int | None = None,
        milestone_remaining: int | None = None,
        cancel_token: CancellationToken | None = None,
        sector_store: SectorStore | None = None,
        item_timeout_seconds: float | None = None,
        pause_seconds: float = 0.0,
        logger: Any | None = None,
    ) -> None:
        if slots is not None and slots <= 0:
            raise ValueError("slots must be > 0")
        if item_timeout_seconds is not None and item_timeout_seconds <= 0:
            raise ValueError("item_timeout_seconds must be > 0")
        if pause_seconds < 0:
            raise ValueError("pause_seconds must be >= 0")
        self._slots = slots
        self._milestone_remaining = milestone_remaining
        self._cancel_token = cancel_token if cancel_token is not None else CancellationToken()
        self._sector_store = sector_store
        self._item_timeout_seconds = item_timeout_seconds
        self._pause_seconds = pause_seconds
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def cancel_token(self) -> CancellationToken:
        return self._cancel_token

    def slots_for(self, wave: Sequence[WaveItem]) -> int:
        if self._slots is not None:
            return self._slots
        return cap_for_milestone(get_adaptive_parallel_count(wave), self._milestone_remaining)

    async def run(self, items: Sequence[WaveItem], execute: ItemRunner) -> WaveTotals:
        totals = WaveTotals()
        waves = partition_into_waves(items)
        self._logger.info("waves_planned", items=len(items), waves=len(waves))

        for index, wave in enumerate(waves):
            if self._cancel_token.is_cancelled:
                remaining = sum(len(rest) for rest in waves[index:])
                totals.skipped += remaining
                self._logger.info(
                    "waves_cancelled",
                    wave=index,
                    skipped=remaining,
                    reason=self._cancel_token.reason,
                )
                break
            if index > 0 and self._pause_seconds > 0:
                await asyncio.sleep(self._pause_seconds)
                if self._cancel_token.is_cancelled:
                    remaining = sum(len(rest) for rest in waves[index:])
                    totals.skipped += remaining
                    break

            semaphore = CountingSemaphore(self.slots_for(wave))
            self._logger.info(
                "wave_started", wave=index, items=len(wave), slots=semaphore.slots
            )
            results = await asyncio.gather(
                *(self._run_item(item, execute, semaphore, totals) for item in wave),
                return_exceptions=True,
            )
            for item, result in zip(wave, results, strict=True):
                if isinstance(result, BaseException):
                    # Only reached when the item task itself was cancelled.
                    outcome = ItemOutcome(item_id=item.id, success=False, error=repr(result))
                    self._record(totals, item, outcome)
            totals.waves_run += 1
            self._logger.info(
                "wave_finished",
                wave=index,
                completed=totals.completed,
                failed=totals.failed,
                skipped=totals.skipped,
            )
        return totals

    async def _run_item(
        self,
        item: WaveItem,
        execute: ItemRunner,
        semaphore: CountingSemaphore,
        totals: WaveTotals,
    ) -> None:
        async with semaphore.slot():
            if self._cancel_token.is_cancelled:
                totals.skipped += 1
                return
            try:
                if self._item_timeout_seconds is not None:
                    outcome = await run_with_timeout(execute(item), self._item_timeout_seconds)
                else:
                    outcome = await execute(item)
            except TimeoutError:
                outcome = ItemOutcome(
                    item_id=item.id,
                    success=False,
                    error=f"timed out after {self._item_timeout_seconds} seconds",
                )
            except Exception as exc:
                self._logger.warning("wave_item_failed", item_id=item.id, error=str(exc))
                outcome = ItemOutcome(item_id=item.id, success=False, error=str(exc))
            self._record(totals, item, outcome)

    def _record(self, totals: WaveTotals, item: WaveItem, outcome: ItemOutcome) -> None:
        totals.outcomes.append(outcome)
        if outcome.success:
            totals.completed += 1
            if outcome.pr_url:
                totals.pr_urls.append(outcome.pr_url)
        else:
            totals.failed += 1
        if item.sector_path and self._sector_store is not None:
            sectors = self._sector_store.load()
            if sectors is not None and record_ticket_outcome(
                sectors, item.sector_path, outcome.success, item.category
            ):
                self._sector_store.try_save(sectors)


__all__ = ["ItemOutcome", "ItemRunner", "WaveExecutor", "WaveTotals"]
