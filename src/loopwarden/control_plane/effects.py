"""Apply the repository, sector and learning effects a transition collected."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import structlog

from loopwarden.control_plane.transitions import (
    CreateTicket,
    Effect,
    RecordLearning,
    RecordSectorOutcome,
    SaveSectors,
    UpdateTicketStatus,
)
from loopwarden.errors import TicketNotFoundError
from loopwarden.knowledge_plane.learnings import LearningsStore
from loopwarden.knowledge_plane.sectors import record_ticket_outcome
from loopwarden.persistence.repositories import TicketRepository
from loopwarden.persistence.sector_store import SectorStore


class EffectSink:
    """Applies external effects before the owning transition is committed.

    Ticket writes propagate errors other than a missing ticket. Sector and
    learning bookkeeping is best-effort and only logged on failure.
    """

    def __init__(
        self,
        tickets: TicketRepository,
        *,
        sector_store: SectorStore | None = None,
        learnings: LearningsStore | None = None,
        logger: Any | None = None,
    ) -> None:
        self._tickets = tickets
        self._sector_store = sector_store
        self._learnings = learnings
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    async def apply(self, effects: Iterable[Effect]) -> int:
        applied = 0
        for effect in effects:
            if isinstance(effect, UpdateTicketStatus):
                try:
                    await self._tickets.update_status(effect.ticket_id, effect.status)
                except TicketNotFoundError:
                    self._logger.warning("ticket_status_update_skipped", ticket_id=effect.ticket_id)
                    continue
            elif isinstance(effect, CreateTicket):
                await self._tickets.create(effect.ticket)
            elif isinstance(effect, SaveSectors):
                if self._sector_store is None:
                    continue
                self._sector_store.try_save(effect.sectors)
            elif isinstance(effect, RecordSectorOutcome):
                if not self._record_sector_outcome(effect):
                    continue
            elif isinstance(effect, RecordLearning):
                if not self._record_learning(effect):
                    continue
            else:
                # Artifact and diff writes belong to the run folder commit.
                continue
            applied += 1
        return applied

    def _record_sector_outcome(self, effect: RecordSectorOutcome) -> bool:
        if self._sector_store is None:
            return False
        sectors = self._sector_store.load()
        if sectors is None:
            return False
        if record_ticket_outcome(sectors, effect.path, effect.success, effect.category) is None:
            self._logger.debug("sector_outcome_unknown_sector", path=effect.path)
            return False
        return self._sector_store.try_save(sectors)

    def _record_learning(self, effect: RecordLearning) -> bool:
        if self._learnings is None:
            return False
        try:
            self._learnings.record(
                effect.text,
                source=effect.source,
                category=effect.category,
                paths=effect.paths,
                commands=effect.commands,
            )
        except OSError as exc:
            self._logger.warning(
                "learning_record_failed", source=effect.source.value, error=str(exc)
            )
            return False
        return True


__all__ = ["EffectSink"]
