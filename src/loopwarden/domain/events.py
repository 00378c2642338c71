"""
loopwarden — typed event payloads

File: src/loopwarden/domain/events.py

Purpose
- Model every event the phase machine accepts as a tagged union of frozen
  payload records, plus the append-only ``RunEvent`` log record.

Functional requirements
- ``parse_event`` dispatches on ``EventType`` through a table and normalizes
  loosely shaped agent payloads (alternate key names, bare strings).
- Unknown or non-accepted event types raise ``ValueError``.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Final

from loopwarden.domain.models import EventType, PlannedFile

_PLAN_FILE_KEYS: Final[tuple[str, ...]] = ("files_to_touch", "files", "touched_files")


@dataclass(frozen=True, slots=True)
class SectorReclassification:
    production: bool
    confidence: str


@dataclass(frozen=True, slots=True)
class ScoutOutput:
    proposals: tuple[dict[str, Any], ...] = ()
    explored_dirs: tuple[str, ...] = ()
    reclassification: SectorReclassification | None = None
    reviewed_proposals: tuple[ReviewedProposal, ...] | None = None
    summary: str = ""

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> ScoutOutput:
        reclass_payload = payload.get("sector_reclassification")
        reclassification = None
        if isinstance(reclass_payload, Mapping) and "production" in reclass_payload:
            reclassification = SectorReclassification(
                production=bool(reclass_payload["production"]),
                confidence=str(reclass_payload.get("confidence", "low")),
            )
        reviewed = payload.get("reviewed_proposals")
        return cls(
            proposals=tuple(
                dict(item) for item in payload.get("proposals", ()) if isinstance(item, Mapping)
            ),
            explored_dirs=_strings(payload.get("explored_dirs")),
            reclassification=reclassification,
            reviewed_proposals=_reviewed(reviewed) if reviewed is not None else None,
            summary=str(payload.get("summary", "")),
        )


@dataclass(frozen=True, slots=True)
class ReviewedProposal:
    title: str
    confidence: float | None = None
    impact_score: float | None = None


@dataclass(frozen=True, slots=True)
class ProposalsReviewed:
    reviewed: tuple[ReviewedProposal, ...] = ()

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> ProposalsReviewed:
        return cls(reviewed=_reviewed(payload.get("reviewed_proposals", ())))


@dataclass(frozen=True, slots=True)
class ProposalsFiltered:
    accepted: int | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> ProposalsFiltered:
        accepted = payload.get("accepted")
        return cls(accepted=int(accepted) if accepted is not None else None)


@dataclass(frozen=True, slots=True)
class PlanSubmitted:
    ticket_id: str | None = None
    files_to_touch: tuple[PlannedFile, ...] = ()
    expected_tests: tuple[str, ...] = ()
    estimated_lines: int = 50
    risk_level: str = ""

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> PlanSubmitted:
        raw_files: object = ()
        for key in _PLAN_FILE_KEYS:
            if payload.get(key):
                raw_files = payload[key]
                break
        files: tuple[PlannedFile, ...] = ()
        if isinstance(raw_files, Sequence) and not isinstance(raw_files, str):
            files = tuple(PlannedFile.from_value(entry) for entry in raw_files)
        estimated = payload.get("estimated_lines")
        return cls(
            ticket_id=_optional_str(payload.get("ticket_id")),
            files_to_touch=files,
            expected_tests=_strings(payload.get("expected_tests")),
            estimated_lines=int(estimated) if isinstance(estimated, int | float) else 50,
            risk_level=str(payload.get("risk_level") or ""),
        )


@dataclass(frozen=True, slots=True)
class TicketResult:
    ticket_id: str | None = None
    status: str = "done"
    changed_files: tuple[str, ...] = ()
    lines_added: int = 0
    lines_removed: int = 0
    diff: str | None = None
    summary: str = ""
    pr_url: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status in ("done", "success")

    @property
    def lines_changed(self) -> int:
        return self.lines_added + self.lines_removed

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> TicketResult:
        return cls(
            ticket_id=_optional_str(payload.get("ticket_id")),
            status=str(payload.get("status", "done")),
            changed_files=_strings(payload.get("changed_files")),
            lines_added=int(payload.get("lines_added", 0) or 0),
            lines_removed=int(payload.get("lines_removed", 0) or 0),
            diff=_optional_str(payload.get("diff")),
            summary=str(payload.get("summary", "")),
            pr_url=_optional_str(payload.get("pr_url")),
        )


@dataclass(frozen=True, slots=True)
class QaCommandResult:
    command: str
    success: bool
    ticket_id: str | None = None
    exit_code: int | None = None
    output: str = ""
    duration_ms: int = 0

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> QaCommandResult:
        output = payload.get("output")
        if output is None:
            output = "\n".join(
                str(part) for part in (payload.get("stdout"), payload.get("stderr")) if part
            )
        exit_code = payload.get("exit_code")
        return cls(
            command=str(payload.get("command", "")),
            success=bool(payload.get("success", False)),
            ticket_id=_optional_str(payload.get("ticket_id")),
            exit_code=int(exit_code) if exit_code is not None else None,
            output=str(output),
            duration_ms=int(payload.get("duration_ms", 0) or 0),
        )


@dataclass(frozen=True, slots=True)
class QaPassed:
    ticket_id: str | None = None
    summary: str = ""

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> QaPassed:
        return cls(
            ticket_id=_optional_str(payload.get("ticket_id")),
            summary=str(payload.get("summary", "")),
        )


@dataclass(frozen=True, slots=True)
class QaFailed:
    ticket_id: str | None = None
    failed_commands: tuple[str, ...] = ()
    error: str = ""

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> QaFailed:
        return cls(
            ticket_id=_optional_str(payload.get("ticket_id")),
            failed_commands=_strings(payload.get("failed_commands")),
            error=str(payload.get("error", "")),
        )


@dataclass(frozen=True, slots=True)
class PrCreated:
    ticket_id: str | None = None
    url: str = ""
    branch: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> PrCreated:
        return cls(
            ticket_id=_optional_str(payload.get("ticket_id")),
            url=str(payload.get("url") or payload.get("pr_url") or ""),
            branch=_optional_str(payload.get("branch")),
        )


@dataclass(frozen=True, slots=True)
class UserOverride:
    hint: str | None = None
    cancel: bool = False
    skip_review: bool = False

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> UserOverride:
        hint = payload.get("hint")
        return cls(
            hint=str(hint) if hint else None,
            cancel=bool(payload.get("cancel", False)),
            skip_review=bool(payload.get("skip_review", False)),
        )


EventPayload = (
    ScoutOutput
    | ProposalsReviewed
    | ProposalsFiltered
    | PlanSubmitted
    | TicketResult
    | QaCommandResult
    | QaPassed
    | QaFailed
    | PrCreated
    | UserOverride
)

_PAYLOAD_PARSERS: Final[dict[EventType, Callable[[Mapping[str, Any]], EventPayload]]] = {
    EventType.SCOUT_OUTPUT: ScoutOutput.from_payload,
    EventType.PROPOSALS_REVIEWED: ProposalsReviewed.from_payload,
    EventType.PROPOSALS_FILTERED: ProposalsFiltered.from_payload,
    EventType.PLAN_SUBMITTED: PlanSubmitted.from_payload,
    EventType.TICKET_RESULT: TicketResult.from_payload,
    EventType.QA_COMMAND_RESULT: QaCommandResult.from_payload,
    EventType.QA_PASSED: QaPassed.from_payload,
    EventType.QA_FAILED: QaFailed.from_payload,
    EventType.PR_CREATED: PrCreated.from_payload,
    EventType.USER_OVERRIDE: UserOverride.from_payload,
}

ACCEPTED_EVENT_TYPES: Final[frozenset[EventType]] = frozenset(_PAYLOAD_PARSERS)


def parse_event(event_type: EventType | str, payload: Mapping[str, Any]) -> EventPayload:
    """Normalize a raw payload into the typed record for ``event_type``."""
    try:
        kind = EventType(event_type)
    except ValueError as exc:
        raise ValueError(f"unknown event type: {event_type!r}") from exc
    parser = _PAYLOAD_PARSERS.get(kind)
    if parser is None:
        raise ValueError(f"event type {kind.value} is not accepted by the phase machine")
    return parser(payload)


@dataclass(frozen=True, slots=True)
class RunEvent:
    """One line of ``events.ndjson``."""

    ts: str
    step: int
    type: EventType
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"ts": self.ts, "step": self.step, "type": self.type.value, "payload": self.payload}

    def to_json_line(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), default=str)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> RunEvent:
        return cls(
            ts=str(payload["ts"]),
            step=int(payload["step"]),
            type=EventType(payload["type"]),
            payload=dict(payload.get("payload", {})),
        )


def iso_timestamp(moment: datetime | None = None) -> str:
    value = moment or datetime.now(tz=UTC)
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _strings(value: object) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, Sequence):
        return tuple(str(item) for item in value)
    return ()


def _optional_str(value: object) -> str | None:
    return str(value) if value is not None and value != "" else None


def _number(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)
    return None


def _reviewed(value: object) -> tuple[ReviewedProposal, ...]:
    if not isinstance(value, Sequence) or isinstance(value, str):
        return ()
    reviewed: list[ReviewedProposal] = []
    for item in value:
        if not isinstance(item, Mapping) or not item.get("title"):
            continue
        reviewed.append(
            ReviewedProposal(
                title=str(item["title"]),
                confidence=_number(item.get("confidence")),
                impact_score=_number(item.get("impact_score")),
            )
        )
    return tuple(reviewed)


__all__ = [
    "ACCEPTED_EVENT_TYPES",
    "EventPayload",
    "PlanSubmitted",
    "PrCreated",
    "ProposalsFiltered",
    "ProposalsReviewed",
    "QaCommandResult",
    "QaFailed",
    "QaPassed",
    "ReviewedProposal",
    "RunEvent",
    "ScoutOutput",
    "SectorReclassification",
    "TicketResult",
    "UserOverride",
    "iso_timestamp",
    "parse_event",
]
