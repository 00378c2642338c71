"""
loopwarden — scout-side event handlers

File: src/loopwarden/control_plane/handlers/scout.py

Purpose
- Turn SCOUT_OUTPUT, PROPOSALS_REVIEWED and PROPOSALS_FILTERED events into
  run-state changes: explored directories, sector scan bookkeeping, the
  pending review queue and ticket creation.

Functional requirements
- Scout output outside SCOUT is ignored.
- An empty scout retries up to the retry ceiling, then ends the run.
- Without ``skip_review`` proposals wait in ``pending_proposals`` until a
  review arrives; the review may adjust confidence and impact per title.
"""

from __future__ import annotations

from typing import Any

from loopwarden.control_plane.handlers.context import (
    HandlerContext,
    ProcessResult,
    changed,
    filter_and_create,
    ignored,
    retry_or_done,
    unchanged,
)
from loopwarden.control_plane.transitions import SaveSectors, Transition
from loopwarden.domain.events import ProposalsFiltered, ProposalsReviewed, ScoutOutput
from loopwarden.domain.models import Confidence, Phase
from loopwarden.knowledge_plane.learnings import LearningCategory, LearningSource
from loopwarden.knowledge_plane.sectors import compute_coverage, record_scan_result

CONFIDENCE_DROP_LEARNING_THRESHOLD = 20


def handle_scout_output(
    tx: Transition, payload: ScoutOutput, ctx: HandlerContext
) -> ProcessResult:
    state = tx.state
    if state.phase is not Phase.SCOUT:
        return ignored(f"Scout output ignored in phase {state.phase.value}")

    for directory in payload.explored_dirs:
        if directory not in state.scouted_dirs:
            state.scouted_dirs.append(directory)

    sectors = ctx.sectors
    if sectors is not None:
        sectors_changed = False
        reclass = payload.reclassification
        if reclass is not None and payload.explored_dirs:
            sector = sectors.find(payload.explored_dirs[0])
            if sector is not None and reclass.confidence in (
                Confidence.MEDIUM.value,
                Confidence.HIGH.value,
            ):
                sector.production = reclass.production
                sector.classification_confidence = reclass.confidence
                sectors_changed = True
        if state.selected_sector_path:
            scanned = record_scan_result(
                sectors,
                state.selected_sector_path,
                state.scout_cycles,
                len(payload.proposals),
                now=ctx.now_ms,
            )
            sectors_changed = sectors_changed or scanned is not None
        if sectors_changed:
            state.coverage = compute_coverage(sectors).to_coverage()
            tx.effect(SaveSectors(sectors))

    if state.pending_proposals is not None and payload.reviewed_proposals is not None:
        return handle_proposals_reviewed(
            tx, ProposalsReviewed(reviewed=payload.reviewed_proposals), ctx
        )

    proposals = [dict(item) for item in payload.proposals]
    attempt = state.scout_retries + 1
    explored = ", ".join(payload.explored_dirs) or "(nothing)"
    state.scout_exploration_log.append(
        {
            "attempt": attempt,
            "explored_dirs": list(payload.explored_dirs),
            "proposals": len(proposals),
            "summary": f"Attempt {attempt}: Explored {explored}. Found {len(proposals)} proposals.",
        }
    )

    if not proposals:
        return retry_or_done(tx, "No proposals found")

    if state.skip_review:
        result = filter_and_create(tx, proposals, ctx)
        if ctx.ready_count > 0:
            return changed(
                tx, Phase.NEXT_TICKET, f"Created {len(result.accepted)} tickets from scout output"
            )
        return retry_or_done(tx, "No proposals survived filtering")

    state.pending_proposals = proposals
    tx.save_artifact(
        f"{state.step_count}-scout-proposals.json",
        {"explored_dirs": list(payload.explored_dirs), "proposals": proposals},
    )
    return unchanged(f"{len(proposals)} proposals pending review")


def handle_proposals_reviewed(
    tx: Transition, payload: ProposalsReviewed, ctx: HandlerContext
) -> ProcessResult:
    state = tx.state
    if state.pending_proposals is None:
        return ignored("No pending proposals to review")

    reviews = {review.title.strip().lower(): review for review in payload.reviewed}
    merged: list[dict[str, Any]] = []
    for proposal in state.pending_proposals:
        title = str(proposal.get("title") or "")
        review = reviews.get(title.strip().lower())
        if review is None:
            merged.append(dict(proposal))
            continue
        updated = dict(proposal)
        if review.confidence is not None:
            before = _number(proposal.get("confidence"))
            updated["confidence"] = review.confidence
            dropped = before - review.confidence if before is not None else 0.0
            if dropped > CONFIDENCE_DROP_LEARNING_THRESHOLD:
                tx.record_learning(
                    f"Review lowered confidence for '{title}' from "
                    f"{before:g} to {review.confidence:g}",
                    source=LearningSource.REVIEWER_FEEDBACK,
                    category=LearningCategory.WARNING,
                    paths=[str(path) for path in proposal.get("files") or ()],
                )
        if review.impact_score is not None:
            updated["impact_score"] = review.impact_score
        merged.append(updated)

    state.pending_proposals = None
    result = filter_and_create(tx, merged, ctx)
    state.scout_exploration_log.append(
        {
            "attempt": state.scout_retries + 1,
            "reviewed": len(merged),
            "accepted": len(result.accepted),
            "rejected": len(result.rejected),
            "summary": (
                f"Review: {len(result.accepted)} accepted, {len(result.rejected)} rejected."
            ),
        }
    )
    tx.save_artifact(
        f"{state.step_count}-scout-proposals-reviewed.json",
        {
            "reviewed": merged,
            "accepted": [proposal.to_dict() for proposal in result.accepted],
            "rejected": [
                {"title": rejection.title, "reason": rejection.reason}
                for rejection in result.rejected
            ],
        },
    )
    if ctx.ready_count > 0:
        return changed(
            tx, Phase.NEXT_TICKET, f"Review accepted {len(result.accepted)} proposals"
        )
    return retry_or_done(tx, "No proposals survived review")


def handle_proposals_filtered(
    tx: Transition, payload: ProposalsFiltered, ctx: HandlerContext
) -> ProcessResult:
    state = tx.state
    if state.phase is not Phase.SCOUT:
        return ignored(f"Filter result ignored in phase {state.phase.value}")
    if ctx.ready_count > 0:
        return changed(tx, Phase.NEXT_TICKET, f"{ctx.ready_count} tickets ready")
    return changed(tx, Phase.DONE, "No tickets ready after filtering")


def _number(value: object) -> float | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return float(value)


__all__ = [
    "handle_proposals_filtered",
    "handle_proposals_reviewed",
    "handle_scout_output",
]
