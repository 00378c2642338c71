"""Control plane: run lifecycle, event ingestion, the advance driver and wave scheduling."""

from loopwarden.control_plane.advance import (
    AdvanceResponse,
    Advancer,
    Constraints,
    NextAction,
    advance,
)
from loopwarden.control_plane.event_processor import EventProcessor
from loopwarden.control_plane.handlers import ProcessResult
from loopwarden.control_plane.proposals import FilterResult, Proposal, filter_proposals
from loopwarden.control_plane.qa import classify_qa_error, extract_error_signature
from loopwarden.control_plane.run_manager import RunDigest, RunManager, RunOptions
from loopwarden.control_plane.ticket_workers import (
    WorkerAction,
    WorkerResponse,
    advance_ticket_worker,
)
from loopwarden.control_plane.transitions import Transition
from loopwarden.control_plane.wave_executor import ItemOutcome, WaveExecutor, WaveTotals
from loopwarden.control_plane.waves import (
    WaveItem,
    get_adaptive_parallel_count,
    partition_into_waves,
    paths_overlap,
)

__all__ = [
    "AdvanceResponse",
    "Advancer",
    "Constraints",
    "EventProcessor",
    "FilterResult",
    "ItemOutcome",
    "NextAction",
    "ProcessResult",
    "Proposal",
    "RunDigest",
    "RunManager",
    "RunOptions",
    "Transition",
    "WaveExecutor",
    "WaveItem",
    "WaveTotals",
    "WorkerAction",
    "WorkerResponse",
    "advance",
    "advance_ticket_worker",
    "classify_qa_error",
    "extract_error_signature",
    "filter_proposals",
    "get_adaptive_parallel_count",
    "partition_into_waves",
    "paths_overlap",
]
