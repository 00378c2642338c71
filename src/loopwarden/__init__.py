"""loopwarden: a supervisor for long-running autonomous coding sessions."""

from loopwarden.control_plane import (
    Advancer,
    EventProcessor,
    RunManager,
    RunOptions,
    WaveExecutor,
    advance,
    advance_ticket_worker,
)
from loopwarden.errors import LoopwardenError

__version__ = "0.1.0"

__all__ = [
    "Advancer",
    "EventProcessor",
    "LoopwardenError",
    "RunManager",
    "RunOptions",
    "WaveExecutor",
    "__version__",
    "advance",
    "advance_ticket_worker",
]
