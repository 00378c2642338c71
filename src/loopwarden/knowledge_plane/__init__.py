"""Knowledge plane: sector history and learnings about the repository."""

from loopwarden.knowledge_plane.learnings import (
    AdaptiveRiskAssessment,
    AdaptiveRiskLevel,
    Learning,
    LearningCategory,
    LearningSource,
    LearningsStore,
    assess_adaptive_risk,
)
from loopwarden.knowledge_plane.sectors import (
    CoverageMetrics,
    ScopeAdjustment,
    Sector,
    SectorPick,
    SectorState,
    build_sectors,
    compute_coverage,
    merge_sectors,
    pick_next_sector,
    record_scan_result,
    record_ticket_outcome,
)

__all__ = [
    "AdaptiveRiskAssessment",
    "AdaptiveRiskLevel",
    "CoverageMetrics",
    "Learning",
    "LearningCategory",
    "LearningSource",
    "LearningsStore",
    "ScopeAdjustment",
    "Sector",
    "SectorPick",
    "SectorState",
    "assess_adaptive_risk",
    "build_sectors",
    "compute_coverage",
    "merge_sectors",
    "pick_next_sector",
    "record_scan_result",
    "record_ticket_outcome",
]
