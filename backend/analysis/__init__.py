"""Graph analysis for workflow decompositions.

This package holds the pure, synchronous core applied to every
model-produced step graph:

    - repair: deduplicate, close references, break cycles, clamp scores
    - scoring / calibration: team-size-aware health metrics
    - layout: layered positions, crossing reduction, critical path, hover focus
    - compare: before/after diff of two decompositions

Usage:
    >>> from analysis import compute_health, compute_layout, repair_decomposition
    >>> repaired = repair_decomposition(raw.steps, raw.gaps)
    >>> health = compute_health(repaired.steps, repaired.gaps, team_size=4)
    >>> layout = compute_layout(repaired.steps)
"""

from analysis.calibration import TeamThresholds, TeamTier, get_team_tier, get_thresholds
from analysis.compare import compare_decompositions
from analysis.layout import compute_critical_path, compute_focus_set, compute_layout
from analysis.repair import RepairReport, RepairResult, find_back_edges, repair_decomposition
from analysis.scoring import compute_health

__all__ = [
    "RepairReport",
    "RepairResult",
    "TeamThresholds",
    "TeamTier",
    "compare_decompositions",
    "compute_critical_path",
    "compute_focus_set",
    "compute_health",
    "compute_layout",
    "find_back_edges",
    "get_team_tier",
    "get_thresholds",
    "repair_decomposition",
]
