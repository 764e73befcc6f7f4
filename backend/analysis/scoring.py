"""Health scoring for repaired decompositions.

Produces four calibrated 0-100 scores:

- complexity: step count dominates, edge density contributes less, layer
  diversity least.
- fragility: weighted gap counts plus low-automation steps, scaled by the
  team tier's fragility multiplier.
- automation potential: mean automation score.
- team load balance: spread of step ownership relative to the average load.

Scoring never raises; an empty graph yields zeros and the tier baseline.
"""

from collections import Counter
from collections.abc import Sequence

from analysis.calibration import get_thresholds
from analysis.utils import clamp, round_half_up
from models.schemas import Gap, GapType, HealthConfidence, HealthMetrics, Severity, Step

LOW_AUTOMATION_THRESHOLD = 30

EXPLICIT_TEAM_SIZE_REASON = "team size explicitly provided"
INFERRED_TEAM_SIZE_REASON = "no team size specified; using medium-team defaults"


def compute_complexity(steps: Sequence[Step]) -> int:
    step_count = len(steps)
    edge_count = sum(len(step.dependencies) for step in steps)
    layer_count = len({step.layer for step in steps})
    return min(100, round_half_up(step_count * 6 + edge_count * 3 + layer_count * 5))


def compute_fragility(
    steps: Sequence[Step],
    gaps: Sequence[Gap],
    fragility_multiplier: float = 1.0,
) -> int:
    high = sum(1 for gap in gaps if gap.severity == Severity.HIGH)
    medium = sum(1 for gap in gaps if gap.severity == Severity.MEDIUM)
    single_dependency = sum(1 for gap in gaps if gap.type == GapType.SINGLE_DEPENDENCY)
    low_automation = sum(
        1 for step in steps if step.automation_score < LOW_AUTOMATION_THRESHOLD
    )
    raw = high * 20 + medium * 10 + single_dependency * 15 + low_automation * 5
    return min(100, round_half_up(raw * fragility_multiplier))


def compute_automation_potential(steps: Sequence[Step]) -> int:
    if not steps:
        return 0
    mean = sum(step.automation_score for step in steps) / len(steps)
    return int(clamp(round_half_up(mean), 0, 100))


def compute_team_load_balance(steps: Sequence[Step], baseline: int) -> int:
    """Score how evenly owned steps are spread across owners.

    With no owners the tier baseline is returned. A single owner scores at
    most the baseline, however few steps they own. Otherwise the score drops
    by 25 points per unit of (max - min) / mean owner load.
    """
    owner_counts = Counter(step.owner for step in steps if step.owner)
    if not owner_counts:
        return baseline

    if len(owner_counts) == 1:
        owned = sum(owner_counts.values())
        return min(baseline, round_half_up(100 / owned))

    counts = list(owner_counts.values())
    mean = sum(counts) / len(counts)
    spread = (max(counts) - min(counts)) / mean
    return int(clamp(round_half_up(100 - spread * 25), 0, 100))


def compute_health(
    steps: Sequence[Step],
    gaps: Sequence[Gap],
    team_size: int | None = None,
) -> HealthMetrics:
    """Score a repaired decomposition.

    Omitting ``team_size`` gives the same scores as any medium-tier team
    size; only the confidence tag differs.

    Args:
        steps: Repaired steps.
        gaps: Repaired gaps.
        team_size: Optional team size used to pick calibration multipliers.

    Returns:
        HealthMetrics with all four scores in [0, 100].
    """
    thresholds = get_thresholds(team_size)

    if team_size is not None:
        confidence = HealthConfidence(level="high", reason=EXPLICIT_TEAM_SIZE_REASON)
    else:
        confidence = HealthConfidence(level="inferred", reason=INFERRED_TEAM_SIZE_REASON)

    return HealthMetrics(
        complexity=compute_complexity(steps),
        fragility=compute_fragility(steps, gaps, thresholds.fragility_multiplier),
        automation_potential=compute_automation_potential(steps),
        team_load_balance=compute_team_load_balance(steps, thresholds.load_balance_baseline),
        team_size=team_size,
        confidence=confidence,
    )
