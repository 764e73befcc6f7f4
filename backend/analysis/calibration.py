"""Team-size calibration for health scoring.

Smaller teams feel fragility and bottlenecks more acutely; larger teams are
held to a stricter load-balance baseline. The medium tier is the neutral
point: its multipliers are exactly 1.0, and a missing team size maps to it,
so scoring without a team size matches the uncalibrated formula.
"""

from dataclasses import dataclass
from enum import StrEnum


class TeamTier(StrEnum):
    """Team-size bucket."""

    SOLO = "solo"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


@dataclass(frozen=True)
class TeamThresholds:
    """Multipliers applied by the scoring engine for one tier.

    Attributes:
        fragility_multiplier: Scales the raw fragility score (>1 is harsher).
        bottleneck_multiplier: Reserved for weighting bottleneck gaps.
        load_balance_baseline: Team load balance used when ownership data is
            missing or concentrated on one owner.
    """

    fragility_multiplier: float
    bottleneck_multiplier: float
    load_balance_baseline: int


THRESHOLDS: dict[TeamTier, TeamThresholds] = {
    TeamTier.SOLO: TeamThresholds(1.8, 1.5, 30),
    TeamTier.SMALL: TeamThresholds(1.4, 1.3, 50),
    TeamTier.MEDIUM: TeamThresholds(1.0, 1.0, 60),
    TeamTier.LARGE: TeamThresholds(0.8, 0.8, 70),
}


def get_team_tier(team_size: int) -> TeamTier:
    """Classify a team size: solo <=1, small 2-5, medium 6-20, large 21+."""
    if team_size <= 1:
        return TeamTier.SOLO
    if team_size <= 5:
        return TeamTier.SMALL
    if team_size <= 20:
        return TeamTier.MEDIUM
    return TeamTier.LARGE


def get_thresholds(team_size: int | None = None) -> TeamThresholds:
    """Return the multipliers for ``team_size``; None means medium."""
    if team_size is None:
        return THRESHOLDS[TeamTier.MEDIUM]
    return THRESHOLDS[get_team_tier(team_size)]
