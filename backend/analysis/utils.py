"""Numeric helpers shared by the analysis modules."""

import math


def round_half_up(value: float) -> int:
    """Round to the nearest integer, with .5 rounding toward +infinity.

    Python's ``round`` uses banker's rounding (``round(2.5) == 2``); scores
    are defined with half-up rounding so 62.5 becomes 63.
    """
    return math.floor(value + 0.5)


def clamp(value: float, low: float, high: float) -> float:
    """Limit ``value`` to the closed range [low, high]."""
    return max(low, min(high, value))
