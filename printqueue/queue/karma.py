"""Karma scoring for queue fairness.

Users who have recently used the printer a lot get a lower score, so light
and new users move ahead of them. Short jobs get a flat bonus so they can
fill the gaps between long prints.

    score = 100 / (accumulated_hours + 1)   (+50 if 0 < minutes < 45)
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from printqueue.config import Settings, get_settings
from printqueue.errors import ValidationError

_CENTS = Decimal("0.01")


def round_score(value: float) -> float:
    """Round to two decimals, halves rounding up.

    Goes through the shortest decimal repr of the float so that a value
    already at two decimals comes back unchanged.
    """
    return float(Decimal(repr(float(value))).quantize(_CENTS, rounding=ROUND_HALF_UP))


def base_score(accumulated_hours: float, settings: Optional[Settings] = None) -> float:
    """Unrounded history component of the score."""
    settings = settings or get_settings()
    return settings.karma_base / (accumulated_hours + 1)


def is_gap_filler(estimated_minutes: Optional[float], settings: Optional[Settings] = None) -> bool:
    """Check if a job is short enough to get the gap-filler bonus."""
    settings = settings or get_settings()
    return bool(estimated_minutes) and 0 < estimated_minutes < settings.gap_filler_minutes


def score(
    accumulated_hours: float,
    estimated_minutes: Optional[float] = 0,
    settings: Optional[Settings] = None,
) -> float:
    """
    Compute the priority score of a job.

    Args:
        accumulated_hours: Owner's total completed print time in hours
        estimated_minutes: Estimated duration of the job; None counts as 0
        settings: Scoring constants (defaults to global settings)

    Returns:
        Score rounded to two decimals; higher prints sooner

    Raises:
        ValidationError: If either input is negative
    """
    settings = settings or get_settings()
    accumulated_hours = accumulated_hours or 0.0
    estimated_minutes = estimated_minutes or 0

    if accumulated_hours < 0:
        raise ValidationError(f"Accumulated print time cannot be negative: {accumulated_hours}")
    if estimated_minutes < 0:
        raise ValidationError(f"Estimated duration cannot be negative: {estimated_minutes}")

    result = base_score(accumulated_hours, settings)
    if is_gap_filler(estimated_minutes, settings):
        result += settings.gap_filler_bonus

    return round_score(result)
