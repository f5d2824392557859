"""Numeric conventions shared by the normalizer and the grounding validator.

Backends report similarity in different conventions (distance, similarity,
probability). Every conversion goes through this module so the formulas
cannot drift apart.
"""
import math
from typing import Optional


def distance_to_score(distance: float) -> float:
    """Convert a lower-is-better distance into a higher-is-better score.

    Uses score = 1 / (1 + distance). Negative distances are treated as 0.

    Args:
        distance: Backend distance value.

    Returns:
        float: Score in (0, 1].
    """
    return 1.0 / (1.0 + max(0.0, float(distance)))


def clamp_unit(value: float) -> float:
    """Clamp a value into [0, 1]; NaN maps to 0."""
    if value is None or math.isnan(value):
        return 0.0
    return max(0.0, min(1.0, float(value)))


def as_number(value) -> Optional[float]:
    """Interpret a JSON value as a finite float.

    Accepts ints, floats and numeric strings; booleans are rejected.

    Returns:
        Optional[float]: The number, or None when the value is not numeric.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return number
