"""
Mathematical Utilities

Small numeric helpers shared by the analyzer, layer builder and risk engine.
All helpers treat None, NaN and infinities as "no value".
"""

import math
from typing import Any, Optional, Sequence

import numpy as np


def to_finite(value: Any) -> Optional[float]:
    """Coerce a value to a finite float, or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def clamp(value: float, min_val: float, max_val: float) -> float:
    """Clamp value between min and max."""
    return max(min_val, min(max_val, value))


def clamp01(value: float) -> float:
    return clamp(value, 0.0, 1.0)


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Safe division that handles zero and non-finite denominators."""
    if denominator is None or denominator == 0 or math.isnan(denominator):
        return default
    return numerator / denominator


def pct(value: Any) -> Optional[int]:
    """Round to an integer percentage in [0, 100]; None when not numeric."""
    number = to_finite(value)
    if number is None:
        return None
    return int(clamp(round(number), 0, 100))


def smooth01(t: float) -> float:
    """Smoothstep: t^2 (3 - 2t) with t clamped to [0, 1]."""
    x = clamp01(t)
    return x * x * (3 - 2 * x)


def population_std(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    return float(np.std(np.asarray(values, dtype=float)))
