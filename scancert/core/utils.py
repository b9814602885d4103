"""
Shared numeric helpers.
"""

import math
from typing import Iterable, Optional, Sequence

import numpy as np

from .constants import TRUTHY_VALUES


def clamp(value: float, lower: float, upper: float) -> float:
    """Clamp ``value`` into ``[lower, upper]``."""
    return max(lower, min(upper, value))


def finite_values(values: Iterable[float]) -> list:
    return [v for v in values if v is not None and math.isfinite(v)]


def mean_or_zero(values: Iterable[float]) -> float:
    """Mean of the finite values, 0.0 when there are none."""
    data = finite_values(values)
    if not data:
        return 0.0
    return float(np.mean(data))


def median(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    return float(np.median(np.asarray(values, dtype=np.float64)))


def population_std(values: Sequence[float]) -> float:
    """Population standard deviation (ddof=0), 0.0 for an empty sequence."""
    if len(values) == 0:
        return 0.0
    return float(np.std(np.asarray(values, dtype=np.float64)))


def percentile(values: Sequence[float], pct: float) -> float:
    """
    Percentile with linear interpolation between order statistics.

    The rank is ``pct / 100 * (n - 1)`` over the sorted samples.

    Args:
        values: Sample values
        pct: Percentile in [0, 100]

    Returns:
        Interpolated percentile, 0.0 for an empty sequence
    """
    if len(values) == 0:
        return 0.0
    return float(np.percentile(np.asarray(values, dtype=np.float64), pct, method="linear"))


def format_metric(value: float) -> str:
    """Format a metric with at most three decimals and no trailing zeros."""
    text = f"{value:.3f}".rstrip("0").rstrip(".")
    return text if text not in ("", "-0") else "0"


def parse_bool(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.strip().lower() in TRUTHY_VALUES
