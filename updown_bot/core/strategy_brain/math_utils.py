"""
Small numeric helpers shared by the strategy brain.
"""
import math
from typing import Optional


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def is_finite(value: Optional[float]) -> bool:
    """True for real, finite numbers (None is not finite)."""
    if value is None or isinstance(value, bool):
        return False
    try:
        return math.isfinite(value)
    except TypeError:
        return False


def normal_cdf(x: float) -> float:
    """Standard normal cumulative distribution Φ(x)."""
    return 0.5 * (1.0 + math.erf(x / math.sqrt(2.0)))


def sigmoid(x: float) -> float:
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    z = math.exp(x)
    return z / (1.0 + z)
