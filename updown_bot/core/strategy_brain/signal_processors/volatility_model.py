"""
Volatility Model
Realized volatility over the window and the probability that price
finishes above the price-to-beat under a driftless log-normal walk.
"""
import math
from typing import Optional, Sequence

from updown_bot.core.strategy_brain.math_utils import normal_cdf


def compute_realized_volatility(
    closes: Sequence[float],
    lookback: int = 60,
    window_minutes: int = 15,
) -> Optional[float]:
    """
    Realized volatility scaled to one market window.

    Args:
        closes: One-minute closes, oldest first
        lookback: Number of log returns to use
        window_minutes: Window length the result is scaled to

    Returns:
        sqrt(mean squared log return × window_minutes), or None when
        fewer than lookback+1 closes are available
    """
    if lookback <= 0 or len(closes) < lookback + 1:
        return None

    recent = closes[-(lookback + 1):]
    sum_sq = 0.0
    for prev, cur in zip(recent, recent[1:]):
        if prev <= 0 or cur <= 0:
            return None
        log_ret = math.log(cur / prev)
        sum_sq += log_ret * log_ret

    return math.sqrt(sum_sq / lookback * window_minutes)


def compute_vol_implied_prob(
    current_price: Optional[float],
    price_to_beat: Optional[float],
    volatility: Optional[float],
    time_left_min: Optional[float],
    window_minutes: float = 15,
) -> Optional[float]:
    """P(final > price_to_beat) = Φ(ln(S/K) / (σ·sqrt(t/T)))."""
    if current_price is None or not price_to_beat:
        return None
    if volatility is None or volatility <= 0:
        return None
    if current_price <= 0 or price_to_beat <= 0:
        return None
    if time_left_min is None or time_left_min <= 0:
        return 0.99 if current_price > price_to_beat else 0.01

    time_ratio = math.sqrt(time_left_min / window_minutes)
    z = math.log(current_price / price_to_beat) / (volatility * time_ratio)
    return normal_cdf(z)
