"""
TA Direction Scorer
Turns the candle indicators into a raw up-probability by additive points.

SCORING:
  Both sides start at 1 point.

  price vs VWAP          +2 to the side the price is on
  VWAP slope             +2 to the side of the slope
  RSI > 55 and rising    +2 up   (RSI < 45 and falling → +2 down)
  MACD histogram         +2 when expanding away from zero
  MACD line sign         +1 to the side of the line
  Heiken-Ashi streak     +1 when the last 2+ candles share a color
  failed VWAP reclaim    +3 down

  raw_up = up / (up + down)

With no indicators at all both sides stay at 1 and raw_up is exactly 0.5.
"""
from typing import Optional

from updown_bot.core.strategy_brain.indicators.technical import IndicatorSnapshot, MacdResult
from updown_bot.core.strategy_brain.math_utils import clamp
from updown_bot.models import ScoreResult


def score_direction(
    price: Optional[float] = None,
    vwap: Optional[float] = None,
    vwap_slope: Optional[float] = None,
    rsi: Optional[float] = None,
    rsi_slope: Optional[float] = None,
    macd: Optional[MacdResult] = None,
    heiken_color: Optional[str] = None,
    heiken_count: int = 0,
    failed_vwap_reclaim: bool = False,
) -> ScoreResult:
    up = 1
    down = 1

    if price is not None and vwap is not None:
        if price > vwap:
            up += 2
        elif price < vwap:
            down += 2

    if vwap_slope is not None:
        if vwap_slope > 0:
            up += 2
        elif vwap_slope < 0:
            down += 2

    if rsi is not None and rsi_slope is not None:
        if rsi > 55 and rsi_slope > 0:
            up += 2
        if rsi < 45 and rsi_slope < 0:
            down += 2

    if macd is not None and macd.hist_delta is not None:
        if macd.hist > 0 and macd.hist_delta > 0:
            up += 2
        if macd.hist < 0 and macd.hist_delta < 0:
            down += 2

        if macd.macd > 0:
            up += 1
        elif macd.macd < 0:
            down += 1

    if heiken_color and heiken_count >= 2:
        if heiken_color == "green":
            up += 1
        elif heiken_color == "red":
            down += 1

    if failed_vwap_reclaim:
        down += 3

    return ScoreResult(up_score=up, down_score=down, raw_up=up / (up + down))


def score_snapshot(snapshot: IndicatorSnapshot, price: Optional[float] = None) -> ScoreResult:
    """Score an indicator snapshot; `price` defaults to the last close."""
    return score_direction(
        price=price if price is not None else snapshot.last_close,
        vwap=snapshot.vwap,
        vwap_slope=snapshot.vwap_slope,
        rsi=snapshot.rsi,
        rsi_slope=snapshot.rsi_slope,
        macd=snapshot.macd,
        heiken_color=snapshot.heiken_color,
        heiken_count=snapshot.heiken_count,
        failed_vwap_reclaim=snapshot.failed_vwap_reclaim,
    )


def apply_time_awareness(raw_up: float, remaining_minutes: float, window_minutes: float) -> float:
    """Shrink a TA probability toward 0.5 as the window runs out."""
    if window_minutes <= 0:
        return 0.5
    decay = clamp(remaining_minutes / window_minutes, 0.0, 1.0)
    return clamp(0.5 + (raw_up - 0.5) * decay, 0.0, 1.0)
