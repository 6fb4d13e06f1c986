"""
Signal Confidence
Scores how much the surrounding evidence supports taking one side.

FACTORS (weight):
  indicator_alignment  0.25   share of indicators pointing at the side
  volatility_score     0.15   peaks in the 0.3%-0.8% window band
  orderbook_score      0.15   book pressure with or against the side
  timing_score         0.25   how decisive the model probability is
  regime_score         0.20   trend alignment, range, or chop
"""
from typing import Optional

from updown_bot.core.strategy_brain.math_utils import clamp
from updown_bot.models import ConfidenceLevel, ConfidenceResult, Regime, Side

FACTOR_WEIGHTS = {
    "indicator_alignment": 0.25,
    "volatility_score": 0.15,
    "orderbook_score": 0.15,
    "timing_score": 0.25,
    "regime_score": 0.20,
}


def indicator_alignment(
    side: Side,
    vwap_slope: Optional[float] = None,
    rsi: Optional[float] = None,
    macd_hist: Optional[float] = None,
    ha_color: Optional[str] = None,
) -> float:
    votes = []
    if vwap_slope is not None:
        votes.append(vwap_slope > 0 if side is Side.UP else vwap_slope < 0)
    if rsi is not None:
        votes.append(50 < rsi <= 70 if side is Side.UP else 30 <= rsi < 50)
    if macd_hist is not None:
        votes.append(macd_hist > 0 if side is Side.UP else macd_hist < 0)
    if ha_color is not None:
        votes.append(ha_color == ("green" if side is Side.UP else "red"))

    if not votes:
        return 0.5
    return sum(1 for v in votes if v) / len(votes)


def volatility_score(volatility: Optional[float]) -> float:
    if volatility is None:
        return 0.5
    if volatility < 0.002:
        return 0.3
    if volatility < 0.003:
        return 0.6
    if volatility <= 0.008:
        return 1.0
    if volatility <= 0.01:
        return 0.7
    return 0.4


def orderbook_score(side: Side, imbalance: Optional[float]) -> float:
    if imbalance is None:
        return 0.5
    directional = imbalance if side is Side.UP else -imbalance
    if directional > 0:
        return min(1.0, 0.5 + abs(imbalance) * 0.5)
    if abs(imbalance) > 0.2:
        return 0.3
    return 0.5


def timing_score(model_prob: Optional[float]) -> float:
    if model_prob is None:
        return 0.4
    if model_prob >= 0.7:
        return 1.0
    if model_prob >= 0.6:
        return 0.8
    if model_prob >= 0.55:
        return 0.6
    return 0.4


def regime_score(side: Side, regime: Optional[Regime]) -> float:
    if regime is None:
        return 0.5
    if regime is Regime.TREND_UP:
        return 1.0 if side is Side.UP else 0.3
    if regime is Regime.TREND_DOWN:
        return 1.0 if side is Side.DOWN else 0.3
    if regime is Regime.RANGE:
        return 0.7
    return 0.2


def confidence_level(score: float) -> ConfidenceLevel:
    if score >= 0.7:
        return ConfidenceLevel.HIGH
    if score >= 0.5:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def compute_confidence(
    side: Side,
    model_up: Optional[float] = None,
    model_down: Optional[float] = None,
    vwap_slope: Optional[float] = None,
    rsi: Optional[float] = None,
    macd_hist: Optional[float] = None,
    ha_color: Optional[str] = None,
    volatility: Optional[float] = None,
    orderbook_imbalance: Optional[float] = None,
    regime: Optional[Regime] = None,
) -> ConfidenceResult:
    """
    Blend the five confidence factors for `side`.

    Returns:
        ConfidenceResult with the factor breakdown and a LOW/MEDIUM/HIGH level
    """
    side_prob = model_up if side is Side.UP else model_down
    factors = {
        "indicator_alignment": indicator_alignment(side, vwap_slope, rsi, macd_hist, ha_color),
        "volatility_score": volatility_score(volatility),
        "orderbook_score": orderbook_score(side, orderbook_imbalance),
        "timing_score": timing_score(side_prob),
        "regime_score": regime_score(side, regime),
    }
    score = clamp(sum(factors[name] * w for name, w in FACTOR_WEIGHTS.items()), 0.0, 1.0)
    return ConfidenceResult(score=score, factors=factors, level=confidence_level(score))
