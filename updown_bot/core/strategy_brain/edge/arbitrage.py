"""
Cross-Feed Arbitrage
When the spot exchange has already moved away from the settlement oracle,
the market's displayed prices lag. The spot lead is mapped to an implied
up-probability and compared against both outcome prices.
"""
from typing import Optional

from updown_bot.core.strategy_brain.math_utils import clamp, is_finite
from updown_bot.models import ArbitrageOpportunity

NO_ARBITRAGE = ArbitrageOpportunity(detected=False)


def implied_up_from_delta(delta: Optional[float], scale: float = 10.0) -> Optional[float]:
    if not is_finite(delta):
        return None
    return clamp(0.5 + delta * scale, 0.0, 1.0)


def _normalize(value: Optional[float]) -> Optional[float]:
    if not is_finite(value):
        return None
    return clamp(value, 0.0, 1.0)


def _opportunity(direction: str, spread: float, min_spread: float) -> ArbitrageOpportunity:
    safe_min = max(min_spread, 0.0001)
    strength = clamp((spread - min_spread) / safe_min, 0.0, 1.0)
    return ArbitrageOpportunity(
        detected=True,
        direction=direction,
        spread=spread,
        confidence=clamp(0.5 + strength * 0.5, 0.0, 1.0),
    )


def detect_arbitrage(
    market_up: Optional[float],
    market_down: Optional[float],
    implied_up: Optional[float],
    min_spread: float = 0.02,
) -> ArbitrageOpportunity:
    """
    Find the side the market underprices relative to the implied probability.

    The side with the larger spread wins when both qualify; UP wins ties.
    """
    up = _normalize(market_up)
    down = _normalize(market_down)
    implied = _normalize(implied_up)
    min_spread = max(min_spread, 0.0) if is_finite(min_spread) else 0.0

    if up is None or down is None or implied is None:
        return NO_ARBITRAGE

    implied_down = 1 - implied
    up_spread = abs(implied - up)
    down_spread = abs(implied_down - down)

    up_cheap = up < implied - min_spread
    down_cheap = down < implied_down - min_spread

    if up_cheap and (not down_cheap or up_spread >= down_spread):
        return _opportunity("BUY_UP", up_spread, min_spread)
    if down_cheap:
        return _opportunity("BUY_DOWN", down_spread, min_spread)
    return NO_ARBITRAGE


def arbitrage_boost(opportunity: ArbitrageOpportunity, max_boost: float = 0.03) -> float:
    if not opportunity.detected:
        return 0.0
    return min(opportunity.confidence * max_boost, max_boost)
