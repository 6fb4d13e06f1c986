"""
Probability Blender
Mixes the volatility-implied and TA probabilities, then nudges the result
with the spot/oracle lead and the order-book imbalance.
"""
from typing import Optional

from updown_bot.core.strategy_brain.math_utils import clamp
from updown_bot.models import BlendResult

PROB_FLOOR = 0.01
PROB_CEILING = 0.99


def blend_probabilities(
    vol_implied_up: Optional[float],
    ta_raw_up: float,
    lead_signal: Optional[float] = None,
    orderbook_imbalance: Optional[float] = None,
    weight_vol: float = 0.5,
    weight_ta: float = 0.5,
    lead_threshold: float = 0.001,
    lead_max_adj: float = 0.02,
    imbalance_threshold: float = 0.2,
    imbalance_max_adj: float = 0.02,
) -> BlendResult:
    """
    Blend the two model probabilities.

    Args:
        vol_implied_up: Volatility-implied P(up), None when unavailable
        ta_raw_up: TA-scored P(up)
        lead_signal: Relative spot-vs-oracle delta
        orderbook_imbalance: Net book imbalance (positive favours UP)
        weight_vol: Weight of the vol-implied probability
        weight_ta: Weight of the TA probability

    Returns:
        BlendResult with source "blended", or "ta_only" when the
        vol-implied probability is missing
    """
    if vol_implied_up is None:
        up = clamp(ta_raw_up, PROB_FLOOR, PROB_CEILING)
        return BlendResult(blended_up=up, blended_down=1 - up, source="ta_only")

    total_weight = weight_vol + weight_ta
    if total_weight <= 0:
        blended = ta_raw_up
    else:
        blended = (weight_vol * vol_implied_up + weight_ta * ta_raw_up) / total_weight

    lead_adj = 0.0
    if lead_signal is not None and abs(lead_signal) > lead_threshold:
        lead_adj = clamp(lead_signal * 5, -lead_max_adj, lead_max_adj)
        blended += lead_adj

    book_adj = 0.0
    if orderbook_imbalance is not None and abs(orderbook_imbalance) > imbalance_threshold:
        book_adj = clamp(orderbook_imbalance * 0.05, -imbalance_max_adj, imbalance_max_adj)
        blended += book_adj

    up = clamp(blended, PROB_FLOOR, PROB_CEILING)
    return BlendResult(
        blended_up=up,
        blended_down=1 - up,
        source="blended",
        lead_adjustment=lead_adj,
        book_adjustment=book_adj,
    )
