"""
Edge Calculator
Compares the model probability against the market's displayed prices and
discounts the raw edge for execution costs.

  edge            = model − market
  effective_edge  = edge − slippage − spread penalty − fee (+ arbitrage boost)

Slippage is charged to the UP side when the net book imbalance is strongly
positive (buyers already crowd the UP book) and to the DOWN side when it is
strongly negative.
"""
from typing import Optional

from loguru import logger

from updown_bot.core.strategy_brain.edge.arbitrage import (
    arbitrage_boost,
    detect_arbitrage,
    implied_up_from_delta,
)
from updown_bot.core.strategy_brain.edge.fees import fee_per_share
from updown_bot.core.strategy_brain.math_utils import clamp, is_finite
from updown_bot.models import EdgeResult

ARBITRAGE_SUM = 0.98
OVERPRICED_SUM = 1.04


def _spread_penalty(spread: Optional[float], free: float, factor: float) -> float:
    if spread is None or not is_finite(spread) or spread <= free:
        return 0.0
    return (spread - free) * factor


def _clamp_price(value: float) -> float:
    # NaN must survive so the decision gate can reject it
    if not is_finite(value):
        return float("nan")
    return clamp(value, 0.0, 1.0)


def compute_edge(
    model_up: float,
    model_down: float,
    market_up: Optional[float],
    market_down: Optional[float],
    orderbook_imbalance: Optional[float] = None,
    spread_up: Optional[float] = None,
    spread_down: Optional[float] = None,
    cross_feed_delta: Optional[float] = None,
    maker_rebate: float = 0.0,
    include_fees: bool = True,
    max_vig: float = 0.03,
    slippage_threshold: float = 0.2,
    slippage_per_imbalance: float = 0.02,
    spread_free: float = 0.02,
    spread_factor: float = 0.5,
    arb_min_spread: float = 0.02,
    arb_max_boost: float = 0.03,
    arb_delta_scale: float = 10.0,
) -> EdgeResult:
    """
    Raw and execution-adjusted edge for both sides.

    Args:
        model_up: Model P(up)
        model_down: Model P(down)
        market_up: Displayed UP price (None when the market is not quoted)
        market_down: Displayed DOWN price
        orderbook_imbalance: Net book imbalance, positive favours UP
        spread_up: Bid/ask spread of the UP book
        spread_down: Bid/ask spread of the DOWN book
        cross_feed_delta: (spot − oracle) / oracle
        maker_rebate: Rebate assumed for the fee estimate (0 = taker)
        include_fees: Subtract the estimated fee from the effective edge

    Returns:
        EdgeResult; every edge is None when either price is missing
    """
    if market_up is None or market_down is None:
        return EdgeResult(market_up=None, market_down=None, edge_up=None, edge_down=None)

    raw_sum = market_up + market_down
    up_price = _clamp_price(market_up)
    down_price = _clamp_price(market_down)

    edge_up = model_up - up_price
    edge_down = model_down - down_price

    effective_up = edge_up
    effective_down = edge_down

    if orderbook_imbalance is not None and abs(orderbook_imbalance) > slippage_threshold:
        slippage = abs(orderbook_imbalance) * slippage_per_imbalance
        if orderbook_imbalance > 0:
            effective_up -= slippage
        else:
            effective_down -= slippage

    effective_up -= _spread_penalty(spread_up, spread_free, spread_factor)
    effective_down -= _spread_penalty(spread_down, spread_free, spread_factor)

    fee_up = fee_per_share(up_price, maker_rebate) if is_finite(up_price) else 0.0
    fee_down = fee_per_share(down_price, maker_rebate) if is_finite(down_price) else 0.0
    if include_fees:
        effective_up -= fee_up
        effective_down -= fee_down

    opportunity = detect_arbitrage(
        up_price, down_price, implied_up_from_delta(cross_feed_delta, arb_delta_scale), arb_min_spread
    )
    if opportunity.detected:
        boost = arbitrage_boost(opportunity, arb_max_boost)
        if opportunity.direction == "BUY_UP":
            effective_up += boost
        else:
            effective_down += boost
        logger.debug(
            f"Arbitrage {opportunity.direction} spread={opportunity.spread:.3f} "
            f"conf={opportunity.confidence:.2f} boost=+{boost:.3f}"
        )

    return EdgeResult(
        market_up=up_price,
        market_down=down_price,
        edge_up=edge_up,
        edge_down=edge_down,
        effective_edge_up=effective_up,
        effective_edge_down=effective_down,
        raw_sum=raw_sum,
        arbitrage=raw_sum < ARBITRAGE_SUM or opportunity.detected,
        arbitrage_detected=opportunity.detected,
        arbitrage_direction=opportunity.direction,
        overpriced=raw_sum > OVERPRICED_SUM,
        vig_too_high=raw_sum > 1 + max_vig,
        fee_estimate_up=fee_up,
        fee_estimate_down=fee_down,
    )
