"""
Order Strategy Selector
Chooses between an immediate taker fill and a resting post-only limit
order, and prices the buy accordingly.

  LATE phase and confidence >= 0.70  → FOK at market (taker)
  everything else                    → GTD post-only below market (maker rebate)
"""
from updown_bot.core.strategy_brain.edge.fees import estimate_polymarket_fee
from updown_bot.models import OrderStrategyResult, OrderType, Phase, PriceOptimization, Side

FOK_CONFIDENCE_THRESHOLD = 0.70
MAKER_REBATE_RATE = 0.20
TAKER_REBATE_RATE = 0.0


def select_order_strategy(
    phase: Phase,
    confidence: float,
    side: Side,
    market_up: float,
    market_down: float,
    fok_confidence: float = FOK_CONFIDENCE_THRESHOLD,
    maker_rebate: float = MAKER_REBATE_RATE,
) -> OrderStrategyResult:
    """
    Pick the order type for an ENTER decision.

    Args:
        phase: Window phase at decision time
        confidence: Decision confidence score
        side: Side being bought
        market_up: Displayed UP price
        market_down: Displayed DOWN price

    Returns:
        OrderStrategyResult with the rebate assumed and the expected fee rate
    """
    if phase is Phase.LATE and confidence >= fok_confidence:
        return OrderStrategyResult(
            order_type=OrderType.FOK,
            maker_rebate=TAKER_REBATE_RATE,
            expected_fee=estimate_polymarket_fee(max(market_up, market_down), TAKER_REBATE_RATE),
            reason="late_phase_high_confidence_immediate_fill",
        )

    side_price = market_up if side is Side.UP else market_down
    return OrderStrategyResult(
        order_type=OrderType.GTD_POST_ONLY,
        maker_rebate=maker_rebate,
        expected_fee=estimate_polymarket_fee(side_price, maker_rebate),
        reason="non_urgent_capture_maker_rebate",
    )


def optimize_buy_price(
    market_price: float,
    side: Side,
    limit_discount: float,
    order_type: OrderType,
) -> PriceOptimization:
    name = side.value.lower()
    if order_type is OrderType.FOK:
        return PriceOptimization(
            buy_price=market_price,
            improvement=0.0,
            reason=f"{name}_fok_immediate_fill_at_market",
        )

    buy_price = market_price * (1 - limit_discount)
    return PriceOptimization(
        buy_price=buy_price,
        improvement=market_price - buy_price,
        reason=f"{name}_gtd_post_only_limit_discount_applied",
    )
