"""
Fee Model
Taker fee on the 15-minute crypto markets, as a fraction of notional.

  fee_rate(p) = FEE_RATE · (p·(1−p))^FEE_EXPONENT · (1 − maker_rebate)

The curve peaks at p = 0.5 and vanishes at the price boundaries, where the
outcome is already decided.
"""
from updown_bot.config import FEE_EXPONENT, FEE_RATE
from updown_bot.core.strategy_brain.math_utils import clamp, is_finite


def estimate_polymarket_fee(
    price: float,
    maker_rebate: float = 0.0,
    fee_rate: float = FEE_RATE,
    exponent: int = FEE_EXPONENT,
) -> float:
    """
    Estimated fee rate for buying at `price`.

    Args:
        price: Outcome price in [0, 1]
        maker_rebate: Share of the fee rebated (0 for takers)

    Returns:
        Fee as a fraction of notional, 0.0 for invalid prices
    """
    if not is_finite(price) or price <= 0 or price >= 1:
        return 0.0
    rebate = clamp(maker_rebate, 0.0, 1.0)
    return fee_rate * (price * (1 - price)) ** exponent * (1 - rebate)


def fee_per_share(price: float, maker_rebate: float = 0.0) -> float:
    """Fee in probability units for one share bought at `price`."""
    return price * estimate_polymarket_fee(price, maker_rebate)
