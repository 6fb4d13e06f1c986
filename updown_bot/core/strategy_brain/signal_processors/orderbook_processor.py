"""
Order Book Imbalance
Measures buy vs sell pressure on the two outcome books.

  imbalance = (bid_liquidity - ask_liquidity) / (bid_liquidity + ask_liquidity)
  Range: -1.0 (all sellers) to +1.0 (all buyers)

The net imbalance favours UP when the UP book is bid and the DOWN book is
offered, so it is the UP book's imbalance minus the DOWN book's.
"""
from typing import Optional

from updown_bot.models import OrderBookSummary


def book_imbalance(book: Optional[OrderBookSummary]) -> Optional[float]:
    if book is None:
        return None
    total = book.bid_liquidity + book.ask_liquidity
    if total <= 0:
        return None
    return (book.bid_liquidity - book.ask_liquidity) / total


def net_imbalance(
    book_up: Optional[OrderBookSummary],
    book_down: Optional[OrderBookSummary],
) -> Optional[float]:
    up = book_imbalance(book_up)
    down = book_imbalance(book_down)

    if up is not None and down is not None:
        return up - down
    if up is not None:
        return up
    if down is not None:
        return -down
    return None


def cross_feed_delta(spot_price: Optional[float], oracle_price: Optional[float]) -> Optional[float]:
    """Relative lead of the spot exchange over the settlement oracle."""
    if spot_price is None or oracle_price is None or oracle_price <= 0:
        return None
    return (spot_price - oracle_price) / oracle_price
