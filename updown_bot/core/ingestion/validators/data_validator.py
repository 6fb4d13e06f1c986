"""
Tick Validator
Rejects malformed market ticks before they reach the probability models.

Errors are short machine-readable codes; the strategy surfaces the first
one as `invalid_market_data_<code>`. Warnings never block a tick.
"""
import math
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional

from loguru import logger

from updown_bot.core.strategy_brain.math_utils import is_finite
from updown_bot.models import MarketTick, OrderBookSummary


@dataclass
class ValidationRule:
    """Numeric range rule for one tick field."""
    name: str
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    max_change_percent: Optional[float] = None


@dataclass
class ValidationResult:
    """Result of tick validation."""
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


class TickValidator:
    """
    Validates market ticks for:
    - Finite, positive feed prices
    - Outcome prices and book quotes inside [0, 1]
    - Candle sanity (ordering, OHLC shape, volume)
    - Oracle price jumps (z-score over recent history)
    """

    def __init__(self, max_history_size: int = 100, z_score_threshold: float = 4.0):
        """
        Initialize tick validator.

        Args:
            max_history_size: Oracle prices kept per market for anomaly checks
            z_score_threshold: Z-score above which a price jump is flagged
        """
        if max_history_size <= 0:
            raise ValueError(f"max_history_size must be positive, got {max_history_size}")

        self.max_history_size = max_history_size
        self.z_score_threshold = z_score_threshold
        self._price_history: Dict[str, Deque[float]] = {}

        self.rules = {
            "feed_price": ValidationRule(name="Feed price", min_value=0.0),
            "outcome_price": ValidationRule(name="Outcome price", min_value=0.0, max_value=1.0),
            "cross_feed": ValidationRule(name="Spot/oracle divergence", max_change_percent=1.0),
        }

        logger.info(
            f"Initialized Tick Validator (history={max_history_size}, z={z_score_threshold})"
        )

    def validate(self, tick: MarketTick) -> ValidationResult:
        """
        Validate one tick.

        Args:
            tick: Market tick

        Returns:
            ValidationResult with is_valid flag and error codes
        """
        errors: List[str] = []
        warnings: List[str] = []
        metadata: Dict[str, Any] = {}

        # 1. identity
        if not tick.market_id:
            errors.append("empty_market_id")
        if not is_finite(tick.time_left_min):
            errors.append("time_left_not_finite")

        # 2. feed prices
        feed_rule = self.rules["feed_price"]
        for name in ("oracle_price", "spot_price", "price_to_beat"):
            value = getattr(tick, name)
            if value is None:
                continue
            if not is_finite(value):
                errors.append(f"{name}_not_finite")
            elif value <= feed_rule.min_value:
                errors.append(f"{name}_not_positive")

        # 3. outcome prices
        outcome_rule = self.rules["outcome_price"]
        for name in ("market_up", "market_down"):
            value = getattr(tick, name)
            if value is None:
                continue
            if not is_finite(value):
                errors.append(f"{name}_not_finite")
            elif not outcome_rule.min_value <= value <= outcome_rule.max_value:
                errors.append(f"{name}_out_of_range")

        if tick.market_up is not None and tick.market_down is not None and not errors:
            total = tick.market_up + tick.market_down
            if abs(total - 1.0) > 0.1:
                warnings.append(f"Outcome prices sum to {total:.3f}")
                metadata["outcome_sum"] = total

        # 4. books
        for name in ("book_up", "book_down"):
            errors.extend(self._validate_book(name, getattr(tick, name)))

        # 5. candles
        errors.extend(self._validate_candles(tick, warnings))

        # 6. cross-feed divergence
        if (
            tick.spot_price is not None
            and tick.oracle_price is not None
            and is_finite(tick.spot_price)
            and is_finite(tick.oracle_price)
            and tick.oracle_price > 0
        ):
            divergence = abs(tick.spot_price - tick.oracle_price) / tick.oracle_price * 100
            if divergence > self.rules["cross_feed"].max_change_percent:
                warnings.append(f"Spot/oracle divergence {divergence:.2f}%")
                metadata["cross_feed_divergence_percent"] = divergence

        # 7. oracle jumps
        if tick.oracle_price is not None and is_finite(tick.oracle_price) and tick.oracle_price > 0:
            anomaly = self.detect_anomaly(tick.market_id, tick.oracle_price)
            if anomaly:
                warnings.append(
                    f"Oracle {anomaly['anomaly_type']}: z={anomaly['z_score']:.1f}"
                )
                metadata["anomaly"] = anomaly
            self._remember(tick.market_id, tick.oracle_price)

        if errors:
            logger.warning(f"Validation FAILED for {tick.market_id or '?'}: {errors}")
        elif warnings:
            logger.debug(f"Validation warnings for {tick.market_id}: {warnings}")

        return ValidationResult(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            metadata=metadata,
        )

    @staticmethod
    def _validate_book(name: str, book: Optional[OrderBookSummary]) -> List[str]:
        if book is None:
            return []

        errors = []
        for label, quote in (("bid", book.best_bid), ("ask", book.best_ask)):
            if quote is None:
                continue
            if not is_finite(quote) or not 0.0 <= quote <= 1.0:
                errors.append(f"{name}_{label}_out_of_range")

        if not errors and book.best_bid is not None and book.best_ask is not None:
            if book.best_bid > book.best_ask:
                errors.append(f"{name}_crossed")

        for label, liquidity in (("bid", book.bid_liquidity), ("ask", book.ask_liquidity)):
            if not is_finite(liquidity) or liquidity < 0:
                errors.append(f"{name}_{label}_liquidity_invalid")
        return errors

    @staticmethod
    def _validate_candles(tick: MarketTick, warnings: List[str]) -> List[str]:
        if not tick.candles:
            warnings.append("No candles")
            return []

        previous_time = None
        for candle in tick.candles:
            values = (candle.open, candle.high, candle.low, candle.close)
            if not all(is_finite(v) for v in values) or not is_finite(candle.volume):
                return ["candle_not_finite"]
            if candle.volume < 0:
                return ["candle_negative_volume"]
            if candle.low > candle.high:
                return ["candle_low_above_high"]
            if previous_time is not None and candle.open_time <= previous_time:
                return ["candles_not_ascending"]
            previous_time = candle.open_time
        return []

    # =========================================================================
    # Anomaly detection
    # =========================================================================

    def _remember(self, market_id: str, price: float) -> None:
        history = self._price_history.setdefault(market_id, deque(maxlen=self.max_history_size))
        history.append(price)

    def detect_anomaly(self, market_id: str, current_price: float) -> Optional[Dict[str, Any]]:
        """
        Detect oracle price anomalies using Z-score.

        Args:
            market_id: Market symbol
            current_price: Price to check against the market's history

        Returns:
            Anomaly details if detected, None otherwise
        """
        history = self._price_history.get(market_id)
        if not history or len(history) < 10:
            return None

        mean = sum(history) / len(history)
        variance = sum((x - mean) ** 2 for x in history) / len(history)
        std_dev = math.sqrt(variance)
        if std_dev == 0:
            return None

        z_score = abs(current_price - mean) / std_dev
        if z_score <= self.z_score_threshold:
            return None

        return {
            "market_id": market_id,
            "current_price": current_price,
            "mean_price": mean,
            "std_dev": std_dev,
            "z_score": z_score,
            "threshold": self.z_score_threshold,
            "anomaly_type": "price_spike" if current_price > mean else "price_drop",
        }

    def clear_history(self, market_id: Optional[str] = None) -> None:
        if market_id:
            self._price_history.pop(market_id, None)
        else:
            self._price_history.clear()
