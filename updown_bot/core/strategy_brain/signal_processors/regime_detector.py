"""
Regime Detector
Classifies the market state from VWAP position, VWAP slope, volume and
VWAP-cross frequency.

CLASSIFICATION (first match wins):
  missing price / VWAP / slope             → CHOP  (missing_inputs)
  low volume and price hugging VWAP        → CHOP  (low_volume_flat)
  above VWAP with rising slope             → TREND_UP
  below VWAP with falling slope            → TREND_DOWN
  frequent VWAP crosses                    → CHOP  (frequent_vwap_cross)
  anything else                            → RANGE

A per-market RegimeTransitionTracker keeps the recent classifications so a
single noisy tick does not flip the regime the decision path sees.
"""
from collections import deque
from typing import Deque, Dict, Optional

from loguru import logger

from updown_bot.config import RegimeThresholds
from updown_bot.core.strategy_brain.math_utils import clamp, is_finite
from updown_bot.models import EnhancedRegimeResult, Regime, RegimeResult


def detect_regime(
    price: Optional[float],
    vwap: Optional[float],
    vwap_slope: Optional[float],
    vwap_cross_count: Optional[int] = None,
    volume_recent: Optional[float] = None,
    volume_avg: Optional[float] = None,
    thresholds: Optional[RegimeThresholds] = None,
) -> RegimeResult:
    thresholds = thresholds or RegimeThresholds()

    if price is None or vwap is None or vwap_slope is None or vwap <= 0:
        return RegimeResult(Regime.CHOP, "missing_inputs")

    above = price > vwap

    low_volume = (
        volume_recent is not None
        and volume_avg is not None
        and volume_recent < thresholds.low_volume_ratio * volume_avg
    )
    if low_volume and abs((price - vwap) / vwap) < thresholds.flat_distance:
        return RegimeResult(Regime.CHOP, "low_volume_flat")

    if above and vwap_slope > 0:
        return RegimeResult(Regime.TREND_UP, "price_above_vwap_slope_up")

    if not above and vwap_slope < 0:
        return RegimeResult(Regime.TREND_DOWN, "price_below_vwap_slope_down")

    if vwap_cross_count is not None and vwap_cross_count >= thresholds.chop_cross_count:
        return RegimeResult(Regime.CHOP, "frequent_vwap_cross")

    return RegimeResult(Regime.RANGE, "default")


def _unit(value: float) -> float:
    if not is_finite(value):
        return 0.0
    return clamp(value, 0.0, 1.0)


class RegimeTransitionTracker:
    """
    Recent regime history for one market.

    Records every raw classification, exposes empirical transition
    probabilities, and holds the last stable regime until a challenger
    either repeats for `confirm_ticks` ticks or arrives with high confidence.
    """

    def __init__(
        self,
        max_history: int = 100,
        confirm_ticks: int = 2,
        switch_confidence: float = 0.55,
    ):
        if max_history < 2:
            raise ValueError(f"max_history must be >= 2, got {max_history}")
        if confirm_ticks < 1:
            raise ValueError(f"confirm_ticks must be >= 1, got {confirm_ticks}")

        self.max_history = max_history
        self.confirm_ticks = confirm_ticks
        self.switch_confidence = switch_confidence

        self._observations: Deque[Regime] = deque(maxlen=max_history)
        self._stable: Optional[Regime] = None
        self._challenger: Optional[Regime] = None
        self._challenger_count = 0

    @property
    def stable_regime(self) -> Optional[Regime]:
        return self._stable

    def record(self, regime: Regime) -> None:
        self._observations.append(regime)

    def transition_probabilities(self, current: Regime) -> Dict[str, float]:
        counts = {r.value: 0 for r in Regime}
        observations = list(self._observations)
        total = 0
        for prev, nxt in zip(observations, observations[1:]):
            if prev is current:
                counts[nxt.value] += 1
                total += 1

        if total == 0:
            return {k: 0.0 for k in counts}
        return {k: v / total for k, v in counts.items()}

    def stabilize(self, candidate: Regime, confidence: float, force: bool = False) -> Regime:
        """
        Return the regime to act on after seeing `candidate` this tick.

        Args:
            candidate: Raw classification for this tick
            confidence: Confidence of the raw classification
            force: Switch immediately (used for missing inputs)
        """
        if force or self._stable is None or candidate is self._stable:
            self._stable = candidate
            self._challenger = None
            self._challenger_count = 0
            return candidate

        if candidate is self._challenger:
            self._challenger_count += 1
        else:
            self._challenger = candidate
            self._challenger_count = 1

        if self._challenger_count >= self.confirm_ticks or confidence >= self.switch_confidence:
            logger.debug(
                f"Regime switch {self._stable.value} → {candidate.value} "
                f"(ticks={self._challenger_count}, confidence={confidence:.2f})"
            )
            self._stable = candidate
            self._challenger = None
            self._challenger_count = 0

        return self._stable


def _confidence_for(regime: Regime, trend_strength: float, chop_strength: float) -> float:
    if regime.is_trend:
        return _unit(0.35 + trend_strength * 0.65)
    if regime is Regime.CHOP:
        return _unit(0.3 + chop_strength * 0.7)
    return _unit(0.35 + chop_strength * 0.25 + (1 - trend_strength) * 0.4)


def detect_enhanced_regime(
    price: Optional[float],
    vwap: Optional[float],
    vwap_slope: Optional[float],
    vwap_cross_count: Optional[int] = None,
    volume_recent: Optional[float] = None,
    volume_avg: Optional[float] = None,
    rsi: Optional[float] = None,
    macd_hist: Optional[float] = None,
    tracker: Optional[RegimeTransitionTracker] = None,
    thresholds: Optional[RegimeThresholds] = None,
) -> EnhancedRegimeResult:
    """
    Base classification plus a confidence score and, when a tracker is
    given, transition probabilities and flicker damping.
    """
    base = detect_regime(
        price, vwap, vwap_slope, vwap_cross_count, volume_recent, volume_avg, thresholds
    )

    distance = abs((price - vwap) / vwap) if price is not None and vwap else 0.0
    distance_score = _unit(distance * 120)
    slope_score = _unit(abs(vwap_slope or 0.0) * 250)

    volume_ratio = None
    if volume_recent is not None and volume_avg is not None and volume_avg > 0:
        volume_ratio = volume_recent / volume_avg
    volume_score = 0.5 if volume_ratio is None else _unit((volume_ratio - 0.8) / 1.2)
    low_volume_score = 0.5 if volume_ratio is None else _unit((1.1 - volume_ratio) / 0.8)

    cross_score = _unit((vwap_cross_count or 0) / 6)
    rsi_extreme_score = 0.5 if rsi is None else _unit((abs(rsi - 50) - 20) / 30)
    macd_score = 0.5 if macd_hist is None else _unit(abs(macd_hist) * 8)

    trend_strength = _unit(
        distance_score * 0.28
        + slope_score * 0.24
        + volume_score * 0.18
        + rsi_extreme_score * 0.14
        + macd_score * 0.16
    )
    chop_strength = _unit(
        cross_score * 0.45
        + (1 - slope_score) * 0.2
        + (1 - distance_score) * 0.2
        + low_volume_score * 0.15
    )

    raw_confidence = _confidence_for(base.regime, trend_strength, chop_strength)

    if tracker is None:
        return EnhancedRegimeResult(
            regime=base.regime,
            reason=base.reason,
            confidence=raw_confidence,
            raw_regime=base.regime,
        )

    transitions = tracker.transition_probabilities(base.regime)
    tracker.record(base.regime)
    regime = tracker.stabilize(
        base.regime, raw_confidence, force=base.reason == "missing_inputs"
    )

    if regime is base.regime:
        return EnhancedRegimeResult(
            regime=regime,
            reason=base.reason,
            confidence=raw_confidence,
            raw_regime=base.regime,
            transition_probabilities=transitions,
        )

    return EnhancedRegimeResult(
        regime=regime,
        reason=f"held_pending_{base.regime.value.lower()}",
        confidence=_confidence_for(regime, trend_strength, chop_strength),
        raw_regime=base.regime,
        transition_probabilities=transitions,
    )


def should_trade_based_on_regime_confidence(result: EnhancedRegimeResult) -> Dict[str, object]:
    """High-confidence chop is untradeable; low-confidence trends trade like range."""
    if result.regime is Regime.CHOP and result.confidence > 0.6:
        return {"should_trade": False, "reason": "high_confidence_chop", "use_range_multiplier": False}

    if result.regime.is_trend and result.confidence < 0.4:
        return {"should_trade": True, "reason": "low_confidence_trend", "use_range_multiplier": True}

    return {"should_trade": True, "reason": "ok", "use_range_multiplier": False}
