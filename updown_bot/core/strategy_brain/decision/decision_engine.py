"""
Decision Engine
Turns edges, regime, confidence and the adaptive thresholds into one
ENTER / NO_TRADE decision per market per tick.

The checks short-circuit in a fixed order and every rejection carries a
machine-readable reason; decide() never raises for well-shaped input.
"""
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from updown_bot.config import StrategyConfig
from updown_bot.core.strategy_brain.decision.confidence import compute_confidence
from updown_bot.core.strategy_brain.math_utils import clamp, is_finite, sigmoid
from updown_bot.models import (
    Action,
    AdjustedThresholds,
    ConfidenceResult,
    Phase,
    Regime,
    Side,
    Strength,
    TradeDecision,
)


@dataclass(frozen=True)
class RegimeMultiplier:
    """Edge-threshold scale for a regime, or the explicit 'skip' variant."""
    value: float = 1.0
    disabled: bool = False


REGIME_DISABLED = RegimeMultiplier(value=0.0, disabled=True)


def phase_for(
    remaining_minutes: float,
    early_above: float = 10.0,
    mid_above: float = 5.0,
) -> Phase:
    if remaining_minutes > early_above:
        return Phase.EARLY
    if remaining_minutes > mid_above:
        return Phase.MID
    return Phase.LATE


def regime_multiplier(
    regime: Optional[Regime],
    side: Side,
    strategy: StrategyConfig,
    market_id: str = "",
) -> RegimeMultiplier:
    multipliers = strategy.regime_multipliers
    if regime is None:
        return RegimeMultiplier()

    if regime is Regime.CHOP:
        if market_id.upper() in strategy.chop_disabled_markets:
            return REGIME_DISABLED
        return RegimeMultiplier(multipliers.get("CHOP", 1.0))

    if regime is Regime.RANGE:
        return RegimeMultiplier(multipliers.get("RANGE", 1.0))

    aligned = (regime is Regime.TREND_UP) == (side is Side.UP)
    if aligned:
        return RegimeMultiplier(multipliers.get("TREND_ALIGNED", 0.9))
    return RegimeMultiplier(multipliers.get("TREND_OPPOSED", 1.3))


def edge_score(edge: float, soft_cap: float = 0.22, hard_cap: float = 0.30) -> float:
    """Sigmoid edge score, damped linearly to half strength between the caps."""
    score = sigmoid(25 * (edge - 0.04))
    if edge > soft_cap and hard_cap > soft_cap:
        overshoot = min(1.0, (edge - soft_cap) / (hard_cap - soft_cap))
        score *= 1 - 0.5 * overshoot
    return score


def time_score(remaining_minutes: float) -> float:
    return sigmoid(0.8 * (remaining_minutes - 7))


def compute_trade_quality(
    edge: float,
    confidence: ConfidenceResult,
    remaining_minutes: float,
    soft_cap: float = 0.22,
    hard_cap: float = 0.30,
) -> float:
    factors = confidence.factors
    quality = (
        edge_score(edge, soft_cap, hard_cap) * 0.35
        + factors["indicator_alignment"] * 0.2
        + factors["regime_score"] * 0.2
        + time_score(remaining_minutes) * 0.15
        + factors["volatility_score"] * 0.1
    )
    return clamp(quality, 0.0, 1.0)


def strength_for(quality: float) -> Strength:
    if quality >= 0.75:
        return Strength.STRONG
    if quality >= 0.60:
        return Strength.GOOD
    return Strength.OPTIONAL


def base_thresholds(strategy: StrategyConfig, phase: Phase) -> AdjustedThresholds:
    return AdjustedThresholds(
        edge_threshold=strategy.edge_thresholds[phase.value],
        min_prob=strategy.min_probs[phase.value],
        min_confidence=strategy.min_confidence,
        reason="base",
    )


def _reject(phase: Phase, regime: Optional[Regime], reason: str, **extra) -> TradeDecision:
    return TradeDecision(action=Action.NO_TRADE, phase=phase, regime=regime, reason=reason, **extra)


def decide(
    *,
    remaining_minutes: float,
    edge_up: Optional[float],
    edge_down: Optional[float],
    strategy: StrategyConfig,
    effective_edge_up: Optional[float] = None,
    effective_edge_down: Optional[float] = None,
    model_up: Optional[float] = None,
    model_down: Optional[float] = None,
    regime: Optional[Regime] = None,
    market_id: str = "",
    volatility: Optional[float] = None,
    orderbook_imbalance: Optional[float] = None,
    vwap_slope: Optional[float] = None,
    rsi: Optional[float] = None,
    macd_hist: Optional[float] = None,
    ha_color: Optional[str] = None,
    thresholds: Optional[AdjustedThresholds] = None,
) -> TradeDecision:
    """
    Decide whether to enter this market on this tick.

    Args:
        remaining_minutes: Minutes left in the window
        edge_up: Raw UP edge (None when the market is not quoted)
        edge_down: Raw DOWN edge
        strategy: Static strategy configuration
        effective_edge_up: Cost-adjusted UP edge, preferred over the raw edge
        effective_edge_down: Cost-adjusted DOWN edge
        model_up: Model P(up)
        model_down: Model P(down)
        regime: Stable regime for this market
        thresholds: Adaptive thresholds; the phase's base values when None

    Returns:
        TradeDecision
    """
    if not is_finite(remaining_minutes):
        return _reject(Phase.LATE, regime, "time_left_not_finite")

    phase = phase_for(remaining_minutes, strategy.phase_early_above, strategy.phase_mid_above)

    # 1. time
    if remaining_minutes < strategy.min_time_left_minutes:
        return _reject(
            phase, regime,
            f"time_left_{remaining_minutes:.1f}m_below_{strategy.min_time_left_minutes:g}m",
        )

    # 2. finiteness
    for prob in (model_up, model_down):
        if prob is None:
            continue
        if not is_finite(prob):
            return _reject(phase, regime, "model_prob_not_finite")
        if not 0.0 <= prob <= 1.0:
            return _reject(phase, regime, "model_prob_out_of_range")

    for edge in (edge_up, edge_down, effective_edge_up, effective_edge_down):
        if edge is not None and not is_finite(edge):
            return _reject(phase, regime, "edge_not_finite")

    # 3. market data
    if edge_up is None or edge_down is None:
        return _reject(phase, regime, "missing_market_data")

    if market_id and market_id.upper() in strategy.skip_markets:
        return _reject(phase, regime, "market_skipped_by_config")

    # 4. best side
    use_effective = effective_edge_up is not None and effective_edge_down is not None
    up = effective_edge_up if use_effective else edge_up
    down = effective_edge_down if use_effective else edge_down
    side = Side.UP if up > down else Side.DOWN
    best_edge = up if side is Side.UP else down
    best_model = model_up if side is Side.UP else model_down

    if best_edge <= 0:
        return _reject(phase, regime, "non_positive_edge")

    # 5. volatility band
    if volatility is not None:
        if volatility < strategy.min_volatility:
            return _reject(phase, regime, "volatility_too_low")
        if volatility > strategy.max_volatility:
            return _reject(phase, regime, "volatility_too_high")

    # 6. hard cap
    if abs(best_edge) > strategy.edge_hard_cap:
        return _reject(phase, regime, "overconfident_hard_cap")

    # 6a-c. adaptive thresholds
    thresholds = thresholds or base_thresholds(strategy, phase)
    multiplier = regime_multiplier(regime, side, strategy, market_id)
    if multiplier.disabled:
        return _reject(phase, regime, "skip_chop_poor_market")

    edge_threshold = thresholds.edge_threshold * multiplier.value
    if best_edge < edge_threshold:
        return _reject(phase, regime, f"edge_below_{edge_threshold:.3f}")

    if best_model is not None and best_model < thresholds.min_prob:
        return _reject(phase, regime, f"prob_below_{thresholds.min_prob:.2f}")

    # 7. confidence and quality
    confidence = compute_confidence(
        side,
        model_up=model_up,
        model_down=model_down,
        vwap_slope=vwap_slope,
        rsi=rsi,
        macd_hist=macd_hist,
        ha_color=ha_color,
        volatility=volatility,
        orderbook_imbalance=orderbook_imbalance,
        regime=regime,
    )
    quality = compute_trade_quality(
        best_edge, confidence, remaining_minutes, strategy.edge_soft_cap, strategy.edge_hard_cap
    )

    if confidence.score < thresholds.min_confidence:
        return _reject(
            phase, regime,
            f"confidence_{confidence.score:.2f}_below_{thresholds.min_confidence:.2f}",
            confidence=confidence,
            trade_quality=quality,
        )

    # 8. quality floor moves with the adaptive confidence requirement
    quality_floor = clamp(
        strategy.min_trade_quality + (thresholds.min_confidence - strategy.min_confidence),
        0.4,
        0.8,
    )
    if quality < quality_floor:
        return _reject(
            phase, regime,
            f"quality_{quality:.2f}_below_{quality_floor:.2f}",
            confidence=confidence,
            trade_quality=quality,
        )

    # 9. enter
    strength = strength_for(quality)
    logger.debug(
        f"ENTER {side.value} {market_id or '-'} edge={best_edge:.3f} "
        f"quality={quality:.2f} conf={confidence.score:.2f} ({phase.value}/{regime.value if regime else '-'})"
    )
    return TradeDecision(
        action=Action.ENTER,
        side=side,
        phase=phase,
        regime=regime,
        strength=strength,
        edge=best_edge,
        reason=f"{strength.value.lower()}_{side.value.lower()}_edge",
        confidence=confidence,
        trade_quality=quality,
    )
