"""
15-Minute Up/Down Strategy
Runs the full per-tick pipeline for one market:

  validate → indicators → TA score + realized vol → vol-implied prob
  → blend → regime → signal quality → ensemble → edge → vig gate
  → adaptive thresholds → decide → order plan (ENTER only)

Every stage is a pure function of the tick and the session's read-only
snapshots, except the regime stage, which advances the market's regime
tracker.
"""
from typing import Optional

from loguru import logger

from updown_bot.config import SIGNAL_QUALITY_K
from updown_bot.core.strategy_brain.decision.confidence import compute_confidence
from updown_bot.core.strategy_brain.decision.decision_engine import base_thresholds, decide, phase_for
from updown_bot.core.strategy_brain.edge.edge_calculator import compute_edge
from updown_bot.core.strategy_brain.fusion_engine.ensemble import EnsembleComposer
from updown_bot.core.strategy_brain.fusion_engine.probability_blender import blend_probabilities
from updown_bot.core.strategy_brain.indicators.technical import compute_indicators
from updown_bot.core.strategy_brain.math_utils import is_finite
from updown_bot.core.strategy_brain.signal_processors.orderbook_processor import (
    cross_feed_delta,
    net_imbalance,
)
from updown_bot.core.strategy_brain.signal_processors.regime_detector import (
    detect_enhanced_regime,
    should_trade_based_on_regime_confidence,
)
from updown_bot.core.strategy_brain.signal_processors.ta_scorer import (
    apply_time_awareness,
    score_snapshot,
)
from updown_bot.core.strategy_brain.signal_processors.volatility_model import (
    compute_realized_volatility,
    compute_vol_implied_prob,
)
from updown_bot.execution.order_strategy import optimize_buy_price, select_order_strategy
from updown_bot.models import (
    Action,
    MarketTick,
    Regime,
    Side,
    SignalFeatures,
    TickEvaluation,
    TradeDecision,
)
from updown_bot.session import TradingSession


class UpDown15MinStrategy:
    """
    Per-tick decision pipeline for 15-minute up/down markets.

    Holds no trading state of its own; everything that outlives a tick
    belongs to the session.
    """

    def __init__(self, session: TradingSession):
        """
        Initialize strategy.

        Args:
            session: Shared trackers, thresholds and configuration
        """
        self.session = session
        self.config = session.strategy
        self.ensemble = EnsembleComposer(
            weights=self.config.ensemble_weights,
            signal_quality_weights=self.config.signal_quality_weights,
            high_volatility_level=self.config.high_volatility_level,
            imbalance_nudge=self.config.ensemble_imbalance_nudge,
        )

        self._evaluations = 0
        self._entries = 0

        logger.info(
            f"Initialized Up/Down 15-Min Strategy "
            f"(min_time_left={self.config.min_time_left_minutes:g}m, max_vig={self.config.max_vig:.2f})"
        )

    def evaluate(self, tick: MarketTick) -> TickEvaluation:
        """
        Evaluate one market tick.

        Args:
            tick: Candles, feed prices, book and displayed prices

        Returns:
            TickEvaluation with the decision and, on ENTER, the order plan
        """
        self._evaluations += 1
        config = self.config
        remaining = tick.time_left_min
        phase = phase_for(remaining, config.phase_early_above, config.phase_mid_above)

        # 1. validate
        validation = self.session.validator.validate(tick)
        if not validation.is_valid:
            return TickEvaluation(
                market_id=tick.market_id,
                window_start_ms=tick.window_start_ms,
                decision=TradeDecision(
                    action=Action.NO_TRADE,
                    phase=phase,
                    reason=f"invalid_market_data_{validation.errors[0]}",
                ),
                price_to_beat=tick.price_to_beat,
                current_price=tick.oracle_price,
                warnings=validation.warnings,
            )

        # 2. indicators
        snapshot = compute_indicators(
            tick.candles,
            vwap_slope_lookback=config.vwap_slope_lookback,
            rsi_period=config.rsi_period,
            macd_fast=config.macd_fast,
            macd_slow=config.macd_slow,
            macd_signal=config.macd_signal,
            vwap_cross_lookback=config.vwap_cross_lookback,
        )
        macd_hist = snapshot.macd.hist if snapshot.macd else None

        # 3. TA score and realized volatility, priced off the settlement oracle
        current_price = self._current_price(tick, snapshot.last_close)
        score = score_snapshot(snapshot, price=current_price)
        closes = [c.close for c in tick.candles]
        volatility = compute_realized_volatility(closes, config.volatility_lookback, config.window_minutes)

        # 4. vol-implied probability
        vol_up = compute_vol_implied_prob(
            current_price, tick.price_to_beat, volatility, remaining, config.window_minutes
        )

        # 5. blend
        imbalance = net_imbalance(tick.book_up, tick.book_down)
        lead = cross_feed_delta(tick.spot_price, tick.oracle_price)
        blend = blend_probabilities(
            vol_up,
            score.raw_up,
            lead_signal=lead,
            orderbook_imbalance=imbalance,
            weight_vol=config.blend_weight_vol,
            weight_ta=config.blend_weight_ta,
            lead_threshold=config.lead_signal_threshold,
            lead_max_adj=config.lead_signal_max_adj,
            imbalance_threshold=config.book_imbalance_threshold,
            imbalance_max_adj=config.book_imbalance_max_adj,
        )

        # 6. regime (advances this market's tracker)
        regime = detect_enhanced_regime(
            snapshot.last_close,
            snapshot.vwap,
            snapshot.vwap_slope,
            snapshot.vwap_cross_count,
            snapshot.volume_recent,
            snapshot.volume_avg,
            rsi=snapshot.rsi,
            macd_hist=macd_hist,
            tracker=self.session.regime_tracker(tick.market_id),
            thresholds=self.session.regime_thresholds,
        )
        regime_gate = should_trade_based_on_regime_confidence(regime)
        decision_regime = Regime.RANGE if regime_gate["use_range_multiplier"] else regime.regime

        # 7. signal quality, looked up for the side the blend leans to
        lean = Side.UP if blend.blended_up >= 0.5 else Side.DOWN
        lean_prob = blend.blended_up if lean is Side.UP else blend.blended_down
        lean_price = tick.market_up if lean is Side.UP else tick.market_down
        lean_confidence = compute_confidence(
            lean,
            model_up=blend.blended_up,
            model_down=blend.blended_down,
            vwap_slope=snapshot.vwap_slope,
            rsi=snapshot.rsi,
            macd_hist=macd_hist,
            ha_color=snapshot.heiken_color,
            volatility=volatility,
            orderbook_imbalance=imbalance,
            regime=regime.regime,
        )
        quality = self.session.signal_quality.predict_win_rate(
            SignalFeatures(
                edge=lean_prob - lean_price if lean_price is not None else 0.0,
                confidence=lean_confidence.score,
                volatility=volatility,
                model_up=blend.blended_up,
                rsi=snapshot.rsi,
                vwap_slope=snapshot.vwap_slope,
                orderbook_imbalance=imbalance,
                phase=phase,
                regime=regime.regime,
                market_id=tick.market_id,
            ),
            k=SIGNAL_QUALITY_K,
        )
        quality_up = None
        if quality.confidence != "INSUFFICIENT":
            win_rate = quality.predicted_win_rate
            quality_up = win_rate if lean is Side.UP else 1 - win_rate

        # 8. ensemble
        ta_input = score.raw_up
        if blend.source == "ta_only":
            ta_input = apply_time_awareness(score.raw_up, remaining, config.window_minutes)
        ensemble = self.ensemble.compose(
            vol_up,
            ta_input,
            blend.blended_up,
            blend.source,
            signal_quality_win_rate=quality_up,
            signal_quality_confidence=quality.confidence,
            regime=regime.regime,
            volatility=volatility,
            orderbook_imbalance=imbalance,
        )

        # 9. edge (taker fee assumed until the order type is known)
        edge = compute_edge(
            ensemble.final_up,
            ensemble.final_down,
            tick.market_up,
            tick.market_down,
            orderbook_imbalance=imbalance,
            spread_up=tick.book_up.spread if tick.book_up else None,
            spread_down=tick.book_down.spread if tick.book_down else None,
            cross_feed_delta=lead,
            max_vig=config.max_vig,
            slippage_threshold=config.slippage_threshold,
            slippage_per_imbalance=config.slippage_per_imbalance,
            spread_free=config.spread_free,
            spread_factor=config.spread_factor,
            arb_min_spread=config.arb_min_spread,
            arb_max_boost=config.arb_max_boost,
            arb_delta_scale=config.arb_delta_scale,
        )

        evaluation = TickEvaluation(
            market_id=tick.market_id,
            window_start_ms=tick.window_start_ms,
            decision=TradeDecision(action=Action.NO_TRADE, phase=phase, regime=regime.regime, reason="pending"),
            price_to_beat=tick.price_to_beat,
            current_price=current_price,
            regime=regime,
            ensemble=ensemble,
            edge=edge,
            warnings=validation.warnings,
        )

        # 10. vig gate (the time gate in decide reports first)
        if edge.vig_too_high and remaining >= config.min_time_left_minutes:
            evaluation.decision = TradeDecision(
                action=Action.NO_TRADE,
                phase=phase,
                regime=regime.regime,
                reason=f"vig_too_high_{edge.raw_sum:.3f}",
            )
            return self._log(evaluation)

        # 11. adaptive thresholds (read-only)
        base = base_thresholds(config, phase)
        thresholds = self.session.adaptive_thresholds.get_adjusted_thresholds(
            tick.market_id,
            base.edge_threshold,
            base.min_prob,
            base.min_confidence,
            phase,
            regime.regime,
        )
        evaluation.thresholds = thresholds

        # 12. decide
        decision = decide(
            remaining_minutes=remaining,
            edge_up=edge.edge_up,
            edge_down=edge.edge_down,
            strategy=config,
            effective_edge_up=edge.effective_edge_up,
            effective_edge_down=edge.effective_edge_down,
            model_up=ensemble.final_up,
            model_down=ensemble.final_down,
            regime=decision_regime,
            market_id=tick.market_id,
            volatility=volatility,
            orderbook_imbalance=imbalance,
            vwap_slope=snapshot.vwap_slope,
            rsi=snapshot.rsi,
            macd_hist=macd_hist,
            ha_color=snapshot.heiken_color,
            thresholds=thresholds,
        )

        if decision.should_enter and not regime_gate["should_trade"]:
            decision = TradeDecision(
                action=Action.NO_TRADE,
                phase=decision.phase,
                regime=regime.regime,
                reason=regime_gate["reason"],
                confidence=decision.confidence,
                trade_quality=decision.trade_quality,
            )
        evaluation.decision = decision

        if not decision.should_enter:
            return self._log(evaluation)

        # 13. order plan
        side_price = edge.market_up if decision.side is Side.UP else edge.market_down
        evaluation.order = select_order_strategy(
            decision.phase,
            decision.confidence.score,
            decision.side,
            edge.market_up,
            edge.market_down,
            fok_confidence=config.late_fok_min_confidence,
            maker_rebate=config.maker_rebate,
        )
        evaluation.pricing = optimize_buy_price(
            side_price, decision.side, config.limit_discount, evaluation.order.order_type
        )
        evaluation.features = SignalFeatures(
            edge=decision.edge,
            confidence=decision.confidence.score,
            volatility=volatility,
            model_up=ensemble.final_up,
            rsi=snapshot.rsi,
            vwap_slope=snapshot.vwap_slope,
            orderbook_imbalance=imbalance,
            phase=decision.phase,
            regime=regime.regime,
            market_id=tick.market_id,
        )
        self._entries += 1
        return self._log(evaluation)

    @staticmethod
    def _current_price(tick: MarketTick, last_close: Optional[float]) -> Optional[float]:
        for price in (tick.oracle_price, tick.spot_price, last_close):
            if price is not None and is_finite(price) and price > 0:
                return price
        return None

    def _log(self, evaluation: TickEvaluation) -> TickEvaluation:
        decision = evaluation.decision
        if decision.should_enter:
            logger.info(
                f"[{evaluation.market_id}] ENTER {decision.side.value} ({decision.strength.value}) "
                f"edge={decision.edge:.3f} conf={decision.confidence.score:.2f} "
                f"{evaluation.order.order_type.value} @ {evaluation.pricing.buy_price:.3f} "
                f"| {decision.phase.value}/{decision.regime.value if decision.regime else '-'}"
            )
        else:
            logger.debug(f"[{evaluation.market_id}] NO_TRADE {decision.reason} ({decision.phase.value})")
        return evaluation

    def get_statistics(self) -> dict:
        return {
            "evaluations": self._evaluations,
            "entries": self._entries,
            "entry_rate": self._entries / self._evaluations if self._evaluations else 0.0,
            "ensemble": self.ensemble.get_statistics(),
        }
