"""
Trading Session
Owns every piece of per-market mutable state the decision and settlement
paths share, so nothing lives in module-level singletons.

Writers:
  - settlement writes the performance tracker and the signal-quality model
  - the per-tick regime stage writes the regime trackers
The decision path only reads.
"""
import json
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from loguru import logger

from updown_bot.config import (
    PERFORMANCE_MIN_TRADES,
    PERFORMANCE_RECENT_TRADES,
    PERFORMANCE_STATE_FILE,
    PERFORMANCE_WINDOW,
    SETTLEMENT_STATE_FILE,
    SIGNAL_METADATA_MAX_ENTRIES,
    SIGNAL_QUALITY_MIN_SAMPLES,
    RegimeThresholds,
    RiskConfig,
    StrategyConfig,
    load_regime_thresholds,
    load_risk_config,
    load_strategy_config,
)
from updown_bot.core.ingestion.validators.data_validator import TickValidator
from updown_bot.core.strategy_brain.signal_processors.regime_detector import RegimeTransitionTracker
from updown_bot.execution.settlement_engine import SettlementEngine, SettlementReport
from updown_bot.feedback.adaptive_thresholds import AdaptiveThresholdManager
from updown_bot.feedback.signal_metadata import SignalMetadataStore
from updown_bot.feedback.signal_quality import SignalQualityModel
from updown_bot.models import PendingTrade, SignalMetadata, TickEvaluation, TradeMode
from updown_bot.monitoring.performance_tracker import MarketPerformanceTracker


class TradingSession:
    """
    Services for one running bot.

    Features:
    - Performance tracker, adaptive thresholds and signal-quality model
    - Write-once signal metadata keyed by trade id
    - Regime tracker per market, created on first use
    - Paper and live settlement engines
    """

    def __init__(
        self,
        strategy: Optional[StrategyConfig] = None,
        regime_thresholds: Optional[RegimeThresholds] = None,
        risk: Optional[RiskConfig] = None,
        persist_trade: Optional[Callable[[PendingTrade], None]] = None,
    ):
        """
        Initialize trading session.

        Args:
            strategy: Decision path configuration
            regime_thresholds: Regime detector cut-offs
            risk: Account limits shared by both settlement engines
            persist_trade: Mirror hook called with every settled trade
        """
        self.strategy = strategy or load_strategy_config()
        self.regime_thresholds = regime_thresholds or load_regime_thresholds()
        self.risk = risk or load_risk_config()

        window_ms = self.strategy.window_minutes * 60_000

        self.validator = TickValidator()
        self.performance_tracker = MarketPerformanceTracker(
            rolling_window=PERFORMANCE_WINDOW,
            min_trades=PERFORMANCE_MIN_TRADES,
            recent_window=PERFORMANCE_RECENT_TRADES,
        )
        self.adaptive_thresholds = AdaptiveThresholdManager(self.performance_tracker)
        self.signal_quality = SignalQualityModel(min_samples=SIGNAL_QUALITY_MIN_SAMPLES)
        self.metadata_store = SignalMetadataStore(
            ttl_ms=2 * window_ms,
            max_entries=SIGNAL_METADATA_MAX_ENTRIES,
        )

        self._regime_trackers: Dict[str, RegimeTransitionTracker] = {}

        self.engines: Dict[TradeMode, SettlementEngine] = {
            mode: SettlementEngine(
                mode=mode,
                performance_tracker=self.performance_tracker,
                signal_quality=self.signal_quality,
                metadata_store=self.metadata_store,
                risk_config=self.risk,
                window_minutes=self.strategy.window_minutes,
                persist_trade=persist_trade,
            )
            for mode in TradeMode
        }

        logger.info(f"Initialized Trading Session (window={self.strategy.window_minutes}m)")

    @property
    def paper(self) -> SettlementEngine:
        return self.engines[TradeMode.PAPER]

    @property
    def live(self) -> SettlementEngine:
        return self.engines[TradeMode.LIVE]

    def regime_tracker(self, market_id: str) -> RegimeTransitionTracker:
        tracker = self._regime_trackers.get(market_id)
        if tracker is None:
            tracker = RegimeTransitionTracker(
                max_history=self.regime_thresholds.history_size,
                confirm_ticks=self.regime_thresholds.confirm_ticks,
                switch_confidence=self.regime_thresholds.switch_confidence,
            )
            self._regime_trackers[market_id] = tracker
        return tracker

    # =========================================================================
    # Trade entry
    # =========================================================================

    def open_paper_trade(self, evaluation: TickEvaluation, size: Decimal) -> Optional[PendingTrade]:
        """
        Open a simulated trade at the evaluation's planned buy price.

        Returns:
            The pending trade, or None when the risk checks refuse it
        """
        if evaluation.pricing is None:
            raise ValueError(f"{evaluation.market_id}: evaluation has no order plan")
        return self._open(TradeMode.PAPER, evaluation, size, evaluation.pricing.buy_price)

    def open_live_trade(
        self,
        evaluation: TickEvaluation,
        order_id: str,
        size: Decimal,
        buy_price: float,
        entry_day: Optional[date] = None,
    ) -> Optional[PendingTrade]:
        """
        Record a placed exchange order so it settles and feeds back.

        Args:
            evaluation: The ENTER evaluation the order was placed from
            order_id: Exchange order id, used as the trade id
            size: Stake in USD
            buy_price: Price the order was placed at
            entry_day: Ledger day of the worst-case debit

        Returns:
            The pending trade, or None when the risk checks refuse it
        """
        return self._open(TradeMode.LIVE, evaluation, size, buy_price, order_id, entry_day)

    def _open(
        self,
        mode: TradeMode,
        evaluation: TickEvaluation,
        size: Decimal,
        buy_price: float,
        trade_id: Optional[str] = None,
        entry_day: Optional[date] = None,
    ) -> Optional[PendingTrade]:
        decision = evaluation.decision
        if not decision.should_enter or decision.side is None or evaluation.features is None:
            raise ValueError(f"{evaluation.market_id}: cannot open a trade from a {decision.action.value} decision")

        engine = self.engines[mode]
        size = Decimal(str(size))
        allowed, reason = engine.can_trade(size)
        if not allowed:
            logger.warning(f"[{mode.value.upper()}] Trade refused for {evaluation.market_id}: {reason}")
            return None

        trade = engine.add_trade(
            market_id=evaluation.market_id,
            window_start_ms=evaluation.window_start_ms,
            side=decision.side,
            entry_price=Decimal(str(buy_price)),
            size=size,
            price_to_beat=evaluation.price_to_beat,
            current_price=evaluation.current_price,
            trade_id=trade_id,
            entry_day=entry_day,
        )

        self.metadata_store.put(trade.id, SignalMetadata(
            market_id=evaluation.market_id,
            side=decision.side,
            edge=decision.edge,
            confidence=decision.confidence.score if decision.confidence else 0.0,
            phase=decision.phase,
            regime=decision.regime,
            features=evaluation.features,
        ))
        return trade

    # =========================================================================
    # Settlement
    # =========================================================================

    def settle_window(
        self,
        window_start_ms: int,
        final_prices: Mapping[str, float],
        day: Optional[date] = None,
    ) -> Dict[TradeMode, SettlementReport]:
        """
        Settle both accounts for a finished window and drop stale trades.

        Args:
            window_start_ms: Start of the window that just closed
            final_prices: market_id → finalized settle price
            day: Ledger day (defaults to today)

        Returns:
            SettlementReport per mode
        """
        reports = {
            mode: engine.settle_window(window_start_ms, final_prices, day)
            for mode, engine in self.engines.items()
        }

        current_window_start_ms = window_start_ms + self.strategy.window_minutes * 60_000
        for engine in self.engines.values():
            engine.cleanup_stale(current_window_start_ms)
        self.metadata_store.purge()

        settled = sum(len(r.settled) for r in reports.values())
        if settled:
            logger.info(f"Window {window_start_ms} settled: {settled} trade(s)")
        return reports

    # =========================================================================
    # Persistence
    # =========================================================================

    def export_state(self) -> Dict[str, Any]:
        return {mode.value: engine.export_state() for mode, engine in self.engines.items()}

    def save_state(
        self,
        settlement_path: Path = Path(SETTLEMENT_STATE_FILE),
        performance_path: Path = Path(PERFORMANCE_STATE_FILE),
    ) -> bool:
        saved = self.performance_tracker.save_state(performance_path)
        try:
            with open(settlement_path, "w") as f:
                json.dump(self.export_state(), f, indent=2)
        except (OSError, TypeError) as e:
            logger.warning(f"Failed to save settlement state: {e}")
            return False
        return saved

    def load_state(self, performance_path: Path = Path(PERFORMANCE_STATE_FILE)) -> int:
        return self.performance_tracker.load_state(performance_path)
