"""
Settlement Engine
Resolves pending trades at each window boundary and feeds the outcomes
back into the performance tracker and the signal-quality model.

OUTCOME RULE:
  final > price_to_beat  → UP wins
  final <= price_to_beat → DOWN wins (ties always go to DOWN)

PNL:
  win  → size · (1 − entry_price)
  loss → −size · entry_price

Paper accounts debit the stake at entry and credit `size + pnl` at
settlement. Live accounts are conservatively debited the worst case
(−size · price) in the daily ledger at entry, so a win only books the
`+size` correction. On-chain data stays the authority for live trades;
this engine's live view is diagnostic.
"""
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from loguru import logger

from updown_bot.config import RiskConfig
from updown_bot.core.strategy_brain.math_utils import is_finite
from updown_bot.execution.risk_engine import RiskEngine
from updown_bot.feedback.signal_metadata import SignalMetadataStore
from updown_bot.feedback.signal_quality import SignalQualityModel
from updown_bot.models import PendingTrade, Side, TradeMode, TradeOutcome
from updown_bot.monitoring.performance_tracker import MarketPerformanceTracker


@dataclass
class SettledTrade:
    trade_id: str
    market_id: str
    side: Side
    won: bool
    pnl: Decimal
    settle_price: float


@dataclass
class SettlementReport:
    window_start_ms: int
    settled: List[SettledTrade] = field(default_factory=list)
    unresolved: int = 0
    stop_loss_triggered: bool = False


@dataclass
class SettlementStats:
    total_trades: int
    wins: int
    losses: int
    pending: int
    win_rate: float
    total_pnl: Decimal


def determine_winner(final_price: float, price_to_beat: float) -> Side:
    return Side.UP if final_price > price_to_beat else Side.DOWN


def compute_pnl(won: bool, size: Decimal, entry_price: Decimal) -> Decimal:
    if won:
        return size * (Decimal("1") - entry_price)
    return -(size * entry_price)


class SettlementEngine:
    """
    Settlement for one trading mode.

    Features:
    - Idempotent per (window, market): resolved trades are never touched again
    - Daily PnL ledger deduplicated by trade id
    - Stop-loss check after every settlement pass
    - Stale trades dropped after `stale_after_windows` windows, with a warning
    - Best-effort persistence hook; failures are logged, state still advances
    """

    def __init__(
        self,
        mode: TradeMode,
        performance_tracker: MarketPerformanceTracker,
        signal_quality: SignalQualityModel,
        metadata_store: SignalMetadataStore,
        risk_config: Optional[RiskConfig] = None,
        window_minutes: int = 15,
        persist_trade: Optional[Callable[[PendingTrade], None]] = None,
    ):
        """
        Initialize settlement engine.

        Args:
            mode: Paper or live
            performance_tracker: Receives every settled outcome
            signal_quality: Receives the entry features of every settled trade
            metadata_store: Source of the entry features
            risk_config: Account limits
            window_minutes: Market window length
            persist_trade: Called with each trade after it resolves
        """
        self.mode = mode
        self.performance_tracker = performance_tracker
        self.signal_quality = signal_quality
        self.metadata_store = metadata_store
        self.risk_config = risk_config or RiskConfig()
        self.window_minutes = window_minutes
        self.persist_trade = persist_trade

        self.risk = RiskEngine(self.risk_config, mode)

        self._trades: List[PendingTrade] = []
        self._wins = 0
        self._losses = 0
        self._total_pnl = Decimal("0")

        # Callbacks
        self.on_trade_resolved: Optional[Callable[[PendingTrade], None]] = None

        logger.info(
            f"Initialized Settlement Engine [{mode.value.upper()}] "
            f"(window={window_minutes}m, stale_after={self.risk_config.stale_after_windows} windows)"
        )

    # =========================================================================
    # Entry
    # =========================================================================

    def add_trade(
        self,
        market_id: str,
        window_start_ms: int,
        side: Side,
        entry_price: Decimal,
        size: Decimal,
        price_to_beat: Optional[float],
        current_price: Optional[float] = None,
        trade_id: Optional[str] = None,
        entry_day: Optional[date] = None,
    ) -> PendingTrade:
        """
        Register a newly placed trade.

        Args:
            market_id: Market symbol
            window_start_ms: Window the trade settles in
            side: Side bought
            entry_price: Fill (or limit) price
            size: Stake in USD
            price_to_beat: Window strike
            current_price: Oracle price at entry
            trade_id: Exchange order id for live trades
            entry_day: Ledger day for the live worst-case debit

        Returns:
            The pending trade
        """
        entry_price = Decimal(str(entry_price))
        size = Decimal(str(size))
        trade_id = trade_id or f"{self.mode.value}-{int(datetime.now().timestamp() * 1000)}-{uuid.uuid4().hex[:6]}"

        trade = PendingTrade(
            id=trade_id,
            market_id=market_id,
            window_start_ms=window_start_ms,
            side=side,
            entry_price=entry_price,
            size=size,
            price_to_beat=price_to_beat,
            mode=self.mode,
            current_price_at_entry=current_price,
        )
        self._trades.append(trade)

        if self.mode is TradeMode.PAPER:
            self.risk.debit(size)
        else:
            self.risk.apply_daily_pnl(f"{trade_id}:entry", -(size * entry_price), entry_day)

        logger.info(
            f"[{self.mode.value.upper()}] Opened {trade_id}: {market_id} {side.value} "
            f"${size} @ {entry_price} (ptb={price_to_beat})"
        )
        return trade

    # =========================================================================
    # Settlement
    # =========================================================================

    def settle_window(
        self,
        window_start_ms: int,
        final_prices: Mapping[str, float],
        day: Optional[date] = None,
    ) -> SettlementReport:
        """
        Resolve every unresolved trade of `window_start_ms` with a known price.

        Args:
            window_start_ms: Window being closed
            final_prices: market_id → finalized settle price
            day: Ledger day (defaults to today)

        Returns:
            SettlementReport
        """
        report = SettlementReport(window_start_ms=window_start_ms)

        for trade in self._trades:
            if trade.resolved or trade.window_start_ms != window_start_ms:
                continue

            final_price = final_prices.get(trade.market_id)
            if not is_finite(final_price) or not is_finite(trade.price_to_beat) or trade.price_to_beat <= 0:
                if final_price is not None:
                    logger.warning(
                        f"Unusable settle price for {trade.market_id} ({final_price}, ptb={trade.price_to_beat}), "
                        f"leaving {trade.id} unresolved"
                    )
                report.unresolved += 1
                continue

            report.settled.append(self._resolve(trade, final_price, day))

        if report.settled:
            report.stop_loss_triggered = self.risk.check_and_trigger_stop_loss(day)

        return report

    def _resolve(self, trade: PendingTrade, final_price: float, day: Optional[date]) -> SettledTrade:
        won = determine_winner(final_price, trade.price_to_beat) is trade.side
        pnl = compute_pnl(won, trade.size, trade.entry_price)

        trade.resolved = True
        trade.won = won
        trade.pnl = pnl
        trade.settle_price = final_price

        if won:
            self._wins += 1
        else:
            self._losses += 1
        self._total_pnl += pnl

        if self.mode is TradeMode.PAPER:
            self.risk.credit(trade.size + pnl)
            self.risk.apply_daily_pnl(trade.id, pnl, day)
        elif won:
            self.risk.apply_daily_pnl(f"{trade.id}:settle", trade.size, day)

        logger.info(
            f"[{self.mode.value.upper()}] Settled {trade.market_id} {trade.side.value} "
            f"{'WON' if won else 'LOST'} | PnL: {'+' if pnl >= 0 else ''}{pnl:.4f} | "
            f"final={final_price:.2f} ptb={trade.price_to_beat:.2f}"
        )

        self._feed_back(trade, won, pnl)
        self._persist(trade)

        if self.on_trade_resolved:
            self.on_trade_resolved(trade)

        return SettledTrade(
            trade_id=trade.id,
            market_id=trade.market_id,
            side=trade.side,
            won=won,
            pnl=pnl,
            settle_price=final_price,
        )

    def _feed_back(self, trade: PendingTrade, won: bool, pnl: Decimal) -> None:
        metadata = self.metadata_store.take(trade.id)
        if metadata is None:
            logger.debug(f"No signal metadata for {trade.id}, skipping feedback")
            return

        self.performance_tracker.record_trade(TradeOutcome(
            market_id=trade.market_id,
            won=won,
            edge=metadata.edge,
            confidence=metadata.confidence,
            phase=metadata.phase,
            regime=metadata.regime,
            timestamp=datetime.now(),
        ))
        self.signal_quality.record_outcome(metadata.features, won=won, pnl=float(pnl))

    def _persist(self, trade: PendingTrade) -> None:
        if self.persist_trade is None:
            return
        try:
            self.persist_trade(trade)
        except Exception as e:
            logger.warning(f"Failed to persist settled trade {trade.id}: {e}")

    def cleanup_stale(self, current_window_start_ms: int) -> int:
        """Drop unresolved trades older than the stale horizon; returns how many."""
        timeout_ms = self.window_minutes * 60_000 * self.risk_config.stale_after_windows
        kept = []
        dropped = 0

        for trade in self._trades:
            age = current_window_start_ms - trade.window_start_ms
            if not trade.resolved and age > timeout_ms:
                logger.warning(
                    f"[{self.mode.value.upper()}] Stale trade dropped from local tracking: "
                    f"{trade.market_id} {trade.side.value} id={trade.id[:16]} (age: {age / 60_000:.0f}min)"
                )
                dropped += 1
            else:
                kept.append(trade)

        if dropped:
            self._trades = kept
            logger.warning(f"[{self.mode.value.upper()}] Dropped {dropped} stale trade(s)")
        return dropped

    def can_trade(self, size: Decimal) -> Tuple[bool, Optional[str]]:
        return self.risk.can_trade(Decimal(str(size)))

    # =========================================================================
    # Stats
    # =========================================================================

    @property
    def trades(self) -> List[PendingTrade]:
        return list(self._trades)

    def pending_trades(self) -> List[PendingTrade]:
        return [t for t in self._trades if not t.resolved]

    def get_stats(self) -> SettlementStats:
        resolved = self._wins + self._losses
        return SettlementStats(
            total_trades=len(self._trades),
            wins=self._wins,
            losses=self._losses,
            pending=len(self.pending_trades()),
            win_rate=self._wins / resolved if resolved else 0.0,
            total_pnl=self._total_pnl,
        )

    def get_market_breakdown(self) -> Dict[str, Dict[str, Any]]:
        breakdown: Dict[str, Dict[str, Any]] = {}
        for trade in self._trades:
            row = breakdown.setdefault(
                trade.market_id,
                {"wins": 0, "losses": 0, "pending": 0, "pnl": Decimal("0")},
            )
            if not trade.resolved:
                row["pending"] += 1
            elif trade.won:
                row["wins"] += 1
                row["pnl"] += trade.pnl
            else:
                row["losses"] += 1
                row["pnl"] += trade.pnl

        for row in breakdown.values():
            resolved = row["wins"] + row["losses"]
            row["win_rate"] = row["wins"] / resolved if resolved else 0.0
        return breakdown

    def export_state(self) -> Dict[str, Any]:
        stats = self.get_stats()
        return {
            "mode": self.mode.value,
            "stats": {
                "total_trades": stats.total_trades,
                "wins": stats.wins,
                "losses": stats.losses,
                "pending": stats.pending,
                "win_rate": stats.win_rate,
                "total_pnl": str(stats.total_pnl),
            },
            "risk": self.risk.get_risk_summary(),
            "markets": {
                market_id: {k: str(v) if isinstance(v, Decimal) else v for k, v in row.items()}
                for market_id, row in self.get_market_breakdown().items()
            },
            "trades": [t.to_dict() for t in self._trades[-200:]],
        }
