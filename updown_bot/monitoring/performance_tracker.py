"""
Performance Tracker
Rolling per-market record of settled trades feeding the adaptive thresholds.
"""
import json
import threading
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

from loguru import logger

from updown_bot.models import Phase, PerformanceSnapshot, Regime, TradeOutcome

MIN_TRADES_FOR_SNAPSHOT = 5
RECENT_TREND_WINDOW = 10
TREND_DELTA = 0.05


class MarketPerformanceTracker:
    """
    Tracks settled outcomes per market in a bounded rolling window.

    Features:
    - Oldest trade evicted when the window is full
    - Snapshot once enough trades exist
    - One lock per market, so markets never wait on each other
    - Best-effort JSON mirror of the window
    """

    def __init__(
        self,
        rolling_window: int = 50,
        min_trades: int = MIN_TRADES_FOR_SNAPSHOT,
        recent_window: int = RECENT_TREND_WINDOW,
    ):
        """
        Initialize performance tracker.

        Args:
            rolling_window: Trades kept per market
            min_trades: Trades required before a snapshot is returned
            recent_window: Trades used for the recent win rate
        """
        if rolling_window <= 0:
            raise ValueError(f"rolling_window must be positive, got {rolling_window}")

        self.rolling_window = rolling_window
        self.min_trades = min_trades
        self.recent_window = recent_window

        self._trades: Dict[str, Deque[TradeOutcome]] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

        logger.info(
            f"Initialized Performance Tracker "
            f"(window={rolling_window}, min_trades={min_trades}, recent={recent_window})"
        )

    def _bucket(self, market_id: str):
        with self._registry_lock:
            if market_id not in self._trades:
                self._trades[market_id] = deque(maxlen=self.rolling_window)
                self._locks[market_id] = threading.Lock()
            return self._trades[market_id], self._locks[market_id]

    def _existing(self, market_id: str):
        with self._registry_lock:
            return self._trades.get(market_id), self._locks.get(market_id)

    def record_trade(self, outcome: TradeOutcome) -> None:
        trades, lock = self._bucket(outcome.market_id)
        with lock:
            trades.append(outcome)
        logger.debug(
            f"Performance [{outcome.market_id}] recorded {'WIN' if outcome.won else 'LOSS'} "
            f"({len(trades)}/{self.rolling_window})"
        )

    def trade_count(self, market_id: str) -> int:
        trades, lock = self._existing(market_id)
        if trades is None:
            return 0
        with lock:
            return len(trades)

    def get_snapshot(self, market_id: str) -> Optional[PerformanceSnapshot]:
        trades, lock = self._existing(market_id)
        if trades is None:
            return None
        with lock:
            window = list(trades)

        total = len(window)
        if total < self.min_trades:
            return None

        wins = sum(1 for t in window if t.won)
        current_win_rate = wins / total

        recent = window[-min(self.recent_window, total):]
        recent_win_rate = sum(1 for t in recent if t.won) / len(recent)

        if recent_win_rate - current_win_rate >= TREND_DELTA:
            trend = "improving"
        elif current_win_rate - recent_win_rate >= TREND_DELTA:
            trend = "declining"
        else:
            trend = "stable"

        return PerformanceSnapshot(
            total_trades=total,
            wins=wins,
            current_win_rate=current_win_rate,
            recent_win_rate=recent_win_rate,
            trend=trend,
            avg_edge=sum(t.edge for t in window) / total,
            avg_confidence=sum(t.confidence for t in window) / total,
        )

    def get_all_snapshots(self) -> Dict[str, Optional[PerformanceSnapshot]]:
        with self._registry_lock:
            markets = list(self._trades)
        return {market_id: self.get_snapshot(market_id) for market_id in markets}

    # =========================================================================
    # Persistence
    # =========================================================================

    def export_state(self) -> Dict[str, List[Dict[str, Any]]]:
        with self._registry_lock:
            markets = list(self._trades)

        state = {}
        for market_id in markets:
            trades, lock = self._existing(market_id)
            with lock:
                state[market_id] = [
                    {
                        "won": t.won,
                        "edge": t.edge,
                        "confidence": t.confidence,
                        "phase": t.phase.value if t.phase else None,
                        "regime": t.regime.value if t.regime else None,
                        "timestamp": t.timestamp.isoformat() if t.timestamp else None,
                    }
                    for t in trades
                ]
        return state

    def save_state(self, path: Path) -> bool:
        try:
            with open(path, "w") as f:
                json.dump(self.export_state(), f, indent=2)
            logger.info(f"Saved performance state to {path}")
            return True
        except (OSError, TypeError) as e:
            logger.warning(f"Failed to save performance state: {e}")
            return False

    def load_state(self, path: Path) -> int:
        """Replay a saved window; returns the number of trades restored."""
        path = Path(path)
        if not path.exists():
            return 0

        try:
            with open(path) as f:
                state = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load performance state: {e}")
            return 0

        restored = 0
        for market_id, rows in state.items():
            for row in rows:
                try:
                    self.record_trade(TradeOutcome(
                        market_id=market_id,
                        won=bool(row["won"]),
                        edge=float(row["edge"]),
                        confidence=float(row["confidence"]),
                        phase=Phase(row["phase"]) if row.get("phase") else None,
                        regime=Regime(row["regime"]) if row.get("regime") else None,
                        timestamp=datetime.fromisoformat(row["timestamp"]) if row.get("timestamp") else None,
                    ))
                    restored += 1
                except (KeyError, ValueError, TypeError) as e:
                    logger.warning(f"Skipping malformed performance row for {market_id}: {e}")

        logger.info(f"Loaded {restored} trades from {path}")
        return restored
