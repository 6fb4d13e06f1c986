"""
Signal Quality Model
Nearest-neighbour estimate of how often signals like this one have won.

Each settled signal is stored with its entry features. A new signal is
compared against the market's own history (or the global history when the
market has fewer than 10 samples) and the top-k neighbours vote, weighted
by squared similarity.
"""
import math
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Deque, Dict, List, Optional

from loguru import logger

from updown_bot.core.strategy_brain.math_utils import clamp
from updown_bot.models import Phase, SignalFeatures

_UNSET = object()


@dataclass
class HistoricalSignal:
    features: SignalFeatures
    won: bool
    pnl: float
    timestamp: datetime


@dataclass
class SignalQualityResult:
    predicted_win_rate: float
    sample_size: int
    avg_similarity: float
    confidence: str            # HIGH / MEDIUM / LOW / INSUFFICIENT


@dataclass
class GroupPerformance:
    count: int
    win_rate: float
    avg_edge: float
    avg_pnl: float


def _sq(value: float) -> float:
    return value * value


def compute_similarity(current: SignalFeatures, past: SignalFeatures) -> float:
    dist = 0.0
    dist += _sq((current.edge - past.edge) * 5)
    dist += _sq((current.confidence - past.confidence) * 2)
    dist += _sq(((current.volatility or 0.0) - (past.volatility or 0.0)) * 100)
    dist += _sq(((current.model_up or 0.5) - (past.model_up or 0.5)) * 3)

    if current.rsi is not None and past.rsi is not None:
        dist += _sq((current.rsi - past.rsi) / 100 * 2)
    if current.vwap_slope is not None and past.vwap_slope is not None:
        dist += _sq((current.vwap_slope - past.vwap_slope) * 10)

    if current.phase is not past.phase:
        dist += 1.0
    if current.regime is not past.regime:
        dist += 0.5
    if current.market_id != past.market_id:
        dist += 0.3

    return 1 / (1 + math.sqrt(dist))


def _classify(sample_size: int, avg_similarity: float) -> str:
    if sample_size >= 20 and avg_similarity >= 0.7:
        return "HIGH"
    if sample_size >= 15 and avg_similarity >= 0.55:
        return "MEDIUM"
    return "LOW"


class SignalQualityModel:
    """
    Bounded k-NN memory of settled signals.

    Features:
    - Per-market pools capped at max_per_market
    - Global pool capped at max_total
    - Group win-rate breakdowns by market / regime / phase
    """

    def __init__(
        self,
        max_per_market: int = 500,
        max_total: int = 2000,
        min_samples: int = 10,
    ):
        self.max_per_market = max(1, max_per_market)
        self.max_total = max(1, max_total)
        self.min_samples = min_samples

        self._history: Deque[HistoricalSignal] = deque()
        self._by_market: Dict[str, Deque[HistoricalSignal]] = {}

        logger.info(
            f"Initialized Signal Quality Model "
            f"(per_market={self.max_per_market}, total={self.max_total})"
        )

    def record_outcome(
        self,
        features: SignalFeatures,
        won: bool,
        pnl: float = 0.0,
        timestamp: Optional[datetime] = None,
    ) -> None:
        signal = HistoricalSignal(
            features=features,
            won=won,
            pnl=pnl,
            timestamp=timestamp or datetime.now(),
        )
        market_id = features.market_id or ""

        self._history.append(signal)
        bucket = self._by_market.setdefault(market_id, deque())
        bucket.append(signal)

        while len(bucket) > self.max_per_market:
            removed = bucket.popleft()
            self._history.remove(removed)

        while len(self._history) > self.max_total:
            removed = self._history.popleft()
            owner = self._by_market.get(removed.features.market_id or "")
            if owner is None:
                continue
            owner.remove(removed)
            if not owner:
                del self._by_market[removed.features.market_id or ""]

    def predict_win_rate(self, features: SignalFeatures, k: int = 20) -> SignalQualityResult:
        market_pool = self._by_market.get(features.market_id or "", ())
        pool = market_pool if len(market_pool) >= self.min_samples else self._history

        if len(pool) < self.min_samples:
            return SignalQualityResult(
                predicted_win_rate=0.5,
                sample_size=len(pool),
                avg_similarity=0.0,
                confidence="INSUFFICIENT",
            )

        top_k = min(max(1, int(k)), len(pool))
        neighbours = sorted(
            ((compute_similarity(features, s.features), s) for s in pool),
            key=lambda pair: pair[0],
            reverse=True,
        )[:top_k]

        weighted_wins = 0.0
        total_weight = 0.0
        similarity_sum = 0.0
        for similarity, signal in neighbours:
            weight = similarity ** 2
            weighted_wins += weight if signal.won else 0.0
            total_weight += weight
            similarity_sum += similarity

        win_rate = weighted_wins / total_weight if total_weight > 0 else 0.5
        avg_similarity = similarity_sum / len(neighbours)

        return SignalQualityResult(
            predicted_win_rate=clamp(win_rate, 0.0, 1.0),
            sample_size=len(neighbours),
            avg_similarity=clamp(avg_similarity, 0.0, 1.0),
            confidence=_classify(len(neighbours), avg_similarity),
        )

    def performance_by_group(
        self,
        market_id: Optional[str] = None,
        regime=_UNSET,
        phase: Optional[Phase] = None,
    ) -> Optional[GroupPerformance]:
        """
        Win rate for a slice of the history; None below 5 samples.

        `regime` may be passed as None to select signals taken without a
        regime classification.
        """
        selected: List[HistoricalSignal] = []
        for signal in self._history:
            f = signal.features
            if market_id is not None and f.market_id != market_id:
                continue
            if regime is not _UNSET and f.regime is not regime:
                continue
            if phase is not None and f.phase is not phase:
                continue
            selected.append(signal)

        if len(selected) < 5:
            return None

        n = len(selected)
        return GroupPerformance(
            count=n,
            win_rate=sum(1 for s in selected if s.won) / n,
            avg_edge=sum(s.features.edge for s in selected) / n,
            avg_pnl=sum(s.pnl for s in selected) / n,
        )

    @property
    def history_size(self) -> int:
        return len(self._history)

    def market_history_size(self, market_id: str) -> int:
        return len(self._by_market.get(market_id, ()))
