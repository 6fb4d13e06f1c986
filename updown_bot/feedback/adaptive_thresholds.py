"""
Adaptive Threshold Manager
Tightens or relaxes the entry thresholds for a market from its recent
settled results.

  recent win rate < 0.45   edge ×1.5, min-prob +0.05, min-confidence +0.10
  0.45 – 0.50              edge ×1.2, min-prob +0.02
  0.50 – 0.55              unchanged
  0.55 – 0.60              edge ×0.9
  > 0.60                   edge ×0.8
  declining / improving    edge ×1.1 / ×0.95
  CHOP regime              edge ×1.2
  LATE phase               edge ×1.1

Markets without enough history are treated as a 0.50 win rate with a
stable trend; the regime and phase multipliers still apply.
"""
from typing import Optional

from loguru import logger

from updown_bot.core.strategy_brain.math_utils import clamp
from updown_bot.models import AdjustedThresholds, Phase, Regime
from updown_bot.monitoring.performance_tracker import MarketPerformanceTracker

EDGE_BOUNDS = (0.03, 0.25)
MIN_PROB_BOUNDS = (0.5, 0.7)
MIN_CONFIDENCE_BOUNDS = (0.4, 0.8)


class AdaptiveThresholdManager:
    def __init__(self, tracker: MarketPerformanceTracker):
        self.tracker = tracker
        logger.info("Initialized Adaptive Threshold Manager")

    def get_adjusted_thresholds(
        self,
        market_id: str,
        base_edge_threshold: float,
        base_min_prob: float,
        base_min_confidence: float,
        phase: Phase,
        regime: Optional[Regime] = None,
    ) -> AdjustedThresholds:
        snapshot = self.tracker.get_snapshot(market_id)
        win_rate = snapshot.recent_win_rate if snapshot else 0.5
        trend = snapshot.trend if snapshot else "stable"

        edge_mult = 1.0
        prob_delta = 0.0
        conf_delta = 0.0

        if win_rate < 0.45:
            edge_mult *= 1.5
            prob_delta += 0.05
            conf_delta += 0.10
        elif win_rate < 0.50:
            edge_mult *= 1.2
            prob_delta += 0.02
        elif win_rate <= 0.55:
            pass
        elif win_rate <= 0.60:
            edge_mult *= 0.9
        else:
            edge_mult *= 0.8

        if trend == "declining":
            edge_mult *= 1.1
        elif trend == "improving":
            edge_mult *= 0.95

        if regime is Regime.CHOP:
            edge_mult *= 1.2

        if phase is Phase.LATE:
            edge_mult *= 1.1

        thresholds = AdjustedThresholds(
            edge_threshold=clamp(base_edge_threshold * edge_mult, *EDGE_BOUNDS),
            min_prob=clamp(base_min_prob + prob_delta, *MIN_PROB_BOUNDS),
            min_confidence=clamp(base_min_confidence + conf_delta, *MIN_CONFIDENCE_BOUNDS),
            reason=(
                f"wr={win_rate:.2f}_trend={trend}"
                f"_regime={regime.value if regime else 'NONE'}_phase={phase.value}"
            ),
        )
        logger.debug(
            f"Thresholds [{market_id}] edge={thresholds.edge_threshold:.3f} "
            f"prob={thresholds.min_prob:.2f} conf={thresholds.min_confidence:.2f} ({thresholds.reason})"
        )
        return thresholds
