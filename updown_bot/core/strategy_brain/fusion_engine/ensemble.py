"""
Ensemble Composer
Combines the vol-implied, TA, blended and signal-quality probabilities with
regime-aware weights.
"""
import math
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from loguru import logger

from updown_bot.core.strategy_brain.math_utils import clamp
from updown_bot.models import EnsembleResult, ModelPrediction, Regime

MAX_VOL_BOOST = 1.3


def compute_agreement(models: List[ModelPrediction]) -> float:
    probs = [m.prob_up for m in models if m.available]
    if len(probs) <= 1:
        return 1.0
    mean = sum(probs) / len(probs)
    variance = sum((p - mean) ** 2 for p in probs) / len(probs)
    return clamp(1 - math.sqrt(variance) * 2, 0.0, 1.0)


class EnsembleComposer:
    """
    Weighted ensemble over the available probability models.

    Boosts:
    - vol_implied ×1.2 in trends, ×1.1 more in high volatility (capped ×1.3)
    - signal_quality ×1.3 in CHOP, otherwise ×1.2 at HIGH confidence
    """

    def __init__(
        self,
        weights: Optional[Dict[str, float]] = None,
        signal_quality_weights: Optional[Dict[str, float]] = None,
        high_volatility_level: float = 0.008,
        imbalance_nudge: float = 0.01,
    ):
        self.weights = dict(weights or {"vol_implied": 0.35, "ta_score": 0.30, "blended": 0.35})
        self.signal_quality_weights = dict(
            signal_quality_weights or {"HIGH": 0.35, "MEDIUM": 0.20, "LOW": 0.10}
        )
        self.high_volatility_level = high_volatility_level
        self.imbalance_nudge = imbalance_nudge

        self._history: Deque[EnsembleResult] = deque(maxlen=100)
        self._compositions = 0

        logger.info("Initialized Ensemble Composer")
        logger.info(f"Weights: {self.weights} | signal quality: {self.signal_quality_weights}")

    def set_weight(self, model_name: str, weight: float) -> None:
        if not 0.0 <= weight <= 1.0:
            raise ValueError("Weight must be between 0.0 and 1.0")
        self.weights[model_name] = weight
        logger.info(f"Set ensemble weight for {model_name}: {weight:.2f}")

    def compose(
        self,
        vol_implied_up: Optional[float],
        ta_raw_up: float,
        blended_up: float,
        blend_source: str,
        signal_quality_win_rate: Optional[float] = None,
        signal_quality_confidence: str = "INSUFFICIENT",
        regime: Optional[Regime] = None,
        volatility: Optional[float] = None,
        orderbook_imbalance: Optional[float] = None,
    ) -> EnsembleResult:
        sq_available = (
            signal_quality_win_rate is not None
            and signal_quality_confidence in self.signal_quality_weights
        )
        models = [
            ModelPrediction(
                name="vol_implied",
                prob_up=clamp(vol_implied_up if vol_implied_up is not None else 0.5, 0.01, 0.99),
                weight=self.weights.get("vol_implied", 0.0) if vol_implied_up is not None else 0.0,
                available=vol_implied_up is not None,
            ),
            ModelPrediction(
                name="ta_score",
                prob_up=clamp(ta_raw_up, 0.01, 0.99),
                weight=self.weights.get("ta_score", 0.0),
            ),
            ModelPrediction(
                name="blended",
                prob_up=clamp(blended_up, 0.01, 0.99),
                weight=0.0 if blend_source == "ta_only" else self.weights.get("blended", 0.0),
                available=blend_source != "ta_only",
            ),
            ModelPrediction(
                name="signal_quality",
                prob_up=clamp(signal_quality_win_rate if sq_available else 0.5, 0.01, 0.99),
                weight=self.signal_quality_weights.get(signal_quality_confidence, 0.0) if sq_available else 0.0,
                available=sq_available,
            ),
        ]

        for model in models:
            if not model.available or model.weight <= 0:
                continue
            if model.name == "vol_implied":
                boost = 1.0
                if regime is not None and regime.is_trend:
                    boost *= 1.2
                if volatility is not None and volatility > self.high_volatility_level:
                    boost *= 1.1
                model.weight *= min(boost, MAX_VOL_BOOST)
            elif model.name == "signal_quality":
                if regime is Regime.CHOP:
                    model.weight *= 1.3
                elif signal_quality_confidence == "HIGH":
                    model.weight *= 1.2

        total_weight = sum(m.weight for m in models if m.available)
        if total_weight <= 0:
            fallback = clamp(ta_raw_up, 0.01, 0.99)
            return self._record(EnsembleResult(
                final_up=fallback,
                final_down=1 - fallback,
                models=models,
                agreement=compute_agreement(models),
                dominant_model="ta_score",
            ))

        final_up = 0.0
        for model in models:
            if not model.available:
                continue
            model.weight = model.weight / total_weight
            final_up += model.prob_up * model.weight

        if orderbook_imbalance is not None and abs(orderbook_imbalance) > 0.3:
            final_up += self.imbalance_nudge if orderbook_imbalance > 0 else -self.imbalance_nudge

        final_up = clamp(final_up, 0.01, 0.99)
        dominant = max(models, key=lambda m: m.weight if m.available else -1.0)

        return self._record(EnsembleResult(
            final_up=final_up,
            final_down=1 - final_up,
            models=models,
            agreement=compute_agreement(models),
            dominant_model=dominant.name,
        ))

    def _record(self, result: EnsembleResult) -> EnsembleResult:
        self._compositions += 1
        self._history.append(result)
        logger.debug(
            f"Ensemble → up={result.final_up:.3f} "
            f"(dominant={result.dominant_model}, agreement={result.agreement:.2f})"
        )
        return result

    def get_statistics(self) -> Dict[str, Any]:
        recent = list(self._history)[-20:]
        if not recent:
            return {"total_compositions": self._compositions, "avg_agreement": 0.0}
        return {
            "total_compositions": self._compositions,
            "avg_agreement": sum(r.agreement for r in recent) / len(recent),
            "weights": dict(self.weights),
        }
