"""
Centralized Configuration
All tuning constants loaded from environment variables with sensible defaults.
Change behaviour without touching code, just update your .env file.
"""
import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, FrozenSet
from dotenv import load_dotenv

load_dotenv()


def _env_list(name: str, default: str = "") -> FrozenSet[str]:
    raw = os.getenv(name, default)
    return frozenset(item.strip().upper() for item in raw.split(",") if item.strip())


# =============================================================================
# Market Timing
# =============================================================================
WINDOW_MINUTES = int(os.getenv("WINDOW_MINUTES", "15"))                    # 15-min markets
MIN_TIME_LEFT_MINUTES = float(os.getenv("MIN_TIME_LEFT_MINUTES", "3"))      # No entries below this
PHASE_EARLY_ABOVE_MINUTES = float(os.getenv("PHASE_EARLY_ABOVE_MINUTES", "10"))
PHASE_MID_ABOVE_MINUTES = float(os.getenv("PHASE_MID_ABOVE_MINUTES", "5"))

# =============================================================================
# Indicators
# =============================================================================
VWAP_SLOPE_LOOKBACK = int(os.getenv("VWAP_SLOPE_LOOKBACK", "5"))
RSI_PERIOD = int(os.getenv("RSI_PERIOD", "14"))
MACD_FAST = int(os.getenv("MACD_FAST", "12"))
MACD_SLOW = int(os.getenv("MACD_SLOW", "26"))
MACD_SIGNAL = int(os.getenv("MACD_SIGNAL", "9"))
VWAP_CROSS_LOOKBACK = int(os.getenv("VWAP_CROSS_LOOKBACK", "20"))
VOLATILITY_LOOKBACK = int(os.getenv("VOLATILITY_LOOKBACK", "60"))          # 1-min log returns

# =============================================================================
# Probability Blend
# =============================================================================
BLEND_WEIGHT_VOL = float(os.getenv("BLEND_WEIGHT_VOL", "0.50"))
BLEND_WEIGHT_TA = float(os.getenv("BLEND_WEIGHT_TA", "0.50"))
LEAD_SIGNAL_THRESHOLD = float(os.getenv("LEAD_SIGNAL_THRESHOLD", "0.001"))   # Spot vs oracle delta
LEAD_SIGNAL_MAX_ADJ = float(os.getenv("LEAD_SIGNAL_MAX_ADJ", "0.02"))
BOOK_IMBALANCE_THRESHOLD = float(os.getenv("BOOK_IMBALANCE_THRESHOLD", "0.20"))
BOOK_IMBALANCE_MAX_ADJ = float(os.getenv("BOOK_IMBALANCE_MAX_ADJ", "0.02"))

# =============================================================================
# Ensemble Weights (renormalized over available models)
# =============================================================================
ENSEMBLE_WEIGHTS = {
    "vol_implied": float(os.getenv("ENSEMBLE_WEIGHT_VOL", "0.35")),
    "ta_score":    float(os.getenv("ENSEMBLE_WEIGHT_TA", "0.30")),
    "blended":     float(os.getenv("ENSEMBLE_WEIGHT_BLENDED", "0.35")),
}
SIGNAL_QUALITY_WEIGHTS = {
    "HIGH":   float(os.getenv("SQ_WEIGHT_HIGH", "0.35")),
    "MEDIUM": float(os.getenv("SQ_WEIGHT_MEDIUM", "0.20")),
    "LOW":    float(os.getenv("SQ_WEIGHT_LOW", "0.10")),
}
ENSEMBLE_IMBALANCE_NUDGE = float(os.getenv("ENSEMBLE_IMBALANCE_NUDGE", "0.01"))
HIGH_VOLATILITY_LEVEL = float(os.getenv("HIGH_VOLATILITY_LEVEL", "0.008"))

# =============================================================================
# Edge, Fees & Arbitrage
# =============================================================================
MAX_VIG = float(os.getenv("MAX_VIG", "0.03"))                               # Block when up+down > 1.03
SLIPPAGE_IMBALANCE_THRESHOLD = float(os.getenv("SLIPPAGE_IMBALANCE_THRESHOLD", "0.20"))
SLIPPAGE_PER_IMBALANCE = float(os.getenv("SLIPPAGE_PER_IMBALANCE", "0.02"))
SPREAD_PENALTY_FREE = float(os.getenv("SPREAD_PENALTY_FREE", "0.02"))
SPREAD_PENALTY_FACTOR = float(os.getenv("SPREAD_PENALTY_FACTOR", "0.5"))
FEE_RATE = float(os.getenv("FEE_RATE", "0.25"))
FEE_EXPONENT = int(os.getenv("FEE_EXPONENT", "2"))
ARB_MIN_SPREAD = float(os.getenv("ARB_MIN_SPREAD", "0.02"))
ARB_MAX_BOOST = float(os.getenv("ARB_MAX_BOOST", "0.03"))
ARB_DELTA_SCALE = float(os.getenv("ARB_DELTA_SCALE", "10"))                 # Cross-feed delta → prob

# =============================================================================
# Decision Gates
# =============================================================================
EDGE_THRESHOLDS = {
    "EARLY": float(os.getenv("EDGE_THRESHOLD_EARLY", "0.08")),
    "MID":   float(os.getenv("EDGE_THRESHOLD_MID", "0.10")),
    "LATE":  float(os.getenv("EDGE_THRESHOLD_LATE", "0.12")),
}
MIN_PROBS = {
    "EARLY": float(os.getenv("MIN_PROB_EARLY", "0.58")),
    "MID":   float(os.getenv("MIN_PROB_MID", "0.60")),
    "LATE":  float(os.getenv("MIN_PROB_LATE", "0.70")),
}
MIN_CONFIDENCE = float(os.getenv("MIN_CONFIDENCE", "0.50"))
MIN_TRADE_QUALITY = float(os.getenv("MIN_TRADE_QUALITY", "0.55"))
MIN_VOLATILITY = float(os.getenv("MIN_VOLATILITY", "0.0005"))
MAX_VOLATILITY = float(os.getenv("MAX_VOLATILITY", "0.02"))
EDGE_SOFT_CAP = float(os.getenv("EDGE_SOFT_CAP", "0.22"))
EDGE_HARD_CAP = float(os.getenv("EDGE_HARD_CAP", "0.30"))
REGIME_MULTIPLIERS = {
    "CHOP":          float(os.getenv("REGIME_MULT_CHOP", "1.0")),
    "RANGE":         float(os.getenv("REGIME_MULT_RANGE", "1.0")),
    "TREND_ALIGNED": float(os.getenv("REGIME_MULT_TREND_ALIGNED", "0.9")),
    "TREND_OPPOSED": float(os.getenv("REGIME_MULT_TREND_OPPOSED", "1.3")),
}
SKIP_MARKETS = _env_list("SKIP_MARKETS")
CHOP_DISABLED_MARKETS = _env_list("CHOP_DISABLED_MARKETS", "BTC")

# =============================================================================
# Order Strategy
# =============================================================================
LATE_FOK_MIN_CONFIDENCE = float(os.getenv("LATE_FOK_MIN_CONFIDENCE", "0.70"))
MAKER_REBATE = float(os.getenv("MAKER_REBATE", "0.20"))
LIMIT_DISCOUNT = float(os.getenv("LIMIT_DISCOUNT", "0.05"))

# =============================================================================
# Regime Detector
# =============================================================================
REGIME_LOW_VOLUME_RATIO = float(os.getenv("REGIME_LOW_VOLUME_RATIO", "0.6"))
REGIME_FLAT_DISTANCE = float(os.getenv("REGIME_FLAT_DISTANCE", "0.001"))
REGIME_CHOP_CROSS_COUNT = int(os.getenv("REGIME_CHOP_CROSS_COUNT", "3"))
REGIME_HISTORY_SIZE = int(os.getenv("REGIME_HISTORY_SIZE", "100"))
REGIME_CONFIRM_TICKS = int(os.getenv("REGIME_CONFIRM_TICKS", "2"))
REGIME_SWITCH_CONFIDENCE = float(os.getenv("REGIME_SWITCH_CONFIDENCE", "0.55"))

# =============================================================================
# Adaptive Feedback
# =============================================================================
PERFORMANCE_WINDOW = int(os.getenv("PERFORMANCE_WINDOW", "50"))
PERFORMANCE_MIN_TRADES = int(os.getenv("PERFORMANCE_MIN_TRADES", "5"))
PERFORMANCE_RECENT_TRADES = int(os.getenv("PERFORMANCE_RECENT_TRADES", "10"))
SIGNAL_QUALITY_K = int(os.getenv("SIGNAL_QUALITY_K", "20"))
SIGNAL_QUALITY_MIN_SAMPLES = int(os.getenv("SIGNAL_QUALITY_MIN_SAMPLES", "10"))
SIGNAL_METADATA_MAX_ENTRIES = int(os.getenv("SIGNAL_METADATA_MAX_ENTRIES", "1000"))

# =============================================================================
# Settlement & Risk
# =============================================================================
PAPER_INITIAL_BALANCE = Decimal(os.getenv("PAPER_INITIAL_BALANCE", "1000"))
DAILY_MAX_LOSS = Decimal(os.getenv("DAILY_MAX_LOSS", "10"))
MAX_DRAWDOWN_FRACTION = Decimal(os.getenv("MAX_DRAWDOWN_FRACTION", "0.50"))
DAILY_PNL_KEEP_DAYS = int(os.getenv("DAILY_PNL_KEEP_DAYS", "30"))
DAILY_PNL_KEEP_IDS = int(os.getenv("DAILY_PNL_KEEP_IDS", "500"))
STALE_AFTER_WINDOWS = int(os.getenv("STALE_AFTER_WINDOWS", "2"))

# =============================================================================
# Persistence
# =============================================================================
PERFORMANCE_STATE_FILE = os.getenv("PERFORMANCE_STATE_FILE", "performance_state.json")
SETTLEMENT_STATE_FILE = os.getenv("SETTLEMENT_STATE_FILE", "settlement_state.json")


@dataclass(frozen=True)
class StrategyConfig:
    """Everything the per-tick decision path reads."""
    window_minutes: int = WINDOW_MINUTES
    min_time_left_minutes: float = MIN_TIME_LEFT_MINUTES
    phase_early_above: float = PHASE_EARLY_ABOVE_MINUTES
    phase_mid_above: float = PHASE_MID_ABOVE_MINUTES

    vwap_slope_lookback: int = VWAP_SLOPE_LOOKBACK
    rsi_period: int = RSI_PERIOD
    macd_fast: int = MACD_FAST
    macd_slow: int = MACD_SLOW
    macd_signal: int = MACD_SIGNAL
    vwap_cross_lookback: int = VWAP_CROSS_LOOKBACK
    volatility_lookback: int = VOLATILITY_LOOKBACK

    blend_weight_vol: float = BLEND_WEIGHT_VOL
    blend_weight_ta: float = BLEND_WEIGHT_TA
    lead_signal_threshold: float = LEAD_SIGNAL_THRESHOLD
    lead_signal_max_adj: float = LEAD_SIGNAL_MAX_ADJ
    book_imbalance_threshold: float = BOOK_IMBALANCE_THRESHOLD
    book_imbalance_max_adj: float = BOOK_IMBALANCE_MAX_ADJ

    ensemble_weights: Dict[str, float] = field(default_factory=lambda: dict(ENSEMBLE_WEIGHTS))
    signal_quality_weights: Dict[str, float] = field(default_factory=lambda: dict(SIGNAL_QUALITY_WEIGHTS))
    ensemble_imbalance_nudge: float = ENSEMBLE_IMBALANCE_NUDGE
    high_volatility_level: float = HIGH_VOLATILITY_LEVEL

    max_vig: float = MAX_VIG
    slippage_threshold: float = SLIPPAGE_IMBALANCE_THRESHOLD
    slippage_per_imbalance: float = SLIPPAGE_PER_IMBALANCE
    spread_free: float = SPREAD_PENALTY_FREE
    spread_factor: float = SPREAD_PENALTY_FACTOR
    arb_min_spread: float = ARB_MIN_SPREAD
    arb_max_boost: float = ARB_MAX_BOOST
    arb_delta_scale: float = ARB_DELTA_SCALE

    edge_thresholds: Dict[str, float] = field(default_factory=lambda: dict(EDGE_THRESHOLDS))
    min_probs: Dict[str, float] = field(default_factory=lambda: dict(MIN_PROBS))
    min_confidence: float = MIN_CONFIDENCE
    min_trade_quality: float = MIN_TRADE_QUALITY
    min_volatility: float = MIN_VOLATILITY
    max_volatility: float = MAX_VOLATILITY
    edge_soft_cap: float = EDGE_SOFT_CAP
    edge_hard_cap: float = EDGE_HARD_CAP
    regime_multipliers: Dict[str, float] = field(default_factory=lambda: dict(REGIME_MULTIPLIERS))
    skip_markets: FrozenSet[str] = SKIP_MARKETS
    chop_disabled_markets: FrozenSet[str] = CHOP_DISABLED_MARKETS

    late_fok_min_confidence: float = LATE_FOK_MIN_CONFIDENCE
    maker_rebate: float = MAKER_REBATE
    limit_discount: float = LIMIT_DISCOUNT


@dataclass(frozen=True)
class RegimeThresholds:
    """Cut-offs used by the regime detector."""
    low_volume_ratio: float = REGIME_LOW_VOLUME_RATIO
    flat_distance: float = REGIME_FLAT_DISTANCE
    chop_cross_count: int = REGIME_CHOP_CROSS_COUNT
    history_size: int = REGIME_HISTORY_SIZE
    confirm_ticks: int = REGIME_CONFIRM_TICKS
    switch_confidence: float = REGIME_SWITCH_CONFIDENCE


@dataclass(frozen=True)
class RiskConfig:
    """Account limits applied by the settlement engines."""
    initial_balance: Decimal = PAPER_INITIAL_BALANCE
    daily_max_loss: Decimal = DAILY_MAX_LOSS
    max_drawdown_fraction: Decimal = MAX_DRAWDOWN_FRACTION
    daily_pnl_keep_days: int = DAILY_PNL_KEEP_DAYS
    daily_pnl_keep_ids: int = DAILY_PNL_KEEP_IDS
    stale_after_windows: int = STALE_AFTER_WINDOWS


def load_strategy_config() -> StrategyConfig:
    return StrategyConfig()


def load_regime_thresholds() -> RegimeThresholds:
    return RegimeThresholds()


def load_risk_config() -> RiskConfig:
    return RiskConfig()
