"""
Data models for the Up/Down decision engine.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional


class Side(Enum):
    UP = "UP"
    DOWN = "DOWN"


class Phase(Enum):
    EARLY = "EARLY"
    MID = "MID"
    LATE = "LATE"


class Regime(Enum):
    TREND_UP = "TREND_UP"
    TREND_DOWN = "TREND_DOWN"
    RANGE = "RANGE"
    CHOP = "CHOP"

    @property
    def is_trend(self) -> bool:
        return self in (Regime.TREND_UP, Regime.TREND_DOWN)


class Action(Enum):
    ENTER = "ENTER"
    NO_TRADE = "NO_TRADE"


class Strength(Enum):
    STRONG = "STRONG"
    GOOD = "GOOD"
    OPTIONAL = "OPTIONAL"


class ConfidenceLevel(Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class TradeMode(Enum):
    PAPER = "paper"
    LIVE = "live"


class OrderType(Enum):
    FOK = "FOK"
    GTD_POST_ONLY = "GTD_POST_ONLY"


# =============================================================================
# Inputs
# =============================================================================

@dataclass
class Candle:
    """One-minute OHLCV bar from the spot exchange feed."""
    open_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass
class OrderBookSummary:
    """Top-of-book summary for one outcome token."""
    best_bid: Optional[float] = None
    best_ask: Optional[float] = None
    bid_liquidity: float = 0.0
    ask_liquidity: float = 0.0

    @property
    def spread(self) -> Optional[float]:
        if self.best_bid is None or self.best_ask is None:
            return None
        return self.best_ask - self.best_bid


@dataclass
class MarketTick:
    """Everything the pipeline consumes for one market on one tick."""
    market_id: str
    window_start_ms: int
    candles: List[Candle]
    time_left_min: float
    oracle_price: Optional[float] = None
    spot_price: Optional[float] = None
    price_to_beat: Optional[float] = None
    market_up: Optional[float] = None
    market_down: Optional[float] = None
    book_up: Optional[OrderBookSummary] = None
    book_down: Optional[OrderBookSummary] = None


# =============================================================================
# Intermediate results
# =============================================================================

@dataclass
class ScoreResult:
    up_score: int
    down_score: int
    raw_up: float


@dataclass
class BlendResult:
    blended_up: float
    blended_down: float
    source: str                  # "blended" or "ta_only"
    lead_adjustment: float = 0.0
    book_adjustment: float = 0.0


@dataclass
class RegimeResult:
    regime: Regime
    reason: str


@dataclass
class EnhancedRegimeResult:
    regime: Regime
    reason: str
    confidence: float
    raw_regime: Regime
    transition_probabilities: Dict[str, float] = field(default_factory=dict)


@dataclass
class ModelPrediction:
    name: str
    prob_up: float
    weight: float
    available: bool = True


@dataclass
class EnsembleResult:
    final_up: float
    final_down: float
    models: List[ModelPrediction]
    agreement: float
    dominant_model: Optional[str]


@dataclass
class ArbitrageOpportunity:
    detected: bool
    direction: Optional[str] = None       # "BUY_UP" / "BUY_DOWN"
    spread: float = 0.0
    confidence: float = 0.0


@dataclass
class EdgeResult:
    market_up: Optional[float]
    market_down: Optional[float]
    edge_up: Optional[float]
    edge_down: Optional[float]
    effective_edge_up: Optional[float] = None
    effective_edge_down: Optional[float] = None
    raw_sum: Optional[float] = None
    arbitrage: bool = False
    arbitrage_detected: bool = False
    arbitrage_direction: Optional[str] = None
    overpriced: bool = False
    vig_too_high: bool = False
    fee_estimate_up: Optional[float] = None
    fee_estimate_down: Optional[float] = None


@dataclass
class ConfidenceResult:
    score: float
    factors: Dict[str, float]
    level: ConfidenceLevel


@dataclass(frozen=True)
class TradeDecision:
    action: Action
    phase: Phase
    reason: str
    side: Optional[Side] = None
    regime: Optional[Regime] = None
    strength: Optional[Strength] = None
    edge: Optional[float] = None
    confidence: Optional[ConfidenceResult] = None
    trade_quality: Optional[float] = None

    @property
    def should_enter(self) -> bool:
        return self.action is Action.ENTER


@dataclass
class AdjustedThresholds:
    edge_threshold: float
    min_prob: float
    min_confidence: float
    reason: str


@dataclass
class PerformanceSnapshot:
    total_trades: int
    wins: int
    current_win_rate: float
    recent_win_rate: float
    trend: str                   # improving / stable / declining
    avg_edge: float
    avg_confidence: float


@dataclass
class OrderStrategyResult:
    order_type: OrderType
    maker_rebate: float
    expected_fee: float
    reason: str


@dataclass
class PriceOptimization:
    buy_price: float
    improvement: float
    reason: str


# =============================================================================
# Feedback & settlement records
# =============================================================================

@dataclass
class SignalFeatures:
    """Feature snapshot used for similarity search."""
    edge: float
    confidence: float
    volatility: Optional[float] = None
    model_up: Optional[float] = None
    rsi: Optional[float] = None
    vwap_slope: Optional[float] = None
    orderbook_imbalance: Optional[float] = None
    phase: Optional[Phase] = None
    regime: Optional[Regime] = None
    market_id: Optional[str] = None


@dataclass
class SignalMetadata:
    """What the engine believed at entry, consumed once at settlement."""
    market_id: str
    side: Side
    edge: float
    confidence: float
    phase: Phase
    regime: Optional[Regime]
    features: SignalFeatures


@dataclass
class TradeOutcome:
    market_id: str
    won: bool
    edge: float
    confidence: float
    phase: Optional[Phase] = None
    regime: Optional[Regime] = None
    timestamp: Optional[datetime] = None


@dataclass
class PendingTrade:
    id: str
    market_id: str
    window_start_ms: int
    side: Side
    entry_price: Decimal
    size: Decimal
    price_to_beat: Optional[float]
    mode: TradeMode = TradeMode.PAPER
    current_price_at_entry: Optional[float] = None
    timestamp: datetime = field(default_factory=datetime.now)
    resolved: bool = False
    won: Optional[bool] = None
    pnl: Optional[Decimal] = None
    settle_price: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'market_id': self.market_id,
            'window_start_ms': self.window_start_ms,
            'side': self.side.value,
            'entry_price': str(self.entry_price),
            'size': str(self.size),
            'price_to_beat': self.price_to_beat,
            'mode': self.mode.value,
            'current_price_at_entry': self.current_price_at_entry,
            'timestamp': self.timestamp.isoformat(),
            'resolved': self.resolved,
            'won': self.won,
            'pnl': str(self.pnl) if self.pnl is not None else None,
            'settle_price': self.settle_price,
        }


@dataclass
class TickEvaluation:
    """One market's pipeline output for one tick."""
    market_id: str
    window_start_ms: int
    decision: TradeDecision
    price_to_beat: Optional[float] = None
    current_price: Optional[float] = None
    regime: Optional[EnhancedRegimeResult] = None
    ensemble: Optional[EnsembleResult] = None
    edge: Optional[EdgeResult] = None
    thresholds: Optional[AdjustedThresholds] = None
    features: Optional[SignalFeatures] = None
    order: Optional[OrderStrategyResult] = None
    pricing: Optional[PriceOptimization] = None
    warnings: List[str] = field(default_factory=list)
