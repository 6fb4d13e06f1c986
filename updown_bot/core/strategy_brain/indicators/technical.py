"""
Technical Indicators
Candle-derived features consumed by the TA scorer and regime detector.

All functions are pure and return None when there is not enough history,
so a short candle buffer degrades the score instead of raising.
"""
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from updown_bot.models import Candle


@dataclass
class MacdResult:
    macd: float
    signal: float
    hist: float
    hist_delta: Optional[float]


@dataclass
class HeikenAshiCandle:
    open: float
    high: float
    low: float
    close: float

    @property
    def is_green(self) -> bool:
        return self.close >= self.open


@dataclass
class IndicatorSnapshot:
    """Everything computed from one candle buffer."""
    last_close: Optional[float]
    vwap: Optional[float]
    vwap_slope: Optional[float]
    rsi: Optional[float]
    rsi_slope: Optional[float]
    macd: Optional[MacdResult]
    heiken_color: Optional[str]
    heiken_count: int
    vwap_cross_count: Optional[int]
    volume_recent: Optional[float]
    volume_avg: Optional[float]
    failed_vwap_reclaim: bool


# =============================================================================
# VWAP
# =============================================================================

def compute_vwap_series(candles: Sequence[Candle]) -> List[float]:
    """Cumulative VWAP using the typical price (h+l+c)/3; 0 until volume arrives."""
    series = []
    pv = 0.0
    volume = 0.0
    for candle in candles:
        typical = (candle.high + candle.low + candle.close) / 3
        pv += typical * candle.volume
        volume += candle.volume
        series.append(pv / volume if volume > 0 else 0.0)
    return series


def compute_vwap_slope(vwap_series: Sequence[float], lookback: int) -> Optional[float]:
    if not vwap_series or len(vwap_series) < lookback:
        return None
    return (vwap_series[-1] - vwap_series[-lookback]) / lookback


def count_vwap_crosses(
    closes: Sequence[float],
    vwap_series: Sequence[float],
    lookback: int,
) -> Optional[int]:
    if len(closes) < lookback or len(vwap_series) < lookback:
        return None

    crosses = 0
    for i in range(len(closes) - lookback + 1, len(closes)):
        prev = closes[i - 1] - vwap_series[i - 1]
        cur = closes[i] - vwap_series[i]
        if prev == 0:
            continue
        if (prev > 0 > cur) or (prev < 0 < cur):
            crosses += 1
    return crosses


# =============================================================================
# RSI
# =============================================================================

def compute_rsi(closes: Sequence[float], period: int) -> Optional[float]:
    """Simple-average RSI over the last `period` changes (100 when no losses)."""
    if len(closes) < period + 1:
        return None

    gains = 0.0
    losses = 0.0
    for i in range(len(closes) - period, len(closes)):
        diff = closes[i] - closes[i - 1]
        if diff > 0:
            gains += diff
        else:
            losses -= diff

    avg_gain = gains / period
    avg_loss = losses / period
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return max(0.0, min(100.0, 100 - 100 / (1 + rs)))


def slope_last(values: Sequence[float], points: int) -> Optional[float]:
    if points < 2 or len(values) < points:
        return None
    window = values[-points:]
    return (window[-1] - window[0]) / (points - 1)


def compute_rsi_slope(closes: Sequence[float], period: int, points: int = 3) -> Optional[float]:
    """Slope over the RSI of the last `points` prefixes of the series."""
    history = []
    for offset in range(points - 1, -1, -1):
        length = len(closes) - offset
        if length >= period + 1:
            rsi = compute_rsi(closes[:length], period)
            if rsi is not None:
                history.append(rsi)
    return slope_last(history, points)


# =============================================================================
# MACD
# =============================================================================

def _ema(values: Sequence[float], period: int) -> Optional[float]:
    if len(values) < period:
        return None
    k = 2 / (period + 1)
    prev = values[0]
    for value in values[1:]:
        prev = value * k + prev * (1 - k)
    return prev


def compute_macd(
    closes: Sequence[float],
    fast: int,
    slow: int,
    signal: int,
) -> Optional[MacdResult]:
    if len(closes) < slow + signal:
        return None

    fast_ema = _ema(closes, fast)
    slow_ema = _ema(closes, slow)
    if fast_ema is None or slow_ema is None:
        return None
    macd_line = fast_ema - slow_ema

    macd_series = []
    for i in range(len(closes)):
        prefix = closes[: i + 1]
        f = _ema(prefix, fast)
        s = _ema(prefix, slow)
        if f is None or s is None:
            continue
        macd_series.append(f - s)

    signal_line = _ema(macd_series, signal)
    if signal_line is None:
        return None
    hist = macd_line - signal_line

    hist_delta = None
    if len(macd_series) >= signal + 1:
        prev_signal = _ema(macd_series[:-1], signal)
        if prev_signal is not None:
            hist_delta = hist - (macd_series[-2] - prev_signal)

    return MacdResult(macd=macd_line, signal=signal_line, hist=hist, hist_delta=hist_delta)


# =============================================================================
# Heiken Ashi
# =============================================================================

def compute_heiken_ashi(candles: Sequence[Candle]) -> List[HeikenAshiCandle]:
    ha: List[HeikenAshiCandle] = []
    for candle in candles:
        ha_close = (candle.open + candle.high + candle.low + candle.close) / 4
        if ha:
            ha_open = (ha[-1].open + ha[-1].close) / 2
        else:
            ha_open = (candle.open + candle.close) / 2
        ha.append(HeikenAshiCandle(
            open=ha_open,
            high=max(candle.high, ha_open, ha_close),
            low=min(candle.low, ha_open, ha_close),
            close=ha_close,
        ))
    return ha


def count_consecutive(ha_candles: Sequence[HeikenAshiCandle]) -> Tuple[Optional[str], int]:
    """Color of the last Heiken-Ashi candle and how many in a row share it."""
    if not ha_candles:
        return None, 0

    target = ha_candles[-1].is_green
    count = 0
    for candle in reversed(ha_candles):
        if candle.is_green != target:
            break
        count += 1
    return ("green" if target else "red"), count


# =============================================================================
# Snapshot
# =============================================================================

def compute_indicators(
    candles: Sequence[Candle],
    vwap_slope_lookback: int = 5,
    rsi_period: int = 14,
    macd_fast: int = 12,
    macd_slow: int = 26,
    macd_signal: int = 9,
    vwap_cross_lookback: int = 20,
) -> IndicatorSnapshot:
    """
    Compute every indicator the pipeline needs from one candle buffer.

    Args:
        candles: One-minute candles, oldest first

    Returns:
        IndicatorSnapshot (fields are None where history is too short)
    """
    closes = [c.close for c in candles]
    vwap_series = compute_vwap_series(candles)
    vwap_now = vwap_series[-1] if vwap_series else None

    macd = compute_macd(closes, macd_fast, macd_slow, macd_signal)
    color, count = count_consecutive(compute_heiken_ashi(candles))

    if candles:
        volume_recent = sum(c.volume for c in candles[-20:])
        volume_avg = sum(c.volume for c in candles[-120:]) / 6
    else:
        volume_recent = None
        volume_avg = None

    failed_reclaim = False
    if vwap_now is not None and len(vwap_series) >= 3:
        failed_reclaim = closes[-1] < vwap_now and closes[-2] > vwap_series[-2]

    return IndicatorSnapshot(
        last_close=closes[-1] if closes else None,
        vwap=vwap_now,
        vwap_slope=compute_vwap_slope(vwap_series, vwap_slope_lookback),
        rsi=compute_rsi(closes, rsi_period),
        rsi_slope=compute_rsi_slope(closes, rsi_period),
        macd=macd,
        heiken_color=color,
        heiken_count=count,
        vwap_cross_count=count_vwap_crosses(closes, vwap_series, vwap_cross_lookback),
        volume_recent=volume_recent,
        volume_avg=volume_avg,
        failed_vwap_reclaim=failed_reclaim,
    )
