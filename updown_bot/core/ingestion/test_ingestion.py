"""
Tests for the tick validator.
"""
import pytest

from updown_bot.core.ingestion.validators.data_validator import TickValidator
from updown_bot.models import Candle, MarketTick, OrderBookSummary


def _candles(n=5, start_ms=0):
    return [
        Candle(open_time=start_ms + i * 60_000, open=100.0, high=101.0, low=99.0, close=100.0, volume=5.0)
        for i in range(n)
    ]


def _tick(**overrides):
    fields = dict(
        market_id="BTC",
        window_start_ms=900_000,
        candles=_candles(),
        time_left_min=10.0,
        oracle_price=100.0,
        spot_price=100.0,
        price_to_beat=99.5,
        market_up=0.55,
        market_down=0.46,
        book_up=OrderBookSummary(best_bid=0.54, best_ask=0.56, bid_liquidity=200, ask_liquidity=150),
        book_down=OrderBookSummary(best_bid=0.45, best_ask=0.47, bid_liquidity=100, ask_liquidity=100),
    )
    fields.update(overrides)
    return MarketTick(**fields)


def test_valid_tick():
    result = TickValidator().validate(_tick())
    assert result.is_valid
    assert result.errors == []
    assert result.warnings == []


def test_missing_prices_are_not_errors():
    result = TickValidator().validate(_tick(market_up=None, market_down=None, book_up=None, book_down=None))
    assert result.is_valid


@pytest.mark.parametrize("overrides,code", [
    ({"market_id": ""}, "empty_market_id"),
    ({"time_left_min": float("nan")}, "time_left_not_finite"),
    ({"oracle_price": float("inf")}, "oracle_price_not_finite"),
    ({"spot_price": 0.0}, "spot_price_not_positive"),
    ({"price_to_beat": -1.0}, "price_to_beat_not_positive"),
    ({"market_up": 1.5}, "market_up_out_of_range"),
    ({"market_down": float("nan")}, "market_down_not_finite"),
    ({"book_up": OrderBookSummary(best_bid=1.2, best_ask=0.5)}, "book_up_bid_out_of_range"),
    ({"book_down": OrderBookSummary(best_bid=0.6, best_ask=0.5)}, "book_down_crossed"),
    ({"book_up": OrderBookSummary(bid_liquidity=-1.0)}, "book_up_bid_liquidity_invalid"),
])
def test_error_codes(overrides, code):
    result = TickValidator().validate(_tick(**overrides))
    assert not result.is_valid
    assert result.errors[0] == code


def test_candle_checks():
    validator = TickValidator()

    bad_shape = _candles()
    bad_shape[2] = Candle(open_time=bad_shape[2].open_time, open=100, high=99, low=101, close=100, volume=1)
    assert validator.validate(_tick(candles=bad_shape)).errors == ["candle_low_above_high"]

    negative = _candles()
    negative[0] = Candle(open_time=0, open=100, high=101, low=99, close=100, volume=-1)
    assert validator.validate(_tick(candles=negative)).errors == ["candle_negative_volume"]

    unordered = list(reversed(_candles()))
    assert validator.validate(_tick(candles=unordered)).errors == ["candles_not_ascending"]

    nan_close = _candles()
    nan_close[-1] = Candle(open_time=nan_close[-1].open_time, open=100, high=101, low=99, close=float("nan"), volume=1)
    assert validator.validate(_tick(candles=nan_close)).errors == ["candle_not_finite"]


def test_warnings_do_not_block():
    result = TickValidator().validate(_tick(candles=[], market_up=0.6, market_down=0.6, spot_price=102.0))
    assert result.is_valid
    assert "No candles" in result.warnings
    assert any(w.startswith("Outcome prices sum") for w in result.warnings)
    assert any(w.startswith("Spot/oracle divergence") for w in result.warnings)
    assert result.metadata["outcome_sum"] == pytest.approx(1.2)


def test_oracle_spike_flagged():
    validator = TickValidator(z_score_threshold=3.0)
    for i in range(20):
        validator.validate(_tick(oracle_price=100.0 + (i % 2) * 0.1))

    result = validator.validate(_tick(oracle_price=150.0, spot_price=150.0))
    assert result.is_valid
    assert result.metadata["anomaly"]["anomaly_type"] == "price_spike"

    validator.clear_history("BTC")
    assert validator.detect_anomaly("BTC", 150.0) is None


def test_history_size_must_be_positive():
    with pytest.raises(ValueError):
        TickValidator(max_history_size=0)
