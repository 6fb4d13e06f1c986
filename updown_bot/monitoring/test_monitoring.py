"""
Tests for the performance tracker and the stats viewer CLI.
"""
import json
import sys
from decimal import Decimal

import pytest
from loguru import logger
from typer.testing import CliRunner

from updown_bot.models import Phase, Regime, Side, TradeOutcome
from updown_bot.monitoring.performance_tracker import MarketPerformanceTracker
from updown_bot.monitoring.stats_viewer import app
from updown_bot.session import TradingSession

runner = CliRunner()


@pytest.fixture(autouse=True)
def restore_logging():
    # the viewer re-sinks loguru onto the runner's temporary stderr
    yield
    logger.remove()
    logger.add(sys.stderr)


def _record(tracker, market_id, results, edge=0.1):
    for won in results:
        tracker.record_trade(TradeOutcome(
            market_id=market_id,
            won=won,
            edge=edge,
            confidence=0.7,
            phase=Phase.MID,
            regime=Regime.RANGE,
        ))


# =============================================================================
# Performance tracker
# =============================================================================

def test_rolling_window_evicts_oldest():
    tracker = MarketPerformanceTracker(rolling_window=3, min_trades=1)
    _record(tracker, "ETH", [False, True, True, True])
    assert tracker.trade_count("ETH") == 3
    assert tracker.get_snapshot("ETH").current_win_rate == 1.0


def test_no_snapshot_below_min_trades():
    tracker = MarketPerformanceTracker()
    _record(tracker, "ETH", [True] * 4)
    assert tracker.get_snapshot("ETH") is None
    assert tracker.get_snapshot("SOL") is None
    assert tracker.trade_count("SOL") == 0


def test_recent_window_uses_available_trades():
    tracker = MarketPerformanceTracker()
    _record(tracker, "ETH", [True, False, True, True, False, True])
    snapshot = tracker.get_snapshot("ETH")
    assert snapshot.total_trades == 6
    assert snapshot.recent_win_rate == pytest.approx(4 / 6)
    assert snapshot.trend == "stable"


def test_improving_trend():
    tracker = MarketPerformanceTracker(recent_window=5)
    _record(tracker, "ETH", [False] * 6 + [True] * 4)
    snapshot = tracker.get_snapshot("ETH")
    assert snapshot.current_win_rate == pytest.approx(0.4)
    assert snapshot.recent_win_rate == pytest.approx(0.8)
    assert snapshot.trend == "improving"


def test_recent_run_after_ten_trades_is_improving():
    tracker = MarketPerformanceTracker()
    _record(tracker, "ETH", [False] * 6 + [True] * 4)
    assert tracker.get_snapshot("ETH").trend == "stable"

    _record(tracker, "ETH", [True] * 4)
    snapshot = tracker.get_snapshot("ETH")
    assert snapshot.current_win_rate == pytest.approx(8 / 14)
    assert snapshot.recent_win_rate == pytest.approx(0.8)
    assert snapshot.trend == "improving"


def test_markets_are_independent():
    tracker = MarketPerformanceTracker()
    _record(tracker, "ETH", [True] * 5)
    _record(tracker, "SOL", [False] * 5)
    snapshots = tracker.get_all_snapshots()
    assert snapshots["ETH"].wins == 5
    assert snapshots["SOL"].wins == 0


def test_save_and_load(tmp_path):
    path = tmp_path / "performance.json"
    tracker = MarketPerformanceTracker()
    _record(tracker, "ETH", [True, False, True])
    assert tracker.save_state(path)

    restored = MarketPerformanceTracker()
    assert restored.load_state(path) == 3
    assert restored.trade_count("ETH") == 3
    assert MarketPerformanceTracker().load_state(tmp_path / "missing.json") == 0


def test_load_skips_malformed_rows(tmp_path):
    path = tmp_path / "performance.json"
    path.write_text(json.dumps({"ETH": [{"won": True, "edge": 0.1, "confidence": 0.7}, {"won": True}]}))
    tracker = MarketPerformanceTracker()
    assert tracker.load_state(path) == 1


def test_rejects_bad_window():
    with pytest.raises(ValueError):
        MarketPerformanceTracker(rolling_window=0)


# =============================================================================
# Stats viewer
# =============================================================================

def _saved_session(tmp_path):
    session = TradingSession()
    session.paper.add_trade(
        market_id="ETH",
        window_start_ms=0,
        side=Side.UP,
        entry_price=Decimal("0.6"),
        size=Decimal("10"),
        price_to_beat=100.0,
    )
    session.settle_window(0, {"ETH": 101.0})
    _record(session.performance_tracker, "ETH", [True, False])

    state_file = tmp_path / "settlement.json"
    performance_file = tmp_path / "performance.json"
    assert session.save_state(state_file, performance_file)
    return state_file, performance_file


def test_stats_viewer_shows_accounts(tmp_path):
    state_file, performance_file = _saved_session(tmp_path)
    result = runner.invoke(app, [
        "--state-file", str(state_file),
        "--performance-file", str(performance_file),
    ])
    assert result.exit_code == 0, result.output
    assert "PAPER account" in result.output
    assert "LIVE account" in result.output
    assert "ETH" in result.output


def test_stats_viewer_filters_mode(tmp_path):
    state_file, performance_file = _saved_session(tmp_path)
    result = runner.invoke(app, [
        "--mode", "live",
        "--state-file", str(state_file),
        "--performance-file", str(performance_file),
    ])
    assert result.exit_code == 0, result.output
    assert "LIVE account" in result.output
    assert "PAPER account" not in result.output


def test_stats_viewer_without_state(tmp_path):
    result = runner.invoke(app, ["--state-file", str(tmp_path / "missing.json")])
    assert result.exit_code == 1
    assert "No settlement state" in result.output


def test_stats_viewer_rejects_unknown_mode(tmp_path):
    result = runner.invoke(app, ["--mode", "demo"])
    assert result.exit_code == 1
