#!/usr/bin/env python3
"""
Test Suite: Strategy Brain

Tests:
1. Probability Blender
2. Ensemble Composer
3. Up/Down 15-Min Strategy (per-tick pipeline)
4. End-to-End Flow (evaluate → open → settle → feedback)

Runs under pytest, or as a script for a summary table:
    python updown_bot/core/strategy_brain/test_strategy.py run
"""
from datetime import date
from decimal import Decimal

import pytest
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from updown_bot.core.strategy_brain.fusion_engine.ensemble import EnsembleComposer
from updown_bot.core.strategy_brain.fusion_engine.probability_blender import blend_probabilities
from updown_bot.core.strategy_brain.strategies.updown_15min_strategy import UpDown15MinStrategy
from updown_bot.models import Action, Candle, MarketTick, OrderType, Phase, Regime, Side
from updown_bot.session import TradingSession

app = typer.Typer()
console = Console()

WINDOW_START_MS = 1_700_000_100_000


def rising_candles(count: int = 80, start: float = 100.0, growth: float = 1.001):
    candles = []
    price = start
    for i in range(count):
        candles.append(Candle(
            open_time=WINDOW_START_MS - (count - i) * 60_000,
            open=price,
            high=price + 0.5,
            low=price - 0.5,
            close=price,
            volume=10.0,
        ))
        price *= growth
    return candles


def bullish_tick(time_left_min: float = 12.0, **overrides) -> MarketTick:
    candles = rising_candles()
    last = candles[-1].close
    fields = dict(
        market_id="ETH",
        window_start_ms=WINDOW_START_MS,
        candles=candles,
        time_left_min=time_left_min,
        oracle_price=last,
        spot_price=last,
        price_to_beat=100.0,
        market_up=0.75,
        market_down=0.25,
    )
    fields.update(overrides)
    return MarketTick(**fields)


# =============================================================================
# Probability Blender
# =============================================================================

def test_blend_passes_ta_through_without_vol_model():
    result = blend_probabilities(None, 0.7)
    assert result.source == "ta_only"
    assert result.blended_up == pytest.approx(0.7)


def test_blend_weights_and_adjustments():
    assert blend_probabilities(0.6, 0.4).blended_up == pytest.approx(0.5)

    led = blend_probabilities(0.6, 0.4, lead_signal=0.01)
    assert led.lead_adjustment == pytest.approx(0.02)
    assert led.blended_up == pytest.approx(0.52)

    booked = blend_probabilities(0.6, 0.4, orderbook_imbalance=-0.5)
    assert booked.book_adjustment == pytest.approx(-0.02)

    quiet = blend_probabilities(0.6, 0.4, lead_signal=0.0005, orderbook_imbalance=0.1)
    assert quiet.lead_adjustment == 0.0
    assert quiet.book_adjustment == 0.0


@pytest.mark.parametrize("vol_up,ta_up,lead,imb", [
    (0.99, 0.99, 1.0, 1.0),
    (0.0, 0.0, -1.0, -1.0),
    (1.0, 0.0, 0.5, -0.9),
    (0.5, 0.5, None, None),
])
def test_blend_output_range(vol_up, ta_up, lead, imb):
    result = blend_probabilities(vol_up, ta_up, lead_signal=lead, orderbook_imbalance=imb)
    assert 0.01 <= result.blended_up <= 0.99
    assert result.blended_down == 1 - result.blended_up


# =============================================================================
# Ensemble Composer
# =============================================================================

def test_ensemble_unanimous_models():
    result = EnsembleComposer().compose(0.6, 0.6, 0.6, "blended")
    assert result.final_up == pytest.approx(0.6)
    assert result.agreement == pytest.approx(1.0)


def test_ensemble_falls_back_to_ta():
    result = EnsembleComposer().compose(None, 0.7, 0.7, "ta_only")
    assert result.final_up == pytest.approx(0.7)
    assert result.dominant_model == "ta_score"


def test_ensemble_signal_quality_pulls_toward_history():
    result = EnsembleComposer().compose(
        0.5, 0.5, 0.5, "blended",
        signal_quality_win_rate=0.9,
        signal_quality_confidence="HIGH",
    )
    assert result.final_up > 0.5
    assert any(m.name == "signal_quality" and m.available for m in result.models)


def test_ensemble_imbalance_nudge():
    base = EnsembleComposer().compose(0.6, 0.6, 0.6, "blended")
    nudged = EnsembleComposer().compose(0.6, 0.6, 0.6, "blended", orderbook_imbalance=0.5)
    assert nudged.final_up == pytest.approx(base.final_up + 0.01)


@pytest.mark.parametrize("vol_up,ta_up,blended,regime,imb", [
    (0.99, 0.99, 0.99, Regime.TREND_UP, 1.0),
    (0.01, 0.0, 0.01, Regime.TREND_DOWN, -1.0),
    (None, 1.0, 1.0, Regime.CHOP, 0.9),
    (0.3, 0.8, 0.55, None, None),
])
def test_ensemble_output_range(vol_up, ta_up, blended, regime, imb):
    result = EnsembleComposer().compose(
        vol_up, ta_up, blended, "blended" if vol_up is not None else "ta_only",
        regime=regime, volatility=0.01, orderbook_imbalance=imb,
    )
    assert 0.01 <= result.final_up <= 0.99
    assert result.final_down == 1 - result.final_up


def test_ensemble_rejects_bad_weight():
    with pytest.raises(ValueError):
        EnsembleComposer().set_weight("ta_score", 1.5)


# =============================================================================
# Up/Down 15-Min Strategy
# =============================================================================

def test_strategy_enters_on_strong_uptrend():
    strategy = UpDown15MinStrategy(TradingSession())
    evaluation = strategy.evaluate(bullish_tick())

    decision = evaluation.decision
    assert decision.action is Action.ENTER, decision.reason
    assert decision.side is Side.UP
    assert decision.phase is Phase.EARLY
    assert evaluation.regime.regime is Regime.TREND_UP
    assert evaluation.order.order_type is OrderType.GTD_POST_ONLY
    assert evaluation.pricing.buy_price == pytest.approx(0.75 * 0.95)
    assert evaluation.features is not None
    assert evaluation.features.market_id == "ETH"


def test_strategy_uses_fok_late_with_high_confidence():
    strategy = UpDown15MinStrategy(TradingSession())
    evaluation = strategy.evaluate(bullish_tick(time_left_min=4.0))

    assert evaluation.decision.should_enter, evaluation.decision.reason
    assert evaluation.decision.phase is Phase.LATE
    assert evaluation.order.order_type is OrderType.FOK
    assert evaluation.pricing.buy_price == pytest.approx(0.75)


def test_strategy_rejects_invalid_tick():
    strategy = UpDown15MinStrategy(TradingSession())
    evaluation = strategy.evaluate(bullish_tick(market_up=1.5))
    assert evaluation.decision.reason == "invalid_market_data_market_up_out_of_range"
    assert evaluation.edge is None


def test_strategy_reports_missing_market_data():
    strategy = UpDown15MinStrategy(TradingSession())
    evaluation = strategy.evaluate(bullish_tick(market_up=None, market_down=None))
    assert evaluation.decision.reason == "missing_market_data"


def test_strategy_vig_gate():
    strategy = UpDown15MinStrategy(TradingSession())
    evaluation = strategy.evaluate(bullish_tick(market_up=0.6, market_down=0.6))
    assert evaluation.decision.reason == "vig_too_high_1.200"


def test_strategy_time_gate():
    strategy = UpDown15MinStrategy(TradingSession())
    evaluation = strategy.evaluate(bullish_tick(time_left_min=2.0))
    assert evaluation.decision.reason == "time_left_2.0m_below_3m"


def test_strategy_time_gate_reported_before_vig():
    strategy = UpDown15MinStrategy(TradingSession())
    evaluation = strategy.evaluate(bullish_tick(time_left_min=2.0, market_up=0.6, market_down=0.6))
    assert evaluation.decision.reason == "time_left_2.0m_below_3m"


def test_strategy_scores_ta_against_oracle_price():
    def ta_prob(evaluation):
        return next(m.prob_up for m in evaluation.ensemble.models if m.name == "ta_score")

    above = UpDown15MinStrategy(TradingSession()).evaluate(bullish_tick())
    # spot candles still close above VWAP, the oracle sits below it
    below = UpDown15MinStrategy(TradingSession()).evaluate(bullish_tick(oracle_price=100.5))
    assert below.current_price == 100.5
    assert ta_prob(below) < ta_prob(above)


def test_strategy_statistics():
    strategy = UpDown15MinStrategy(TradingSession())
    strategy.evaluate(bullish_tick())
    strategy.evaluate(bullish_tick(time_left_min=2.0))
    stats = strategy.get_statistics()
    assert stats["evaluations"] == 2
    assert stats["entries"] == 1


# =============================================================================
# End-to-End
# =============================================================================

def test_end_to_end_paper_trade_feeds_back():
    session = TradingSession()
    strategy = UpDown15MinStrategy(session)
    evaluation = strategy.evaluate(bullish_tick())

    trade = session.open_paper_trade(evaluation, Decimal("10"))
    assert trade is not None
    assert session.paper.risk.balance == Decimal("990")

    reports = session.settle_window(WINDOW_START_MS, {"ETH": 120.0})
    settled = reports[session.paper.mode].settled
    assert len(settled) == 1
    assert settled[0].won is True

    expected_pnl = trade.size * (Decimal("1") - trade.entry_price)
    assert session.paper.get_stats().total_pnl == expected_pnl
    assert session.paper.risk.balance == Decimal("1000") + expected_pnl
    assert session.performance_tracker.trade_count("ETH") == 1
    assert session.signal_quality.history_size == 1


def test_live_trade_books_ledger_and_feeds_back():
    session = TradingSession()
    evaluation = UpDown15MinStrategy(session).evaluate(bullish_tick())
    day = date(2026, 1, 5)

    trade = session.open_live_trade(evaluation, "order-42", Decimal("10"), 0.7, entry_day=day)
    assert trade.id == "order-42"
    assert session.live.risk.daily_pnl(day) == Decimal("-7.0")

    session.settle_window(WINDOW_START_MS, {"ETH": 120.0}, day)
    assert session.live.risk.daily_pnl(day) == Decimal("3.0")
    assert session.live.risk.balance == Decimal("1000")
    assert session.performance_tracker.trade_count("ETH") == 1


def test_cannot_open_trade_from_no_trade():
    session = TradingSession()
    evaluation = UpDown15MinStrategy(session).evaluate(bullish_tick(time_left_min=2.0))
    with pytest.raises(ValueError):
        session.open_paper_trade(evaluation, Decimal("10"))


# =============================================================================
# Script runner
# =============================================================================

SUITES = {
    "blender": [
        test_blend_passes_ta_through_without_vol_model,
        test_blend_weights_and_adjustments,
    ],
    "ensemble": [
        test_ensemble_unanimous_models,
        test_ensemble_falls_back_to_ta,
        test_ensemble_signal_quality_pulls_toward_history,
        test_ensemble_imbalance_nudge,
        test_ensemble_rejects_bad_weight,
    ],
    "strategy": [
        test_strategy_enters_on_strong_uptrend,
        test_strategy_uses_fok_late_with_high_confidence,
        test_strategy_rejects_invalid_tick,
        test_strategy_reports_missing_market_data,
        test_strategy_vig_gate,
        test_strategy_time_gate,
        test_strategy_time_gate_reported_before_vig,
        test_strategy_scores_ta_against_oracle_price,
    ],
    "end_to_end": [
        test_end_to_end_paper_trade_feeds_back,
        test_live_trade_books_ledger_and_feeds_back,
        test_cannot_open_trade_from_no_trade,
    ],
}


def run_suite(name: str) -> bool:
    console.print(f"\n[cyan]═══ Testing {name} ═══[/cyan]")
    passed = True
    for check in SUITES[name]:
        try:
            check()
            console.print(f"  [green]✓[/green] {check.__name__}")
        except AssertionError as e:
            console.print(f"  [red]✗ {check.__name__}: {e}[/red]")
            passed = False
    return passed


@app.command()
def run(
    component: str = typer.Option(
        "all",
        "--component",
        "-c",
        help="Test specific component: all, blender, ensemble, strategy, end_to_end"
    )
):
    """
    Run the Strategy Brain checks and print a summary.

    Example:
        python updown_bot/core/strategy_brain/test_strategy.py run --component ensemble
    """
    if component != "all" and component not in SUITES:
        console.print(f"[red]Unknown component: {component}[/red]")
        raise typer.Exit(1)

    console.print(Panel.fit("[bold cyan]STRATEGY BRAIN - TEST SUITE[/bold cyan]", border_style="cyan"))

    names = list(SUITES) if component == "all" else [component]
    results = {name: run_suite(name) for name in names}

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Component", style="cyan", width=25)
    table.add_column("Status", width=15)
    for name, passed in results.items():
        table.add_row(name, "[green]✓ PASSED[/green]" if passed else "[red]✗ FAILED[/red]")
    console.print(table)

    raise typer.Exit(0 if all(results.values()) else 1)


if __name__ == "__main__":
    app()
