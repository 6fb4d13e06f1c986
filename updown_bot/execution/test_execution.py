#!/usr/bin/env python3
"""
Test Suite: Execution Layer

Tests:
1. Order Strategy (FOK vs GTD post-only, buy pricing)
2. Risk Engine (daily ledger, stop-loss, trade gating)
3. Settlement Engine (outcome rule, idempotency, live ledger, stale cleanup)

Runs under pytest, or as a script:
    python updown_bot/execution/test_execution.py run
"""
from datetime import date
from decimal import Decimal

import pytest
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from updown_bot.config import RiskConfig
from updown_bot.core.strategy_brain.edge.fees import estimate_polymarket_fee
from updown_bot.execution.order_strategy import optimize_buy_price, select_order_strategy
from updown_bot.execution.risk_engine import RiskEngine
from updown_bot.execution.settlement_engine import (
    SettlementEngine,
    compute_pnl,
    determine_winner,
)
from updown_bot.feedback.signal_metadata import SignalMetadataStore
from updown_bot.feedback.signal_quality import SignalQualityModel
from updown_bot.models import (
    OrderType,
    Phase,
    Regime,
    Side,
    SignalFeatures,
    SignalMetadata,
    TradeMode,
)
from updown_bot.monitoring.performance_tracker import MarketPerformanceTracker

app = typer.Typer()
console = Console()

WINDOW = 1_700_000_100_000
WINDOW_MS = 15 * 60_000
DAY = date(2026, 1, 5)


def make_engine(mode=TradeMode.PAPER, risk_config=None, persist_trade=None):
    return SettlementEngine(
        mode=mode,
        performance_tracker=MarketPerformanceTracker(),
        signal_quality=SignalQualityModel(),
        metadata_store=SignalMetadataStore(),
        risk_config=risk_config,
        persist_trade=persist_trade,
    )


def open_trade(engine, market_id="ETH", side=Side.UP, price="0.6", size="10", ptb=100.0, window=WINDOW, **kwargs):
    return engine.add_trade(
        market_id=market_id,
        window_start_ms=window,
        side=side,
        entry_price=Decimal(price),
        size=Decimal(size),
        price_to_beat=ptb,
        **kwargs,
    )


# =============================================================================
# Order Strategy
# =============================================================================

def test_late_high_confidence_uses_fok():
    result = select_order_strategy(Phase.LATE, 0.75, Side.UP, 0.7, 0.3)
    assert result.order_type is OrderType.FOK
    assert result.maker_rebate == 0.0
    assert result.expected_fee == pytest.approx(estimate_polymarket_fee(0.7))


def test_everything_else_rests_post_only():
    for phase, confidence in ((Phase.LATE, 0.69), (Phase.MID, 0.9), (Phase.EARLY, 0.9)):
        result = select_order_strategy(phase, confidence, Side.DOWN, 0.7, 0.3)
        assert result.order_type is OrderType.GTD_POST_ONLY
        assert result.maker_rebate == pytest.approx(0.2)
        assert result.expected_fee == pytest.approx(estimate_polymarket_fee(0.3, 0.2))


def test_buy_price():
    gtd = optimize_buy_price(0.6, Side.UP, 0.05, OrderType.GTD_POST_ONLY)
    assert gtd.buy_price == pytest.approx(0.57)
    assert gtd.improvement == pytest.approx(0.03)
    assert gtd.reason == "up_gtd_post_only_limit_discount_applied"

    fok = optimize_buy_price(0.6, Side.DOWN, 0.05, OrderType.FOK)
    assert fok.buy_price == 0.6
    assert fok.improvement == 0.0


# =============================================================================
# Risk Engine
# =============================================================================

def test_daily_ledger_is_deduplicated():
    risk = RiskEngine()
    assert risk.apply_daily_pnl("t1", Decimal("-3"), DAY)
    assert not risk.apply_daily_pnl("t1", Decimal("-3"), DAY)
    assert risk.daily_pnl(DAY) == Decimal("-3")


def test_daily_ledger_keeps_recent_days():
    risk = RiskEngine(RiskConfig(daily_pnl_keep_days=2))
    for offset in range(3):
        risk.apply_daily_pnl(f"t{offset}", Decimal("1"), date(2026, 1, 1 + offset))
    assert risk.daily_pnl(date(2026, 1, 1)) == 0
    assert risk.daily_pnl(date(2026, 1, 3)) == Decimal("1")


def test_daily_loss_limit_stops_trading():
    risk = RiskEngine(RiskConfig(daily_max_loss=Decimal("10")))
    risk.apply_daily_pnl("t1", Decimal("-11"), DAY)

    assert risk.check_and_trigger_stop_loss(DAY)
    assert risk.is_stopped
    assert risk.stop_reason == "daily_loss_limit:11.00"
    allowed, reason = risk.can_trade(Decimal("1"), DAY)
    assert not allowed
    assert reason == "stop_loss_active:daily_loss_limit:11.00"

    risk.reset_stop_loss()
    assert risk.can_trade(Decimal("1"), DAY) == (False, "daily_loss_limit_reached")


def test_max_drawdown_only_for_paper():
    config = RiskConfig(
        initial_balance=Decimal("100"),
        daily_max_loss=Decimal("1000"),
        max_drawdown_fraction=Decimal("0.5"),
    )
    paper = RiskEngine(config, TradeMode.PAPER)
    paper.debit(Decimal("60"))
    paper.credit(Decimal("0"))
    assert paper.max_drawdown == Decimal("60")
    assert paper.check_and_trigger_stop_loss(DAY)
    assert paper.stop_reason == "max_drawdown:60.00"

    live = RiskEngine(config, TradeMode.LIVE)
    live.debit(Decimal("60"))
    live.credit(Decimal("0"))
    assert not live.check_and_trigger_stop_loss(DAY)


def test_paper_balance_gate():
    risk = RiskEngine(RiskConfig(initial_balance=Decimal("5")))
    assert risk.can_trade(Decimal("10")) == (False, "insufficient_balance")
    assert RiskEngine(RiskConfig(initial_balance=Decimal("5")), TradeMode.LIVE).can_trade(Decimal("10")) == (True, None)


# =============================================================================
# Settlement Engine
# =============================================================================

def test_outcome_rule():
    assert determine_winner(100.01, 100.0) is Side.UP
    assert determine_winner(100.0, 100.0) is Side.DOWN
    assert determine_winner(99.0, 100.0) is Side.DOWN
    assert compute_pnl(True, Decimal("10"), Decimal("0.6")) == Decimal("4.0")
    assert compute_pnl(False, Decimal("10"), Decimal("0.6")) == Decimal("-6.0")


def test_tie_settles_down_and_updates_paper_balance():
    engine = make_engine()
    open_trade(engine)
    assert engine.risk.balance == Decimal("990")

    report = engine.settle_window(WINDOW, {"ETH": 100.0}, DAY)
    assert len(report.settled) == 1
    assert report.settled[0].won is False
    assert report.settled[0].pnl == Decimal("-6.0")
    assert engine.risk.balance == Decimal("994.0")
    assert engine.risk.daily_pnl(DAY) == Decimal("-6.0")


def test_settlement_is_idempotent():
    engine = make_engine()
    open_trade(engine)
    engine.settle_window(WINDOW, {"ETH": 101.0}, DAY)
    balance = engine.risk.balance

    again = engine.settle_window(WINDOW, {"ETH": 101.0}, DAY)
    assert again.settled == []
    assert engine.risk.balance == balance
    assert engine.get_stats().wins == 1


def test_unresolved_until_price_known():
    engine = make_engine()
    open_trade(engine, market_id="ETH")
    open_trade(engine, market_id="SOL", ptb=None)
    open_trade(engine, market_id="XRP", window=WINDOW + WINDOW_MS)

    report = engine.settle_window(WINDOW, {"BTC": 1.0}, DAY)
    assert report.settled == []
    assert report.unresolved == 2

    report = engine.settle_window(WINDOW, {"ETH": 101.0, "SOL": 5.0}, DAY)
    assert [s.market_id for s in report.settled] == ["ETH"]
    assert report.unresolved == 1
    assert len(engine.pending_trades()) == 2


def test_non_finite_settle_price_leaves_trade_pending():
    engine = make_engine()
    open_trade(engine)

    for bad in (float("nan"), float("inf"), float("-inf")):
        report = engine.settle_window(WINDOW, {"ETH": bad}, DAY)
        assert report.settled == []
        assert report.unresolved == 1

    assert len(engine.pending_trades()) == 1
    assert engine.risk.balance == Decimal("990")
    assert engine.risk.daily_pnl(DAY) == Decimal("0")
    assert engine.get_stats().losses == 0

    report = engine.settle_window(WINDOW, {"ETH": 101.0}, DAY)
    assert report.settled[0].won is True


def test_live_ledger_books_worst_case_then_correction():
    engine = make_engine(TradeMode.LIVE)
    open_trade(engine, price="0.4", trade_id="order-1", entry_day=DAY)
    assert engine.risk.daily_pnl(DAY) == Decimal("-4.0")
    assert engine.risk.balance == Decimal("1000")

    report = engine.settle_window(WINDOW, {"ETH": 101.0}, DAY)
    assert report.settled[0].pnl == Decimal("6.0")
    assert engine.risk.daily_pnl(DAY) == Decimal("6.0")

    loser = make_engine(TradeMode.LIVE)
    open_trade(loser, price="0.4", trade_id="order-2", entry_day=DAY)
    loser.settle_window(WINDOW, {"ETH": 99.0}, DAY)
    assert loser.risk.daily_pnl(DAY) == Decimal("-4.0")


def test_settlement_feeds_back_once():
    engine = make_engine()
    trade = open_trade(engine)
    features = SignalFeatures(edge=0.1, confidence=0.8, phase=Phase.EARLY, regime=Regime.TREND_UP, market_id="ETH")
    engine.metadata_store.put(trade.id, SignalMetadata(
        market_id="ETH",
        side=Side.UP,
        edge=0.1,
        confidence=0.8,
        phase=Phase.EARLY,
        regime=Regime.TREND_UP,
        features=features,
    ))

    engine.settle_window(WINDOW, {"ETH": 101.0}, DAY)
    assert engine.performance_tracker.trade_count("ETH") == 1
    assert engine.signal_quality.history_size == 1
    assert engine.metadata_store.take(trade.id) is None


def test_trade_without_metadata_still_settles():
    engine = make_engine()
    open_trade(engine)
    report = engine.settle_window(WINDOW, {"ETH": 101.0}, DAY)
    assert report.settled[0].won
    assert engine.performance_tracker.trade_count("ETH") == 0


def test_stop_loss_checked_after_settlement():
    engine = make_engine(risk_config=RiskConfig(daily_max_loss=Decimal("10")))
    open_trade(engine, market_id="ETH", price="0.6", size="10")
    open_trade(engine, market_id="SOL", price="0.6", size="10")
    report = engine.settle_window(WINDOW, {"ETH": 99.0, "SOL": 99.0}, DAY)
    assert report.stop_loss_triggered
    assert engine.can_trade(Decimal("1"))[0] is False


def test_stale_trades_dropped_after_two_windows():
    engine = make_engine()
    open_trade(engine, window=WINDOW)
    open_trade(engine, window=WINDOW + WINDOW_MS)

    assert engine.cleanup_stale(WINDOW + 2 * WINDOW_MS) == 0
    assert engine.cleanup_stale(WINDOW + 3 * WINDOW_MS) == 1
    assert [t.window_start_ms for t in engine.trades] == [WINDOW + WINDOW_MS]


def test_persist_failure_does_not_block_settlement():
    def failing(trade):
        raise RuntimeError("disk full")

    resolved = []
    engine = make_engine(persist_trade=failing)
    engine.on_trade_resolved = resolved.append
    open_trade(engine)

    report = engine.settle_window(WINDOW, {"ETH": 101.0}, DAY)
    assert len(report.settled) == 1
    assert resolved and resolved[0].resolved


def test_market_breakdown_and_export():
    engine = make_engine()
    open_trade(engine, market_id="ETH")
    open_trade(engine, market_id="ETH", side=Side.DOWN)
    open_trade(engine, market_id="SOL")
    engine.settle_window(WINDOW, {"ETH": 101.0}, DAY)

    breakdown = engine.get_market_breakdown()
    assert breakdown["ETH"]["wins"] == 1
    assert breakdown["ETH"]["losses"] == 1
    assert breakdown["ETH"]["pnl"] == Decimal("-2.0")
    assert breakdown["ETH"]["win_rate"] == 0.5
    assert breakdown["SOL"]["pending"] == 1

    state = engine.export_state()
    assert state["mode"] == "paper"
    assert state["stats"]["total_trades"] == 3
    assert state["markets"]["ETH"]["pnl"] == "-2.0"
    assert len(state["trades"]) == 3


# =============================================================================
# Script runner
# =============================================================================

SUITES = {
    "order_strategy": [
        test_late_high_confidence_uses_fok,
        test_everything_else_rests_post_only,
        test_buy_price,
    ],
    "risk": [
        test_daily_ledger_is_deduplicated,
        test_daily_ledger_keeps_recent_days,
        test_daily_loss_limit_stops_trading,
        test_max_drawdown_only_for_paper,
        test_paper_balance_gate,
    ],
    "settlement": [
        test_outcome_rule,
        test_tie_settles_down_and_updates_paper_balance,
        test_settlement_is_idempotent,
        test_unresolved_until_price_known,
        test_non_finite_settle_price_leaves_trade_pending,
        test_live_ledger_books_worst_case_then_correction,
        test_settlement_feeds_back_once,
        test_stop_loss_checked_after_settlement,
        test_stale_trades_dropped_after_two_windows,
        test_persist_failure_does_not_block_settlement,
        test_market_breakdown_and_export,
    ],
}


@app.command()
def run(
    component: str = typer.Option(
        "all",
        "--component",
        "-c",
        help="Test specific component: all, order_strategy, risk, settlement"
    )
):
    """Run the execution layer checks and print a summary."""
    if component != "all" and component not in SUITES:
        console.print(f"[red]Unknown component: {component}[/red]")
        raise typer.Exit(1)

    console.print(Panel.fit("[bold cyan]EXECUTION LAYER - TEST SUITE[/bold cyan]", border_style="cyan"))

    results = {}
    for name in (SUITES if component == "all" else [component]):
        console.print(f"\n[cyan]═══ Testing {name} ═══[/cyan]")
        passed = True
        for check in SUITES[name]:
            try:
                check()
                console.print(f"  [green]✓[/green] {check.__name__}")
            except AssertionError as e:
                console.print(f"  [red]✗ {check.__name__}: {e}[/red]")
                passed = False
        results[name] = passed

    table = Table(title="TEST SUMMARY", show_header=True, header_style="bold magenta")
    table.add_column("Component", style="cyan", width=25)
    table.add_column("Status", width=15)
    for name, passed in results.items():
        table.add_row(name, "[green]✓ PASSED[/green]" if passed else "[red]✗ FAILED[/red]")
    console.print(table)

    raise typer.Exit(0 if all(results.values()) else 1)


if __name__ == "__main__":
    app()
