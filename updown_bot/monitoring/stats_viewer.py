"""
Stats Viewer
View settlement results and per-market performance from the saved state files.
"""
import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from updown_bot.config import PERFORMANCE_STATE_FILE, SETTLEMENT_STATE_FILE

app = typer.Typer()
console = Console()


def load_state(path: Path) -> Optional[Dict[str, Any]]:
    """Load a JSON state file; None when missing or unreadable."""
    try:
        with open(path) as f:
            return json.load(f)
    except FileNotFoundError:
        logger.warning(f"No state file found at {path}")
        return None
    except (OSError, ValueError) as e:
        logger.warning(f"Error loading {path}: {e}")
        return None


def _pnl(value: Any) -> str:
    pnl = float(value or 0)
    color = "green" if pnl >= 0 else "red"
    return f"[{color}]{'+' if pnl >= 0 else ''}{pnl:.2f}[/{color}]"


def account_table(mode: str, account: Dict[str, Any]) -> Table:
    stats = account.get("stats", {})
    risk = account.get("risk", {})

    table = Table(title=f"{mode.upper()} account", show_header=True, header_style="bold magenta")
    table.add_column("Metric", style="cyan", width=18)
    table.add_column("Value", justify="right", width=16)

    table.add_row("Trades", str(stats.get("total_trades", 0)))
    table.add_row("Wins", str(stats.get("wins", 0)))
    table.add_row("Losses", str(stats.get("losses", 0)))
    table.add_row("Pending", str(stats.get("pending", 0)))
    table.add_row("Win rate", f"{float(stats.get('win_rate', 0)):.1%}")
    table.add_row("Total PnL", _pnl(stats.get("total_pnl")))
    if mode == "paper":
        table.add_row("Balance", f"${float(risk.get('balance', 0)):,.2f}")
        table.add_row("Max drawdown", f"${float(risk.get('max_drawdown', 0)):,.2f}")
    table.add_row("Daily PnL", _pnl(risk.get("daily_pnl")))
    stop = risk.get("stop_reason") if risk.get("stopped") else None
    table.add_row("Stop-loss", f"[red]{stop}[/red]" if stop else "[green]off[/green]")
    return table


def markets_table(account: Dict[str, Any]) -> Table:
    table = Table(title="By market", show_header=True, header_style="bold magenta")
    table.add_column("Market", style="cyan")
    table.add_column("W", justify="right")
    table.add_column("L", justify="right")
    table.add_column("Pending", justify="right")
    table.add_column("Win rate", justify="right")
    table.add_column("PnL", justify="right")

    for market_id, row in sorted(account.get("markets", {}).items()):
        table.add_row(
            market_id,
            str(row.get("wins", 0)),
            str(row.get("losses", 0)),
            str(row.get("pending", 0)),
            f"{float(row.get('win_rate', 0)):.1%}",
            _pnl(row.get("pnl")),
        )
    return table


def performance_table(performance: Dict[str, Any], recent: int = 10) -> Table:
    table = Table(title="Rolling performance", show_header=True, header_style="bold magenta")
    table.add_column("Market", style="cyan")
    table.add_column("Trades", justify="right")
    table.add_column("Win rate", justify="right")
    table.add_column(f"Last {recent}", justify="right")
    table.add_column("Avg edge", justify="right")

    for market_id, rows in sorted(performance.items()):
        if not rows:
            continue
        wins = sum(1 for r in rows if r.get("won"))
        last = rows[-recent:]
        recent_wins = sum(1 for r in last if r.get("won"))
        table.add_row(
            market_id,
            str(len(rows)),
            f"{wins / len(rows):.1%}",
            f"{recent_wins / len(last):.1%}",
            f"{sum(float(r.get('edge', 0)) for r in rows) / len(rows):.3f}",
        )
    return table


@app.command()
def show(
    mode: str = typer.Option("all", "--mode", "-m", help="Account to show: all, paper, live"),
    state_file: Path = typer.Option(Path(SETTLEMENT_STATE_FILE), help="Settlement state JSON"),
    performance_file: Path = typer.Option(Path(PERFORMANCE_STATE_FILE), help="Performance state JSON"),
    log_level: str = typer.Option("WARNING", "--log-level", help="Loguru level for stderr"),
):
    """
    Show settlement and performance stats.

    Example:
        updown-stats --mode paper
    """
    logger.remove()
    logger.add(sys.stderr, level=log_level.upper())

    if mode not in ("all", "paper", "live"):
        console.print(f"[red]Unknown mode: {mode}[/red]")
        raise typer.Exit(1)

    state = load_state(state_file)
    if not state:
        console.print("\n[yellow]No settlement state recorded yet.[/yellow]")
        raise typer.Exit(1)

    console.print(Panel.fit("[bold cyan]UP/DOWN BOT - SETTLEMENT STATS[/bold cyan]", border_style="cyan"))

    for name, account in state.items():
        if mode != "all" and name != mode:
            continue
        console.print(account_table(name, account))
        if account.get("markets"):
            console.print(markets_table(account))

    performance = load_state(performance_file)
    if performance:
        console.print(performance_table(performance))

    if mode in ("all", "paper"):
        console.print("\n[dim]Paper trades are simulation only - no real money involved.[/dim]")


if __name__ == "__main__":
    app()
