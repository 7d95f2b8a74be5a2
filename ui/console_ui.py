#!/usr/bin/env python3
"""
Console UI - Rich-based Terminal Output for the Token Watch

Provides:
- Banner with run id and tracked tokens
- Timestamped line logging
- Live-updating watch table (price, 24h change, liquidity, position, PnL)
"""

from datetime import datetime
from typing import List, Optional

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from core.utils import calculate_percent_change, format_currency, format_number

# Global console instance
console = Console()


def ts() -> str:
    """Current timestamp string (HH:MM:SS)."""
    return datetime.now().strftime("%H:%M:%S")


def _signed_style(value: float) -> str:
    if value > 0:
        return "green"
    if value < 0:
        return "red"
    return "white"


def banner(app_name: str, run_id: str, tokens: List[str], refresh_interval_s: float):
    """
    Display startup banner.

    Args:
        app_name: Application name
        run_id: Run id stamped on every log record
        tokens: Token identifiers requested on the command line
        refresh_interval_s: Refresh cadence
    """
    content = Text()
    content.append(" 👀 Start • ", style="bold cyan")
    content.append(app_name, style="bold white")
    content.append("\n")
    content.append("Run-ID: ", style="dim white")
    content.append(run_id, style="bold cyan")
    content.append("    Refresh: ", style="dim white")
    content.append(f"{refresh_interval_s:g}s", style="cyan")
    content.append("\n")
    content.append("Tokens: ", style="dim white")
    content.append(str(len(tokens)), style="cyan")

    console.print(Panel(content, border_style="cyan", expand=False, padding=(0, 1)))
    console.print()


def line(label: str, msg: str):
    """
    Print timestamped log line with label.

    Args:
        label: Log label (e.g., "WATCH", "TRADE")
        msg: Log message
    """
    console.print(Text(ts(), style="dim"), Text(label, style="bold"), msg)


def print_trade_summary(symbol: str, side: str, token_amount: float, price: float, pnl: Optional[float] = None):
    """
    Print formatted trade summary.

    Args:
        symbol: Token symbol
        side: "buy" / "sell"
        token_amount: Tokens bought or sold
        price: Execution price
        pnl: Realized PnL (sells only)
    """
    side = side.upper()
    side_style = "green bold" if side == "BUY" else "red bold"

    parts = [
        Text("🔄 ", style="dim"),
        Text(side, style=side_style),
        Text(f" {format_number(token_amount, 4)} ", style="white"),
        Text(symbol, style="yellow bold"),
        Text(f" @ {format_currency(price)}", style="white"),
    ]
    if pnl is not None:
        parts.append(Text(f" | PnL: {format_currency(pnl)}", style=_signed_style(pnl) + " bold"))

    console.print(Text.assemble(*parts))


def _price_cell(price: float, history: List) -> Text:
    """Price plus change since the oldest retained point."""
    text = Text(format_currency(price, 6 if 0 < price < 1 else 2))
    if len(history) >= 2:
        change = calculate_percent_change(price, history[0][1])
        text.append(f" ({change:+.2f}%)", style=_signed_style(change))
    return text


def position_pnl_percent(position) -> float:
    """PnL relative to the money still at work: pnl / (value - pnl) * 100."""
    invested = position.holdings * position.current_price - position.pnl
    if invested <= 0:
        return 0.0
    return position.pnl / invested * 100


def render_watch(portfolio, market_data) -> Panel:
    """
    Render the watch table for every tracked token.

    Args:
        portfolio: PaperPortfolio
        market_data: MarketDataService (read-only cache access)

    Returns:
        Rich Panel with token table and portfolio summary
    """
    table = Table(
        show_header=True,
        header_style="bold cyan",
        border_style="blue",
        expand=True,
    )
    table.add_column("Token", style="bold yellow")
    table.add_column("Price", justify="right")
    table.add_column("24h", justify="right")
    table.add_column("Volume 24h", justify="right")
    table.add_column("Mkt Cap", justify="right")
    table.add_column("Liquidity", justify="right")
    table.add_column("Holdings", justify="right")
    table.add_column("PnL", justify="right")
    table.add_column("PnL %", justify="right")
    table.add_column("Updated", justify="right", style="dim")

    for position in portfolio.positions():
        snapshot = market_data.get_cached_snapshot(position.token_id)
        if snapshot is None:
            table.add_row(position.symbol or position.token_id[:10], "-", "-", "-", "-", "-",
                          format_number(position.holdings, 4), "-", "-", "-")
            continue

        history = portfolio.price_history.view(position.token_id)
        change = snapshot.price_change_24h
        pnl_pct = position_pnl_percent(position)
        table.add_row(
            snapshot.symbol or position.token_id[:10],
            _price_cell(snapshot.price_usd, history),
            Text(f"{change:+.2f}%", style=_signed_style(change)),
            format_currency(snapshot.volume_24h, 0),
            format_currency(snapshot.market_cap, 0),
            format_currency(snapshot.liquidity_usd, 0),
            format_number(position.holdings, 4),
            Text(format_currency(position.pnl), style=_signed_style(position.pnl)),
            Text(f"{pnl_pct:+.2f}%", style=_signed_style(pnl_pct)),
            datetime.fromtimestamp(snapshot.last_updated).strftime("%H:%M:%S"),
        )

    overall = portfolio.overall_pnl()
    summary = Text()
    summary.append("Balance: ", style="dim")
    summary.append(format_currency(portfolio.balance), style="bold")
    summary.append("    PnL: ", style="dim")
    summary.append(
        f"{format_currency(overall)} ({portfolio.overall_pnl_percent():+.2f}%)",
        style=_signed_style(overall) + " bold",
    )
    summary.append("    Trades: ", style="dim")
    summary.append(str(len(portfolio.trade_history())))

    return Panel(Group(table, summary), title=f"📈 Token Watch • {ts()}", border_style="cyan", expand=True)


class WatchView:
    """Live-updating watch table."""

    def __init__(self, portfolio, market_data, refresh_per_second: float = 1.0):
        self.portfolio = portfolio
        self.market_data = market_data
        self.refresh_per_second = refresh_per_second
        self._live: Optional[Live] = None

    def update(self):
        panel = render_watch(self.portfolio, self.market_data)
        if self._live is None:
            self._live = Live(panel, refresh_per_second=self.refresh_per_second, console=console)
            self._live.start()
        else:
            self._live.update(panel)

    def stop(self):
        """Stop live display."""
        if self._live:
            self._live.stop()
            self._live = None
