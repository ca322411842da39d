"""
Rich tables for scheduler status and grid inspection.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from rich.console import Console
from rich.table import Table
from rich.text import Text

from strategies.implementations.grid.grid_engine import GridEngine
from strategies.implementations.grid.models import WEI_PER_ETH, GridPosition, PositionStatus


STATUS_STYLES = {
    PositionStatus.EMPTY: "dim",
    PositionStatus.HOLDING: "bold yellow",
    PositionStatus.SOLD: "green",
}


def format_wei(amount: Optional[int], places: int = 6) -> str:
    if amount is None:
        return "-"
    return f"{Decimal(amount) / WEI_PER_ETH:.{places}f}"


def _profit_text(amount_wei: int) -> Text:
    if amount_wei > 0:
        return Text(f"+{format_wei(amount_wei)}", style="bold green")
    if amount_wei < 0:
        return Text(format_wei(amount_wei), style="bold red")
    return Text(format_wei(0), style="dim")


def build_scheduler_table(status: Dict[str, Any]) -> Table:
    """One row per strategy from ``CycleScheduler.get_status()``."""
    running = "[green]running[/green]" if status.get("is_running") else "[red]stopped[/red]"
    table = Table(
        title=f"[bold cyan]Grid Bots[/bold cyan] ({running}, {status.get('heartbeat_ms')}ms heartbeat)",
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("Bot", style="cyan", no_wrap=True)
    table.add_column("Token", style="yellow")
    table.add_column("State")
    table.add_column("Holding", justify="right")
    table.add_column("Buys", justify="right")
    table.add_column("Sells", justify="right")
    table.add_column("Profit (ETH)", justify="right")
    table.add_column("Price", justify="right", style="yellow")
    table.add_column("Errors", justify="right")

    strategies = status.get("strategies") or []
    if not strategies:
        table.add_row("", "", "[dim]No bots loaded[/dim]", "", "", "", "", "", "")
        return table

    for entry in strategies:
        state = "[green]running[/green]" if entry.get("is_running") else "[red]stopped[/red]"
        price = entry.get("current_price")
        table.add_row(
            f"{entry.get('name')} ({entry.get('id')})",
            str(entry.get("token_symbol", "")),
            state,
            f"{entry.get('holding_positions', 0)}/{entry.get('total_positions', 0)}",
            str(entry.get("total_buys", 0)),
            str(entry.get("total_sells", 0)),
            _profit_text(int(entry.get("total_profit_eth") or 0)),
            GridEngine.format_price(price) if price else "-",
            str(entry.get("consecutive_errors", 0)),
        )
    return table


def build_grid_table(positions: Iterable[GridPosition], current_price: Optional[Decimal] = None) -> Table:
    """One row per grid position, highest range first."""
    table = Table(title="[bold cyan]Grid Positions[/bold cyan]", show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right", style="cyan")
    table.add_column("Buy Range", no_wrap=True)
    table.add_column("Sell", justify="right")
    table.add_column("Stop", justify="right")
    table.add_column("Status")
    table.add_column("Cost (ETH)", justify="right")
    table.add_column("Profit (ETH)", justify="right")

    for position in sorted(positions, key=lambda p: p.buy_min, reverse=True):
        marker = " <" if current_price is not None and position.contains(current_price) else ""
        table.add_row(
            str(position.id),
            GridEngine.format_price_range(position.buy_min, position.buy_max) + marker,
            GridEngine.format_price(position.sell_price),
            GridEngine.format_price(position.stop_loss_price) if position.stop_loss_price > 0 else "-",
            Text(position.status.value, style=STATUS_STYLES[position.status]),
            format_wei(position.eth_cost),
            _profit_text(position.profit_eth) if position.profit_eth is not None else "-",
        )
    return table


def print_status(status: Dict[str, Any], console: Optional[Console] = None) -> None:
    (console or Console()).print(build_scheduler_table(status))
