"""
Order book ladder TUI using Textual.

Displays:
- Top: instrument, ticker best bid/ask with sizes, spread, 24h volume
- Middle: asks (best at the bottom), book spread, bids (best at the top)
- Each row: price, size, cumulative size

Performance notes:
- Polls the client's read API at ~10 FPS instead of reacting to every message
- Rendering never touches the feed; every read works on a copied snapshot
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from rich.console import RenderableType
from rich.table import Table
from rich.text import Text

from textual.app import App, ComposeResult
from textual.containers import Container
from textual.widgets import Footer, Static

from ..types import Side

if TYPE_CHECKING:
    from ..datafeed.coinbase_client import CoinbaseBookClient
    from ..types import BookRow

# Color scheme (dark theme)
BID_COLOR = "#22c55e"
BID_BRIGHT = "bold #4ade80"
ASK_COLOR = "#ef4444"
ASK_BRIGHT = "bold #f87171"
HEADER_COLOR = "#94a3b8"
VOLUME_COLOR = "#f97316"

# Sizes above this render bright
SIZE_HIGHLIGHT = Decimal("10")
REFRESH_INTERVAL = 0.1


def format_size(size: Decimal) -> str:
    """Format a size for display."""
    return f"{size:.6f}"


def _row_style(row: BookRow, side: Side) -> str:
    bright = row.size > SIZE_HIGHLIGHT
    if side is Side.BID:
        return BID_BRIGHT if bright else BID_COLOR
    return ASK_BRIGHT if bright else ASK_COLOR


class LadderTable(Static):
    """Bid/ask ladder with cumulative totals."""

    DEFAULT_CSS = """
    LadderTable {
        width: 100%;
        height: 100%;
    }
    """

    def __init__(self, client: CoinbaseBookClient) -> None:
        super().__init__()
        self.client = client

    def render(self) -> RenderableType:
        bids = self.client.current_book(Side.BID)
        asks = self.client.current_book(Side.ASK)

        if not bids and not asks:
            error = self.client.current_error()
            if error:
                return Text("No Data available", style=ASK_COLOR)
            return Text("Waiting for data...", style="dim")

        table = Table(
            show_header=True,
            header_style=HEADER_COLOR,
            box=None,
            padding=(0, 1),
            collapse_padding=True,
        )
        table.add_column("Price", justify="left", width=14)
        table.add_column("Quantity", justify="right", width=16)
        table.add_column("Total", justify="right", width=16)

        # Both sides arrive highest price first; asks sit above the spread
        for row in asks:
            self._add_row(table, row, Side.ASK)

        spread = self.client.current_spread()
        if spread is not None:
            style = BID_COLOR if spread.spread >= 0 else ASK_COLOR
            table.add_row(
                Text("Spread", style=HEADER_COLOR),
                Text(f"{spread.spread}", style=style),
                Text(f"{spread.percentage}%", style=style),
            )
        else:
            table.add_row(Text("Spread", style=HEADER_COLOR), Text(""), Text(""))

        for row in bids:
            self._add_row(table, row, Side.BID)

        return table

    @staticmethod
    def _add_row(table: Table, row: BookRow, side: Side) -> None:
        style = _row_style(row, side)
        table.add_row(
            Text(f"{row.price:.2f}", style=style),
            Text(format_size(row.size), style=style),
            Text(format_size(row.cumulative_size), style=style),
        )


class StatusBar(Static):
    """Status bar showing instrument, top of book and aggregation."""

    DEFAULT_CSS = """
    StatusBar {
        dock: top;
        height: 3;
        padding: 0 2;
        background: #0f172a;
    }
    """

    def __init__(self, client: CoinbaseBookClient) -> None:
        super().__init__()
        self.client = client

    def render(self) -> RenderableType:
        client = self.client
        result = Text()
        result.append(f" {client.instrument} ", style="bold white on #1e40af")
        result.append("  ")

        error = client.current_error()
        tob = client.current_top_of_book()
        if error:
            result.append(error, style=ASK_COLOR)
        elif tob is None:
            result.append("Connecting...", style="dim")
        else:
            spread_style = BID_COLOR if tob.spread < 1 else ASK_COLOR
            parts = [
                ("Bid: ", "dim"), (f"${tob.best_bid}", BID_COLOR),
                (" x ", "dim"), (f"{tob.best_bid_size}", BID_COLOR),
                ("  Ask: ", "dim"), (f"${tob.best_ask}", ASK_COLOR),
                (" x ", "dim"), (f"{tob.best_ask_size}", ASK_COLOR),
                ("  Spread: ", "dim"), (f"{tob.spread}", spread_style),
                ("  24h Vol: ", "dim"), (f"{tob.volume_24h}", VOLUME_COLOR),
            ]
            for text, style in parts:
                result.append(text, style=style)

        options = " ".join(
            f"[{value}]" if value == client.current_aggregation() else str(value)
            for value in client.increment_options()
        )
        result.append("  │  Aggregation: ", style="dim")
        result.append(options, style="cyan")
        return result


class BookApp(App):
    """Main Book Viewer application."""

    CSS = """
    Screen {
        background: #0f172a;
    }

    #main-container {
        width: 100%;
        height: 100%;
        padding: 1 2;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("plus,equals_sign", "step_aggregation(1)", "Aggregation +"),
        ("minus", "step_aggregation(-1)", "Aggregation -"),
        ("n", "cycle_instrument(1)", "Next pair"),
        ("p", "cycle_instrument(-1)", "Prev pair"),
    ]

    def __init__(self, client: CoinbaseBookClient) -> None:
        super().__init__()
        self.client = client
        self._status_bar = StatusBar(client)
        self._ladder = LadderTable(client)

    def compose(self) -> ComposeResult:
        yield self._status_bar
        yield Container(self._ladder, id="main-container")
        yield Footer()

    async def on_mount(self) -> None:
        self.set_interval(REFRESH_INTERVAL, self._refresh_views)
        self.run_worker(self.client.load_instruments(), exclusive=True)

    def _refresh_views(self) -> None:
        self._status_bar.refresh()
        self._ladder.refresh()

    def action_step_aggregation(self, direction: int) -> None:
        self.client.step_aggregation(direction)
        self._refresh_views()

    async def action_cycle_instrument(self, direction: int) -> None:
        instruments = self.client.instruments()
        if not instruments:
            return
        try:
            index = instruments.index(self.client.instrument) + direction
        except ValueError:
            index = 0
        await self.client.select_instrument(instruments[index % len(instruments)])
        self._refresh_views()


async def run_ui(client: CoinbaseBookClient) -> None:
    """Run the TUI application."""
    app = BookApp(client)
    await app.run_async()
