#!/usr/bin/env python3
"""
Book Viewer - Real-time L2 order book for the Coinbase Exchange feed.

Usage:
    python -m book_viewer.main BTC-USD --increment 0.05 --depth 20

    Headless (log top of book instead of drawing the ladder):
    python -m book_viewer.main ETH-USD --no-ui

Controls:
    q     - Quit
    + / - - Step aggregation increment
    n / p - Next / previous instrument
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from decimal import Decimal, InvalidOperation

from loguru import logger

from .config import DEFAULT_DEPTH, EngineConfig, check_increment, setup_logging
from .types import Side

LOG_FILE = "book_viewer.log"


async def log_top_of_book(client, interval: float = 1.0) -> None:
    """Headless projector: log the derived view periodically."""
    while True:
        await asyncio.sleep(interval)
        tob = client.current_top_of_book()
        bids = client.current_book(Side.BID)
        asks = client.current_book(Side.ASK)
        logger.info(
            "{} | tob={} | book best bid={} ask={} | levels bid={} ask={} | agg={} | error={}",
            client.instrument, tob, client.orderbook.best_bid, client.orderbook.best_ask,
            len(bids), len(asks),
            client.current_aggregation(), client.current_error(),
        )


async def main(config: EngineConfig, headless: bool = False) -> None:
    """Main entry point - runs data feed and UI concurrently."""

    # Import here to avoid slow startup for --help
    from .datafeed.coinbase_client import CoinbaseBookClient

    logger.info(
        "Starting Book Viewer for {} (increment={}, depth={})",
        config.instrument, config.increment, config.depth,
    )

    client = CoinbaseBookClient(config)
    feed_task = asyncio.create_task(client.run())

    try:
        if headless:
            await client.load_instruments()
            await log_top_of_book(client)
        else:
            from .ui.book_view import run_ui

            # Run UI (blocks until quit)
            await run_ui(client)
    finally:
        client.stop()
        try:
            await feed_task
        except asyncio.CancelledError:
            pass


def _increment_arg(value: str) -> Decimal:
    try:
        result = Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}")
    try:
        return check_increment(result)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Book Viewer - Real-time L2 order book for Coinbase Exchange",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m book_viewer.main BTC-USD
    python -m book_viewer.main ETH-USD --increment 0.05
    python -m book_viewer.main SOL-USD --no-ui --log-level DEBUG
        """
    )

    parser.add_argument(
        "instrument",
        nargs="?",
        default="BTC-USD",
        help="Instrument id (default: BTC-USD)"
    )

    parser.add_argument(
        "--increment",
        type=_increment_arg,
        default=Decimal("0"),
        help="Price aggregation increment, 0 = none (default: 0)"
    )

    parser.add_argument(
        "--depth",
        type=int,
        default=DEFAULT_DEPTH,
        help=f"Levels shown per side (default: {DEFAULT_DEPTH})"
    )

    parser.add_argument(
        "--max-failures",
        type=int,
        default=5,
        help="Reconnect failures before the feed is reported unavailable (default: 5)"
    )

    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Log level (default: INFO)"
    )

    parser.add_argument(
        "--no-ui",
        action="store_true",
        help="Log the derived view instead of running the terminal UI"
    )

    return parser


def cli() -> None:
    """CLI entry point."""
    args = build_parser().parse_args()

    config = EngineConfig(
        instrument=args.instrument,
        depth=args.depth,
        increment=args.increment,
        max_reconnect_failures=args.max_failures,
        log_level=args.log_level,
    )

    # The TUI owns the terminal, so logs go to a file there
    setup_logging(config.log_level, sink=None if args.no_ui else LOG_FILE)

    try:
        asyncio.run(main(config, headless=args.no_ui))
    except KeyboardInterrupt:
        print("\nShutdown requested.")
        sys.exit(0)


if __name__ == "__main__":
    cli()
