"""
Coinbase Exchange book client with async orchestration.

Handles:
1. Dispatching decoded feed messages to the order book and ticker tracker
2. Instrument switching (reset, then unsubscribe-then-subscribe)
3. Aggregation increment selection
4. The read API the projector polls

Notes:
- The dispatch loop is the only writer of OrderBookStore / TopOfBookTracker
- Read methods project from a copied snapshot and never block the feed
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Optional

import aiohttp
from loguru import logger

from ..config import EngineConfig, check_increment
from ..engine.aggregation import (
    book_spread,
    increment_options,
    project,
    step_increment,
    top_levels,
)
from ..engine.ticker import TopOfBookTracker
from ..errors import TickerValidationError
from ..types import (
    BookRow,
    BookSpread,
    FeedError,
    FeedMessage,
    FeedUnavailable,
    Side,
    Snapshot,
    StreamReset,
    SubscriptionAck,
    Ticker,
    TopOfBook,
    Update,
)
from .codec import parse_decimal
from .connection import FeedConnection, Subscription
from .instruments import fetch_instruments
from .orderbook import OrderBookStore

INVALID_TICKER_MESSAGE = "Invalid data format"
UNAVAILABLE_MESSAGE = "Feed unavailable"
NO_REASON = "No reason provided"


class CoinbaseBookClient:
    """
    Async client maintaining a live L2 book + top of book for one instrument.

    Usage:
        client = CoinbaseBookClient(EngineConfig(instrument="ETH-USD"))
        feed_task = asyncio.create_task(client.run())
        ...
        rows = client.current_book(Side.BID)
        await client.select_instrument("BTC-USD")
        ...
        client.stop()
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        connection: Optional[FeedConnection] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.config = config or EngineConfig()
        self._session = session

        # Core components
        self.orderbook = OrderBookStore()
        self.top_of_book = TopOfBookTracker()
        self.connection = connection or FeedConnection(
            self.config.ws_url,
            channels=self.config.channels,
            backoff=self.config.backoff,
            max_failures=self.config.max_reconnect_failures,
            session=session,
        )

        # State
        self._instrument = self.config.instrument
        self._increment = self.config.increment
        self._error: Optional[str] = None
        self._instruments: list[str] = []
        self._subscription: Optional[Subscription] = None
        self._switched = asyncio.Event()
        self._running = False

        self.messages_dispatched: int = 0

    # ------------------------------------------------------------------
    # Read API
    # ------------------------------------------------------------------

    @property
    def instrument(self) -> str:
        return self._instrument

    def current_book(self, side: Side) -> list[BookRow]:
        """Top `depth` rows of one side at the active increment."""
        bucketed = project(self.orderbook.snapshot(), self._increment)
        return top_levels(bucketed.side(side), self.config.depth)

    def current_aggregation(self) -> Decimal:
        return self._increment

    def increment_options(self) -> list[Decimal]:
        return increment_options(self._increment, self.config.increments)

    def current_top_of_book(self) -> Optional[TopOfBook]:
        return self.top_of_book.current()

    def current_error(self) -> Optional[str]:
        return self._error

    def current_spread(self) -> Optional[BookSpread]:
        """Spread of the raw L2 book (not the ticker)."""
        return book_spread(self.orderbook.snapshot())

    def instruments(self) -> list[str]:
        return list(self._instruments)

    # ------------------------------------------------------------------
    # Mutators
    # ------------------------------------------------------------------

    def set_aggregation_increment(self, value: Decimal | str | int) -> Decimal:
        """
        Set the bucket width. 0 or any value in [MIN_PRICE, MAX_MAGNITUDE] is
        accepted; anything else raises ValueError and keeps the current one.
        """
        increment = parse_decimal(value)
        if increment is None:
            raise ValueError(f"Invalid aggregation increment: {value!r}")
        self._increment = check_increment(increment)
        logger.info("Aggregation increment set to {}", increment)
        return increment

    def step_aggregation(self, direction: int) -> Decimal:
        """Move to the adjacent canonical increment (+1 up, -1 down)."""
        return self.set_aggregation_increment(
            step_increment(self._increment, direction, self.config.increments)
        )

    async def select_instrument(self, instrument: str) -> None:
        """Discard all book state and resubscribe to `instrument`."""
        current = self._subscription
        if instrument == self._instrument and current is not None and not current.closed:
            return

        logger.info("Switching instrument {} -> {}", self._instrument, instrument)
        self._instrument = instrument
        self._reset_state()
        self._subscription = await self.connection.reopen(instrument)
        self._switched.set()

    async def load_instruments(self) -> list[str]:
        """Populate the selectable instrument list. Empty on failure."""
        self._instruments = await fetch_instruments(self.config.rest_url, session=self._session)
        return self.instruments()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _reset_state(self) -> None:
        self.orderbook.reset()
        self.top_of_book.reset()
        self._error = None

    def dispatch(self, message: FeedMessage) -> None:
        """
        Apply one decoded message to the stores.

        HOT PATH - called for every delivered message.
        """
        self.messages_dispatched += 1

        if isinstance(message, Update):
            self.orderbook.apply_update(message.changes)
            self._error = None
        elif isinstance(message, Ticker):
            try:
                self.top_of_book.apply_ticker(message.fields)
            except TickerValidationError as exc:
                logger.warning("Rejected ticker for {}: {}", self._instrument, exc)
                self._error = INVALID_TICKER_MESSAGE
        elif isinstance(message, Snapshot):
            self.orderbook.load_snapshot(message.bids, message.asks)
        elif isinstance(message, FeedError):
            self._error = f"{message.message} - {message.reason or NO_REASON}"
            logger.warning("Feed error: {}", self._error)
        elif isinstance(message, StreamReset):
            logger.info("Stream (re)started for {}, resetting book", message.instrument)
            self._reset_state()
        elif isinstance(message, FeedUnavailable):
            self._error = UNAVAILABLE_MESSAGE
        elif isinstance(message, SubscriptionAck):
            logger.debug("Subscription acknowledged: {}", message.channels)

    async def run(self) -> None:
        """
        Main run loop. Subscribes and dispatches until stop() is called.

        Follows instrument switches made through select_instrument().
        """
        self._running = True
        if self._subscription is None:
            self._subscription = await self.connection.open(self._instrument)

        try:
            while self._running:
                subscription = self._subscription
                self._switched.clear()

                async for message in subscription:
                    self.dispatch(message)

                if self._running and self._subscription is subscription:
                    # Closed without a replacement yet
                    await self._switched.wait()
        finally:
            await self.connection.aclose()

    def stop(self) -> None:
        """Signal the client to stop."""
        self._running = False
        if self._subscription is not None:
            self._subscription.cancel()
        self._switched.set()
