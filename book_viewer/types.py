"""
Data types for Book Viewer.

Notes:
- Using NamedTuple for immutable, memory-efficient structures
- Prices and sizes are Decimal end to end; the feed string-encodes them
- Message types are what the feed connection hands to its consumer
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, NamedTuple, Optional, Union


class Side(str, Enum):
    """Book side. Values match the feed's wire encoding."""
    BID = "buy"
    ASK = "sell"


class PriceLevel(NamedTuple):
    """Single price level from the order book."""
    price: Decimal
    size: Decimal


class BookState(NamedTuple):
    """
    Read-only view of both sides of the book: price -> size.

    No entry ever has size <= 0. Ordering is computed on read.
    """
    bids: Mapping[Decimal, Decimal]
    asks: Mapping[Decimal, Decimal]

    def side(self, side: Side) -> Mapping[Decimal, Decimal]:
        return self.bids if side is Side.BID else self.asks


class BookRow(NamedTuple):
    """One displayed ladder row with the running total up to and including it."""
    price: Decimal
    size: Decimal
    cumulative_size: Decimal


class TopOfBook(NamedTuple):
    """
    Best-of-book summary from the ticker stream.

    All fields are rounded to 2 decimal places. Spread may be negative.
    """
    best_bid: Decimal
    best_ask: Decimal
    best_bid_size: Decimal
    best_ask_size: Decimal
    spread: Decimal
    volume_24h: Decimal


class BookSpread(NamedTuple):
    """Spread derived from the L2 book itself."""
    spread: Decimal
    percentage: Decimal


# ---------------------------------------------------------------------------
# Decoded feed messages
# ---------------------------------------------------------------------------

class Change(NamedTuple):
    """Raw (side, price, size) triple as it arrived on the wire."""
    side: str
    price: Any
    size: Any


class Snapshot(NamedTuple):
    """Initial full book state for an instrument."""
    instrument: Optional[str]
    bids: list[tuple[Any, Any]]
    asks: list[tuple[Any, Any]]


class Update(NamedTuple):
    """Incremental change list, applied in order."""
    instrument: Optional[str]
    changes: list[Change]


class Ticker(NamedTuple):
    """Best-of-book fields, still string-encoded; validated by the tracker."""
    instrument: Optional[str]
    fields: Mapping[str, Any]


class FeedError(NamedTuple):
    """Error reported by the server. Display-only, never fatal."""
    message: str
    reason: Optional[str]


class SubscriptionAck(NamedTuple):
    """Server acknowledgement of the current channel subscriptions."""
    channels: list[Any]


class StreamReset(NamedTuple):
    """(Re)subscription completed; all derived state must start empty."""
    instrument: str


class FeedUnavailable(NamedTuple):
    """Reconnect has failed repeatedly; the feed keeps retrying."""
    attempts: int


FeedMessage = Union[
    Snapshot, Update, Ticker, FeedError, SubscriptionAck, StreamReset, FeedUnavailable,
]
