"""
Local L2 order book for the Coinbase Exchange feed.

HOT PATH: apply_update() is called for every l2update frame, potentially many
per second with batched changes.

Strategy:
1. dict[Decimal, Decimal] per side for O(1) lookup/update of individual prices
2. No ordering at rest; sorting happens on read (see engine.aggregation)
3. A size of zero deletes the level, so no stored size is ever <= 0
4. Bad entries are skipped one at a time and never abort the batch
5. Prices and sizes outside [MIN_PRICE, MAX_MAGNITUDE] count as bad entries
"""

from __future__ import annotations

from decimal import Decimal
from types import MappingProxyType
from typing import Any, Iterable, Optional

from loguru import logger

from ..config import MAX_MAGNITUDE, MIN_PRICE
from ..types import BookState, Change, PriceLevel, Side
from .codec import parse_decimal

_SIDES = {side.value: side for side in Side}


class OrderBookStore:
    """
    Price -> size mappings for both sides, mutated by feed messages only.

    Thread-safety: NOT thread-safe. Designed for single-threaded async use.
    """

    __slots__ = ('bids', 'asks', 'skipped_entries', '_update_count')

    def __init__(self) -> None:
        # Core data: price -> size
        self.bids: dict[Decimal, Decimal] = {}
        self.asks: dict[Decimal, Decimal] = {}

        # Entries dropped for bad side/price/size since the last reset
        self.skipped_entries: int = 0
        self._update_count: int = 0

    def _side(self, side: Side) -> dict[Decimal, Decimal]:
        return self.bids if side is Side.BID else self.asks

    def _apply_one(self, book: dict[Decimal, Decimal], price_raw: Any, size_raw: Any) -> bool:
        price = parse_decimal(price_raw)
        size = parse_decimal(size_raw)
        if (
            price is None or size is None
            or not MIN_PRICE <= price <= MAX_MAGNITUDE
            or not 0 <= size <= MAX_MAGNITUDE
        ):
            self.skipped_entries += 1
            return False

        if size == 0:
            book.pop(price, None)
        else:
            book[price] = size
        return True

    def apply_update(self, changes: Iterable[Change | tuple[Any, Any, Any]]) -> int:
        """
        Apply an incremental change list in order. Later entries win.

        HOT PATH.

        Returns the number of entries applied.
        """
        applied = 0
        for side_raw, price_raw, size_raw in changes:
            side = _SIDES.get(side_raw) if isinstance(side_raw, str) else None
            if side is None:
                self.skipped_entries += 1
                continue
            if self._apply_one(self._side(side), price_raw, size_raw):
                applied += 1

        self._update_count += 1
        if applied == 0:
            logger.debug("Update #{} applied no entries", self._update_count)
        return applied

    def load_snapshot(
        self,
        bids: Iterable[tuple[Any, Any]],
        asks: Iterable[tuple[Any, Any]],
    ) -> None:
        """Replace the book with a full snapshot. Zero sizes are dropped."""
        self.reset()
        for price_raw, size_raw in bids:
            self._apply_one(self.bids, price_raw, size_raw)
        for price_raw, size_raw in asks:
            self._apply_one(self.asks, price_raw, size_raw)
        logger.debug("Snapshot loaded: {} bids, {} asks", len(self.bids), len(self.asks))

    def reset(self) -> None:
        """Clear both sides. Called on instrument switch and reconnect."""
        self.bids.clear()
        self.asks.clear()
        self.skipped_entries = 0
        self._update_count = 0

    def snapshot(self) -> BookState:
        """
        Current book as read-only mappings.

        Copies are taken so readers can project while the feed keeps mutating.
        """
        return BookState(
            bids=MappingProxyType(dict(self.bids)),
            asks=MappingProxyType(dict(self.asks)),
        )

    @property
    def best_bid(self) -> Optional[PriceLevel]:
        """Highest bid level, or None if no bids."""
        if not self.bids:
            return None
        price = max(self.bids)
        return PriceLevel(price, self.bids[price])

    @property
    def best_ask(self) -> Optional[PriceLevel]:
        """Lowest ask level, or None if no asks."""
        if not self.asks:
            return None
        price = min(self.asks)
        return PriceLevel(price, self.asks[price])

    @property
    def update_count(self) -> int:
        """Update messages applied since the last reset."""
        return self._update_count

    def __len__(self) -> int:
        return len(self.bids) + len(self.asks)
