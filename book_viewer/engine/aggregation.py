"""
Price aggregation engine.

Pure functions over a BookState: nothing here holds state, so any number of
readers may call them concurrently on the same snapshot.

Strategy:
1. Bucket every raw level with floor(price / increment) * increment
2. Sum sizes that land in the same bucket (never overwrite)
3. Sort and truncate only on read, per side
"""

from __future__ import annotations

from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal, localcontext
from types import MappingProxyType
from typing import Mapping, Sequence

from ..config import CANONICAL_INCREMENTS, DEFAULT_DEPTH, check_increment
from ..types import BookRow, BookSpread, BookState

ZERO = Decimal("0")
CENT = Decimal("0.01")
# Enough digits for a cent-quantized ratio of any in-range price pair
SPREAD_PRECISION = 60


def bucket_price(price: Decimal, increment: Decimal) -> Decimal:
    """Lower edge of the bucket containing `price`. Identity for increment 0."""
    if increment == 0:
        return price
    return (price / increment).to_integral_value(rounding=ROUND_FLOOR) * increment


def _aggregate_side(levels: Mapping[Decimal, Decimal], increment: Decimal) -> dict[Decimal, Decimal]:
    bins: dict[Decimal, Decimal] = {}
    for price, size in levels.items():
        bucket = bucket_price(price, increment)
        bins[bucket] = bins.get(bucket, ZERO) + size
    return bins


def project(state: BookState, increment: Decimal) -> BookState:
    """
    Bucket both sides of `state` at `increment`.

    With increment 0 the raw state is returned unchanged. Total size per side
    is conserved for any increment. Raises ValueError for a negative or
    out-of-range increment.
    """
    check_increment(increment)
    if increment == 0:
        return state

    return BookState(
        bids=MappingProxyType(_aggregate_side(state.bids, increment)),
        asks=MappingProxyType(_aggregate_side(state.asks, increment)),
    )


def top_levels(
    levels: Mapping[Decimal, Decimal],
    depth: int = DEFAULT_DEPTH,
) -> list[BookRow]:
    """
    Top `depth` levels of one side, highest price first, with running
    cumulative size.

    Both sides use the same descending rule. The cumulative total covers only
    the returned rows.
    """
    prices = sorted(levels, reverse=True)[:depth]

    rows: list[BookRow] = []
    total = ZERO
    for price in prices:
        size = levels[price]
        total += size
        rows.append(BookRow(price, size, total))
    return rows


def increment_options(
    active: Decimal,
    canonical: Sequence[Decimal] = CANONICAL_INCREMENTS,
) -> list[Decimal]:
    """Selectable increments, ascending, always including `active`."""
    options = set(canonical)
    options.add(active)
    return sorted(options)


def step_increment(
    active: Decimal,
    direction: int,
    canonical: Sequence[Decimal] = CANONICAL_INCREMENTS,
) -> Decimal:
    """
    Move to the adjacent canonical increment.

    direction > 0 steps up, direction < 0 steps down. The result is clamped to
    [0, max(canonical)]; an off-list active value snaps to its neighbour.
    """
    ordered = sorted(canonical)
    ceiling = ordered[-1]

    if direction > 0:
        above = [value for value in ordered if value > active]
        result = above[0] if above else ceiling
    elif direction < 0:
        below = [value for value in ordered if value < active]
        result = below[-1] if below else ZERO
    else:
        result = active

    return min(max(result, ZERO), ceiling)


def book_spread(state: BookState) -> BookSpread | None:
    """
    Spread between best ask and best bid of the raw book.

    Percentage is relative to the best ask. None while either side is empty.
    """
    if not state.bids or not state.asks:
        return None

    best_bid = max(state.bids)
    best_ask = min(state.asks)
    with localcontext() as ctx:
        ctx.prec = SPREAD_PRECISION
        spread = best_ask - best_bid
        percentage = spread / best_ask * 100
        return BookSpread(
            spread=spread.quantize(CENT, rounding=ROUND_HALF_UP),
            percentage=percentage.quantize(CENT, rounding=ROUND_HALF_UP),
        )
