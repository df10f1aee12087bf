"""
Top-of-book tracker fed by the ticker channel.

Independent of the L2 store: best bid/ask here come straight from the feed's
ticker messages, not from the local book.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, DecimalException
from typing import Any, Mapping, NoReturn, Optional

from loguru import logger

from ..datafeed.codec import TICKER_FIELDS, parse_decimal
from ..errors import TickerValidationError
from ..types import TopOfBook

DISPLAY_PRECISION = Decimal("0.01")


def _display(value: Decimal) -> Decimal:
    return value.quantize(DISPLAY_PRECISION, rounding=ROUND_HALF_UP)


class TopOfBookTracker:
    """
    Holds the latest valid TopOfBook for the current instrument.

    A ticker with any unparseable or unrepresentable field is rejected as a
    whole and the prior value is kept.
    """

    __slots__ = ('_current', 'rejected')

    def __init__(self) -> None:
        self._current: Optional[TopOfBook] = None
        self.rejected: int = 0

    def apply_ticker(self, fields: Mapping[str, Any]) -> TopOfBook:
        """
        Validate and store a ticker message.

        Raises TickerValidationError if a required field is not a finite number
        or is too large to display at cent precision.
        """
        parsed: dict[str, Decimal] = {}
        shown: dict[str, Decimal] = {}
        for name in TICKER_FIELDS:
            raw = fields.get(name)
            value = parse_decimal(raw)
            if value is None:
                self._reject(name, raw)
            try:
                shown[name] = _display(value)
            except DecimalException as exc:
                self._reject(name, raw, exc)
            parsed[name] = value

        # Spread from unrounded inputs; negative values pass through
        try:
            spread = _display(parsed["best_ask"] - parsed["best_bid"])
        except DecimalException as exc:
            self._reject("best_ask", fields.get("best_ask"), exc)

        self._current = TopOfBook(spread=spread, **shown)
        if spread < 0:
            logger.debug("Crossed ticker: spread {}", spread)
        return self._current

    def _reject(self, name: str, raw: Any, cause: Optional[Exception] = None) -> NoReturn:
        self.rejected += 1
        raise TickerValidationError(name, raw) from cause

    def current(self) -> Optional[TopOfBook]:
        """Latest TopOfBook, or None before the first valid ticker."""
        return self._current

    def reset(self) -> None:
        self._current = None
        self.rejected = 0
