"""
Wire codec for the Coinbase Exchange WebSocket feed.

Decodes JSON text frames into the message NamedTuples in ..types and encodes
subscribe/unsubscribe intents. Numeric fields stay string-encoded here;
parsing to Decimal happens where the values are applied.

HOT PATH: decode_frame() runs for every inbound frame.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional

import orjson

from ..errors import MalformedFrameError
from ..types import (
    Change,
    FeedError,
    FeedMessage,
    Snapshot,
    SubscriptionAck,
    Ticker,
    Update,
)

UPDATE_TYPES = frozenset({"l2update", "update"})
TICKER_FIELDS = ("best_bid", "best_ask", "best_bid_size", "best_ask_size", "volume_24h")


def parse_decimal(value: Any) -> Optional[Decimal]:
    """Parse a wire number into a finite Decimal. Returns None on failure."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, float):
        value = repr(value)
    try:
        result = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        return None
    if not result.is_finite():
        return None
    return result


def _pairs(data: dict, key: str) -> list[tuple[Any, Any]]:
    raw = data.get(key, [])
    if not isinstance(raw, list):
        raise MalformedFrameError(f"snapshot field {key!r} is not a list")
    # Keep only well-shaped pairs; bad numbers are filtered by the store
    return [(entry[0], entry[1]) for entry in raw if isinstance(entry, (list, tuple)) and len(entry) >= 2]


def _changes(data: dict) -> list[Change]:
    raw = data.get("changes")
    if not isinstance(raw, list):
        raise MalformedFrameError("update frame without a 'changes' list")
    return [
        Change(entry[0], entry[1], entry[2])
        for entry in raw
        if isinstance(entry, (list, tuple)) and len(entry) >= 3
    ]


def decode_frame(raw: str | bytes) -> Optional[FeedMessage]:
    """
    Decode one inbound frame.

    Returns None for frame types the engine does not consume (heartbeats,
    status, ...). Raises MalformedFrameError for unparseable or schema-invalid
    frames.
    """
    try:
        data = orjson.loads(raw)
    except orjson.JSONDecodeError as exc:
        raise MalformedFrameError(f"invalid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise MalformedFrameError("frame is not a JSON object")

    msg_type = data.get("type")
    if not isinstance(msg_type, str):
        raise MalformedFrameError("frame has no 'type' discriminator")

    instrument = data.get("product_id")

    if msg_type in UPDATE_TYPES:
        return Update(instrument, _changes(data))

    if msg_type == "ticker":
        return Ticker(instrument, {name: data.get(name) for name in TICKER_FIELDS})

    if msg_type == "snapshot":
        return Snapshot(instrument, _pairs(data, "bids"), _pairs(data, "asks"))

    if msg_type == "error":
        message = data.get("message")
        if not isinstance(message, str):
            raise MalformedFrameError("error frame without a 'message'")
        reason = data.get("reason")
        return FeedError(message, reason if isinstance(reason, str) and reason else None)

    if msg_type == "subscriptions":
        channels = data.get("channels", [])
        return SubscriptionAck(channels if isinstance(channels, list) else [])

    return None


def _channel_message(msg_type: str, instrument: str, channels: Iterable[str]) -> str:
    payload = {
        "type": msg_type,
        "product_ids": [instrument],
        "channels": list(channels),
    }
    return orjson.dumps(payload).decode()


def subscribe_message(instrument: str, channels: Iterable[str]) -> str:
    """Build the subscribe frame for one instrument."""
    return _channel_message("subscribe", instrument, channels)


def unsubscribe_message(instrument: str, channels: Iterable[str]) -> str:
    """Build the unsubscribe frame for one instrument."""
    return _channel_message("unsubscribe", instrument, channels)
