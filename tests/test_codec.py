"""Tests for the feed wire codec."""

from decimal import Decimal

import orjson
import pytest

from book_viewer.datafeed.codec import (
    decode_frame,
    parse_decimal,
    subscribe_message,
    unsubscribe_message,
)
from book_viewer.errors import MalformedFrameError
from book_viewer.types import (
    Change,
    FeedError,
    Snapshot,
    SubscriptionAck,
    Ticker,
    Update,
)


def frame(**payload) -> str:
    return orjson.dumps(payload).decode()


@pytest.mark.parametrize("value,expected", [
    ("100.50", Decimal("100.50")),
    ("0", Decimal("0")),
    (3, Decimal("3")),
    (0.1, Decimal("0.1")),
    ("NaN", None),
    ("inf", None),
    ("abc", None),
    ("", None),
    (None, None),
    (True, None),
    ([1], None),
])
def test_parse_decimal(value, expected):
    assert parse_decimal(value) == expected


@pytest.mark.parametrize("msg_type", ["l2update", "update"])
def test_decode_update(msg_type):
    message = decode_frame(frame(
        type=msg_type,
        product_id="BTC-USD",
        changes=[["buy", "100.00", "5"], ["sell", "101", "0"], ["short"]],
    ))

    assert message == Update("BTC-USD", [Change("buy", "100.00", "5"), Change("sell", "101", "0")])


def test_decode_ticker_keeps_strings():
    message = decode_frame(frame(type="ticker", product_id="ETH-USD", best_bid="1", best_ask="2", price="1.5"))

    assert isinstance(message, Ticker)
    assert message.instrument == "ETH-USD"
    assert message.fields["best_bid"] == "1"
    assert message.fields["volume_24h"] is None
    assert "price" not in message.fields


def test_decode_snapshot():
    message = decode_frame(frame(type="snapshot", product_id="BTC-USD", bids=[["1", "2"]], asks=[["3", "4"]]))

    assert message == Snapshot("BTC-USD", [("1", "2")], [("3", "4")])


def test_decode_error_with_and_without_reason():
    assert decode_frame(frame(type="error", message="Failed", reason="bad product")) == FeedError("Failed", "bad product")
    assert decode_frame(frame(type="error", message="Failed")) == FeedError("Failed", None)


def test_decode_subscription_ack():
    message = decode_frame(frame(type="subscriptions", channels=[{"name": "ticker"}]))

    assert message == SubscriptionAck([{"name": "ticker"}])


def test_unknown_type_ignored():
    assert decode_frame(frame(type="heartbeat", product_id="BTC-USD")) is None


@pytest.mark.parametrize("raw", [
    "not json",
    "[1, 2]",
    frame(product_id="BTC-USD"),
    frame(type="l2update", product_id="BTC-USD"),
    frame(type="l2update", changes="buy"),
    frame(type="snapshot", bids={}),
    frame(type="error", reason="no message"),
])
def test_malformed_frames_raise(raw):
    with pytest.raises(MalformedFrameError):
        decode_frame(raw)


def test_subscribe_and_unsubscribe_messages():
    sub = orjson.loads(subscribe_message("BTC-USD", ["level2_batch", "ticker"]))
    unsub = orjson.loads(unsubscribe_message("BTC-USD", ("ticker",)))

    assert sub == {"type": "subscribe", "product_ids": ["BTC-USD"], "channels": ["level2_batch", "ticker"]}
    assert unsub == {"type": "unsubscribe", "product_ids": ["BTC-USD"], "channels": ["ticker"]}
