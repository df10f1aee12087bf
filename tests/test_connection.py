"""Tests for the feed connection: subscription sequencing, routing, reconnect."""

import asyncio

import pytest

from book_viewer.datafeed.connection import FeedConnection
from book_viewer.errors import FeedClosedError
from book_viewer.types import FeedError, FeedUnavailable, StreamReset, Ticker, Update

from fakes import FAST_BACKOFF, FakeSession, l2update, next_message, ticker, until


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
async def connection(session):
    conn = FeedConnection("wss://feed.test", session=session, backoff=FAST_BACKOFF, max_failures=3)
    yield conn
    await conn.aclose()


async def test_open_subscribes_and_starts_with_reset(connection, session):
    subscription = await connection.open("BTC-USD")

    assert await next_message(subscription) == StreamReset("BTC-USD")
    assert session.sockets[0].sent == [{
        "type": "subscribe",
        "product_ids": ["BTC-USD"],
        "channels": ["level2_batch", "ticker"],
    }]


async def test_frames_routed_in_order(connection, session):
    subscription = await connection.open("BTC-USD")
    await next_message(subscription)
    ws = session.sockets[0]

    ws.push(l2update("BTC-USD", ["buy", "100", "5"]))
    ws.push(ticker("BTC-USD"))
    ws.push({"type": "error", "message": "Failed", "reason": "throttled"})

    assert isinstance(await next_message(subscription), Update)
    assert isinstance(await next_message(subscription), Ticker)
    assert await next_message(subscription) == FeedError("Failed", "throttled")


async def test_frames_for_other_instruments_dropped(connection, session):
    subscription = await connection.open("BTC-USD")
    await next_message(subscription)
    ws = session.sockets[0]

    ws.push(l2update("ETH-USD", ["buy", "1", "1"]))
    ws.push(l2update("BTC-USD", ["buy", "2", "1"]))

    message = await next_message(subscription)
    assert message.instrument == "BTC-USD"


async def test_malformed_frames_counted_not_delivered(connection, session):
    subscription = await connection.open("BTC-USD")
    await next_message(subscription)
    ws = session.sockets[0]

    ws.push("{not json")
    ws.push({"type": "l2update", "product_id": "BTC-USD"})
    ws.push({"type": "heartbeat", "product_id": "BTC-USD"})
    ws.push(l2update("BTC-USD", ["sell", "3", "1"]))

    assert isinstance(await next_message(subscription), Update)
    assert connection.transport_errors == 2


async def test_reopen_unsubscribes_before_subscribing(connection, session):
    old = await connection.open("BTC-USD")
    await next_message(old)
    ws = session.sockets[0]

    new = await connection.reopen("ETH-USD")

    assert [(m["type"], m["product_ids"]) for m in ws.sent] == [
        ("subscribe", ["BTC-USD"]),
        ("unsubscribe", ["BTC-USD"]),
        ("subscribe", ["ETH-USD"]),
    ]
    assert old.closed
    with pytest.raises(StopAsyncIteration):
        await next_message(old)
    assert await next_message(new) == StreamReset("ETH-USD")
    assert connection.active_instrument == "ETH-USD"


async def test_close_stops_delivery_immediately(connection, session):
    subscription = await connection.open("BTC-USD")
    await next_message(subscription)
    ws = session.sockets[0]

    ws.push(l2update("BTC-USD", ["buy", "1", "1"]))
    await until(lambda: subscription._queue.qsize() == 1)

    await subscription.close()

    with pytest.raises(StopAsyncIteration):
        await next_message(subscription)
    assert ws.sent[-1]["type"] == "unsubscribe"
    assert connection.active_instrument is None


async def test_close_wakes_blocked_reader(connection):
    subscription = await connection.open("BTC-USD")
    await next_message(subscription)

    reader = asyncio.create_task(next_message(subscription))
    await asyncio.sleep(0)
    subscription.cancel()

    with pytest.raises(StopAsyncIteration):
        await reader


async def test_reconnect_resubscribes_and_resets(connection, session):
    subscription = await connection.open("BTC-USD")
    await next_message(subscription)

    session.sockets[0].drop()

    assert await next_message(subscription) == StreamReset("BTC-USD")
    assert len(session.sockets) == 2
    assert session.sockets[1].sent[0]["product_ids"] == ["BTC-USD"]
    assert connection.reconnects == 1


async def test_repeated_connect_failures_report_unavailable():
    session = FakeSession(failures=3)
    connection = FeedConnection("wss://feed.test", session=session, backoff=FAST_BACKOFF, max_failures=3)
    try:
        subscription = await connection.open("BTC-USD")

        assert await next_message(subscription) == FeedUnavailable(3)
        assert await next_message(subscription) == StreamReset("BTC-USD")
        assert session.connect_attempts == 4
        assert connection.transport_errors == 3
    finally:
        await connection.aclose()


async def test_sessions_closed_before_any_frame_count_as_failures():
    session = FakeSession(drops=3)
    connection = FeedConnection("wss://feed.test", session=session, backoff=FAST_BACKOFF, max_failures=3)
    try:
        subscription = await connection.open("BTC-USD")

        for _ in range(3):
            assert await next_message(subscription) == StreamReset("BTC-USD")
        assert await next_message(subscription) == FeedUnavailable(3)
        assert await next_message(subscription) == StreamReset("BTC-USD")
        assert session.connect_attempts == 4

        # A session that delivered a frame clears the streak
        session.sockets[3].push(l2update("BTC-USD", ["buy", "1", "1"]))
        assert isinstance(await next_message(subscription), Update)
        session.sockets[3].drop()

        assert await next_message(subscription) == StreamReset("BTC-USD")
        assert connection._failures == 0
        assert connection.reconnects == 4
    finally:
        await connection.aclose()


async def test_aclose_ends_iteration_and_rejects_open(session):
    connection = FeedConnection("wss://feed.test", session=session, backoff=FAST_BACKOFF)
    subscription = await connection.open("BTC-USD")
    await next_message(subscription)

    await connection.aclose()

    with pytest.raises(StopAsyncIteration):
        await next_message(subscription)
    with pytest.raises(FeedClosedError):
        await connection.open("ETH-USD")
    assert session.sockets[0].closed
    # Injected sessions belong to the caller
    assert not session.closed
