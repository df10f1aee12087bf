"""
Duplex WebSocket connection to the market-data feed.

Handles:
1. One long-lived transport shared across instrument switches
2. Unsubscribe-then-subscribe sequencing on reopen()
3. Reconnect with exponential backoff after transport close or error
4. Per-subscription message queues that go silent the moment close() is called

Every (re)subscription starts with a StreamReset message. There is no
sequence-gap detection, so the consumer must rebuild from empty each time.

Usage:
    connection = FeedConnection(WS_URL)
    subscription = await connection.open("BTC-USD")
    async for message in subscription:
        ...
    await connection.aclose()
"""

from __future__ import annotations

import asyncio
from typing import Iterable, Optional

import aiohttp
from loguru import logger

from ..config import DEFAULT_CHANNELS, BackoffPolicy
from ..errors import FeedClosedError, MalformedFrameError
from ..types import FeedMessage, FeedUnavailable, StreamReset
from .codec import decode_frame, subscribe_message, unsubscribe_message

TRANSPORT_ERRORS = (aiohttp.ClientError, OSError, asyncio.TimeoutError)

_CLOSED = object()


class Subscription:
    """
    Handle for one instrument's message stream.

    Async-iterable and potentially infinite. Iteration ends as soon as the
    handle is closed, even if messages are still queued.
    """

    def __init__(self, connection: FeedConnection, instrument: str) -> None:
        self.instrument = instrument
        self._connection = connection
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _deliver(self, message: FeedMessage) -> None:
        if not self._closed:
            self._queue.put_nowait(message)

    def cancel(self) -> None:
        """Stop delivery immediately without touching the transport."""
        if self._closed:
            return
        self._closed = True
        # Drop whatever is pending, then wake a blocked reader
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    async def close(self) -> None:
        """Stop delivery and unsubscribe on the shared transport."""
        already_closed = self._closed
        self.cancel()
        if not already_closed:
            await self._connection._release(self)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> FeedMessage:
        if self._closed:
            raise StopAsyncIteration
        message = await self._queue.get()
        if message is _CLOSED or self._closed:
            raise StopAsyncIteration
        return message

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<Subscription {self.instrument} {state} pending={self._queue.qsize()}>"


class FeedConnection:
    """
    Owns the WebSocket transport and at most one active subscription.

    Thread-safety: NOT thread-safe. Designed for single-threaded async use.
    """

    def __init__(
        self,
        url: str,
        channels: Iterable[str] = DEFAULT_CHANNELS,
        backoff: Optional[BackoffPolicy] = None,
        max_failures: int = 5,
        session: Optional[aiohttp.ClientSession] = None,
        heartbeat: float = 30.0,
    ) -> None:
        self.url = url
        self.channels = tuple(channels)
        self.backoff = backoff or BackoffPolicy()
        self.max_failures = max_failures
        self.heartbeat = heartbeat

        self._session = session
        self._owns_session = session is None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._active: Optional[Subscription] = None
        self._task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self._closed = False
        self._failures = 0

        # Counters
        self.transport_errors: int = 0
        self.reconnects: int = 0
        self.frames_received: int = 0

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    @property
    def active_instrument(self) -> Optional[str]:
        return self._active.instrument if self._active is not None else None

    # ------------------------------------------------------------------
    # Subscription management
    # ------------------------------------------------------------------

    async def open(self, instrument: str) -> Subscription:
        """
        Subscribe to `instrument`, closing any current subscription first.

        The previous handle stops delivering before the unsubscribe is sent,
        and the new subscribe is only sent after that.
        """
        if self._closed:
            raise FeedClosedError("feed connection is closed")

        async with self._lock:
            previous = self._active
            if previous is not None:
                self._active = None
                previous.cancel()
                await self._send_unsubscribe(previous.instrument)

            subscription = Subscription(self, instrument)
            self._active = subscription

            if self._task is None:
                self._task = asyncio.create_task(self._run(), name="feed-connection")
            elif self.connected:
                await self._subscribe_active()
            elif self._failures >= self.max_failures:
                subscription._deliver(FeedUnavailable(self._failures))

        logger.info("Opened subscription for {}", instrument)
        return subscription

    reopen = open

    async def _release(self, subscription: Subscription) -> None:
        async with self._lock:
            if self._active is not subscription:
                return
            self._active = None
            await self._send_unsubscribe(subscription.instrument)
        logger.info("Closed subscription for {}", subscription.instrument)

    async def _send(self, text: str) -> bool:
        ws = self._ws
        if ws is None or ws.closed:
            return False
        try:
            await ws.send_str(text)
        except TRANSPORT_ERRORS as exc:
            # The reader notices the drop and reconnects
            logger.warning("Send failed: {}", exc)
            return False
        return True

    async def _subscribe_active(self) -> None:
        """Subscribe the active handle and mark the start of its stream. Lock held."""
        active = self._active
        if active is None:
            return
        if await self._send(subscribe_message(active.instrument, self.channels)):
            logger.debug("Subscribe sent for {}", active.instrument)
            active._deliver(StreamReset(active.instrument))

    async def _send_unsubscribe(self, instrument: str) -> None:
        if await self._send(unsubscribe_message(instrument, self.channels)):
            logger.debug("Unsubscribe sent for {}", instrument)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _connect(self) -> aiohttp.ClientWebSocketResponse:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return await self._session.ws_connect(self.url, heartbeat=self.heartbeat)

    async def _run(self) -> None:
        """
        Connection manager: connect, subscribe, read, reconnect.

        A refused connect and a session that ends before its first frame both
        count toward max_failures. Only a session that received a frame
        clears the streak.
        """
        attempts = 0

        while not self._closed:
            if attempts:
                delay = self.backoff.compute_delay(max(self._failures - 1, 0))
                logger.info("Reconnecting in {:.2f}s", delay)
                await asyncio.sleep(delay)
            attempts += 1

            try:
                logger.info("Connecting to {}", self.url)
                ws = await self._connect()
            except TRANSPORT_ERRORS as exc:
                self.transport_errors += 1
                logger.warning("Connect failed: {}", exc)
                self._record_failure()
                continue

            if attempts > 1:
                self.reconnects += 1
            frames_before = self.frames_received

            try:
                async with self._lock:
                    self._ws = ws
                    await self._subscribe_active()
                await self._listen(ws)
            except TRANSPORT_ERRORS as exc:
                self.transport_errors += 1
                logger.warning("Transport error: {}", exc)
            finally:
                self._ws = None
                await ws.close()

            if self._closed:
                break

            if self.frames_received > frames_before:
                self._failures = 0
                logger.warning("Connection to {} lost", self.url)
            else:
                logger.warning("Connection to {} closed before any frame arrived", self.url)
                self._record_failure()

    def _record_failure(self) -> None:
        self._failures += 1
        logger.warning("{} failed connection attempt(s) in a row", self._failures)
        if self._failures == self.max_failures and self._active is not None:
            logger.error("Feed unavailable after {} attempts", self._failures)
            self._active._deliver(FeedUnavailable(self._failures))

    async def _listen(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        async for msg in ws:
            if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                self.frames_received += 1
                self._handle_frame(msg.data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                self.transport_errors += 1
                logger.warning("WebSocket error: {}", ws.exception())
                break

    def _handle_frame(self, raw: str | bytes) -> None:
        """
        Decode and route one frame to the active subscription.

        HOT PATH - called for every inbound frame.
        """
        try:
            message = decode_frame(raw)
        except MalformedFrameError as exc:
            self.transport_errors += 1
            logger.debug("Dropped frame: {}", exc)
            return

        active = self._active
        if message is None or active is None:
            return

        # Stale traffic for an instrument we already left
        instrument = getattr(message, "instrument", None)
        if instrument is not None and instrument != active.instrument:
            logger.trace("Dropped {} frame for {}", type(message).__name__, instrument)
            return

        active._deliver(message)

    async def aclose(self) -> None:
        """Tear down: stop delivery, cancel the manager, release the transport."""
        if self._closed:
            return
        self._closed = True

        if self._active is not None:
            self._active.cancel()
            self._active = None

        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._ws is not None:
            await self._ws.close()
            self._ws = None

        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

        logger.info("Feed connection closed")
