"""Real-time ClawdVault feeds over Server-Sent Events.

StreamConnection keeps one logical subscription alive:

    IDLE --connect()--> CONNECTING --open--> OPEN
    OPEN/CONNECTING --failure--> RECONNECTING --backoff--> CONNECTING
    RECONNECTING --attempts exhausted--> (stays RECONNECTING, terminal error)
    any --disconnect()--> CLOSED

All work for one connection happens in a single supervisor task. The task
owns the transport handle: it opens it, drains it, closes it on failure,
sleeps for the backoff delay and only then creates the next handle. Cancelling
the task (disconnect) is therefore the only cancellation primitive needed.

ClawdVaultStreaming is the registry sharing one connection per (topic, mint).

Usage:
    streaming = create_streaming("https://clawdvault.com/api")
    conn = streaming.stream_trades(mint)
    conn.on("trade", lambda trade: print(trade["price_sol"]))
    conn.connect()
    ...
    await streaming.aclose()
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any
from urllib.parse import quote

from .errors import ReconnectExhaustedError, StreamConnectionError, StreamError
from .event_source import EventSource, EventSourceFactory, HTTPEventSource

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://clawdvault.com/api"
RECONNECT_BACKOFF = 1.5

EventCallback = Callable[[Any], None]
ErrorCallback = Callable[[StreamError], None]
ConnectionCallback = Callable[[], None]
Unsubscribe = Callable[[], None]


class StreamState(str, Enum):
    """Connection state machine."""

    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class StreamTopic(str, Enum):
    """Logical stream categories exposed by the backend."""

    TRADES = "trades"
    TOKEN = "token"
    CHAT = "chat"


@dataclass(frozen=True)
class StreamKey:
    """Identifies one logical subscription."""

    topic: StreamTopic
    resource_id: str


@dataclass
class StreamingOptions:
    """Reconnection settings shared by every connection of a registry."""

    auto_reconnect: bool = True
    reconnect_delay: float = 3.0  # seconds, delay before the first retry
    max_reconnect_attempts: int = 10

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number attempt (1-based). Unbounded growth."""
        return self.reconnect_delay * RECONNECT_BACKOFF ** (attempt - 1)


class StreamConnection:
    """A single auto-reconnecting subscription to a server-push stream.

    Listener callbacks are plain synchronous callables. They run on the
    event loop between suspension points, so no two state transitions or
    dispatches ever interleave on the same connection.
    """

    def __init__(
        self,
        url: str,
        options: StreamingOptions | None = None,
        source_factory: EventSourceFactory | None = None,
    ):
        self.url = url
        self.options = options or StreamingOptions()
        self._source_factory: EventSourceFactory = source_factory or HTTPEventSource
        self._source: EventSource | None = None
        self._task: asyncio.Task[None] | None = None
        self._state = StreamState.IDLE
        self._exhausted = False
        self.reconnect_attempts = 0
        self.manually_closed = False

        self._listeners: dict[str, set[EventCallback]] = {}
        self._connect_callbacks: set[ConnectionCallback] = set()
        self._disconnect_callbacks: set[ConnectionCallback] = set()
        self._error_callbacks: set[ErrorCallback] = set()
        self._state_callbacks: set[Callable[[StreamState], None]] = set()

    def __repr__(self) -> str:
        return f"StreamConnection(url={self.url!r}, state={self._state.value})"

    @property
    def state(self) -> StreamState:
        """Current connection state."""
        return self._state

    @property
    def connected(self) -> bool:
        """True while the transport is open."""
        return self._state is StreamState.OPEN

    @property
    def exhausted(self) -> bool:
        """True once retries ran out; only connect() or disconnect() move on."""
        return self._exhausted

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def connect(self) -> None:
        """Start the subscription. Must be called from a running event loop.

        No-op while a connection attempt, an open stream or a pending retry
        is in progress. After exhaustion the attempt counter starts over,
        including when called from the error callback reporting exhaustion.
        """
        if self._task is not None and not self._task.done():
            if self._exhausted and asyncio.current_task() is self._task:
                self.manually_closed = False
                self._exhausted = False
                self.reconnect_attempts = 0
            return

        loop = asyncio.get_running_loop()
        self.manually_closed = False
        if self._exhausted:
            self._exhausted = False
            self.reconnect_attempts = 0

        self._set_state(StreamState.CONNECTING)
        self._task = loop.create_task(self._run(), name=f"stream:{self.url}")

    def disconnect(self) -> None:
        """Stop the subscription and cancel any pending retry. Idempotent."""
        self.manually_closed = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

        if self._state is StreamState.CLOSED:
            return

        was_open = self._state is StreamState.OPEN
        self._set_state(StreamState.CLOSED)
        logger.info(f"Disconnected from {self.url}")
        if was_open:
            self._notify(self._disconnect_callbacks)

    async def aclose(self) -> None:
        """Disconnect and wait until the transport handle is released."""
        task = self._task
        self.disconnect()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    # -------------------------------------------------------------------------
    # Listener registration
    # -------------------------------------------------------------------------

    def on(self, channel: str, callback: EventCallback) -> Unsubscribe:
        """Register callback for decoded events on channel.

        Returns a function removing exactly this callback; calling it again
        is a no-op.
        """
        callbacks = self._listeners.get(channel)
        if callbacks is None:
            callbacks = self._listeners[channel] = set()
            # Channels registered before connect() are attached on open
            if self._source is not None:
                self._source.add_channel(channel)
        callbacks.add(callback)

        def unsubscribe() -> None:
            registered = self._listeners.get(channel)
            if registered is not None:
                registered.discard(callback)

        return unsubscribe

    def once(self, channel: str, callback: EventCallback) -> Unsubscribe:
        """Register callback for the next event on channel only."""

        def handler(data: Any) -> None:
            unsubscribe()
            callback(data)

        unsubscribe = self.on(channel, handler)
        return unsubscribe

    def on_connect(self, callback: ConnectionCallback) -> Unsubscribe:
        return self._register(self._connect_callbacks, callback)

    def on_disconnect(self, callback: ConnectionCallback) -> Unsubscribe:
        return self._register(self._disconnect_callbacks, callback)

    def on_error(self, callback: ErrorCallback) -> Unsubscribe:
        return self._register(self._error_callbacks, callback)

    def on_state_change(self, callback: Callable[[StreamState], None]) -> Unsubscribe:
        return self._register(self._state_callbacks, callback)

    @staticmethod
    def _register(registry: set[Any], callback: Any) -> Unsubscribe:
        registry.add(callback)
        return lambda: registry.discard(callback)

    # -------------------------------------------------------------------------
    # Supervisor
    # -------------------------------------------------------------------------

    async def _run(self) -> None:
        while True:
            error = await self._attempt()
            delay = self._handle_failure(error)
            if delay is None:
                return

            logger.info(
                f"Reconnecting to {self.url} in {delay:.2f}s "
                f"(attempt {self.reconnect_attempts}/{self.options.max_reconnect_attempts})"
            )
            await asyncio.sleep(delay)

    async def _attempt(self) -> StreamConnectionError:
        """Run one transport handle from creation to teardown."""
        source = self._source_factory(self.url)
        self._source = source
        self._set_state(StreamState.CONNECTING)

        try:
            for channel in self._listeners:
                source.add_channel(channel)
            await source.open()
            self._handle_open()

            async for message in source.messages():
                self._dispatch(message.event, message.data)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = StreamConnectionError(f"Stream connection error: {e}")
            error.__cause__ = e
            return error
        finally:
            self._source = None
            await source.close()

        return StreamConnectionError("Stream closed by server")

    def _handle_open(self) -> None:
        self.reconnect_attempts = 0
        self._set_state(StreamState.OPEN)
        logger.info(f"Connected to {self.url}")
        self._notify(self._connect_callbacks)

    def _handle_failure(self, error: StreamConnectionError) -> float | None:
        """Record a transport failure; return the retry delay or None to stop."""
        was_open = self._state is StreamState.OPEN
        will_retry = self.options.auto_reconnect
        self._set_state(StreamState.RECONNECTING if will_retry else StreamState.CLOSED)
        logger.debug(f"Stream {self.url} failed: {error}")

        if was_open:
            self._notify(self._disconnect_callbacks)
        self._emit_error(error)

        # A callback may have called disconnect()
        if not will_retry or self._superseded():
            return None

        max_attempts = self.options.max_reconnect_attempts
        if self.reconnect_attempts >= max_attempts:
            self._exhausted = True
            logger.warning(f"Giving up on {self.url} after {max_attempts} reconnect attempts")
            self._emit_error(ReconnectExhaustedError(max_attempts))
            # connect() from the callback clears the exhausted flag
            if self._exhausted or self._superseded():
                return None
            logger.info(f"Restarting {self.url} after exhaustion")
            return 0.0

        self.reconnect_attempts += 1
        return self.options.backoff_delay(self.reconnect_attempts)

    def _superseded(self) -> bool:
        """True once disconnect() (or disconnect() then connect()) retired this task."""
        return self.manually_closed or asyncio.current_task() is not self._task

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def _dispatch(self, channel: str, data: str) -> None:
        callbacks = self._listeners.get(channel)
        if not callbacks:
            return

        try:
            payload = json.loads(data)
        except ValueError:
            logger.debug(f"Dropping undecodable {channel!r} event: {data[:50]!r}")
            return

        for callback in list(callbacks):
            # Skip callbacks removed by an earlier callback in this dispatch
            if callback in callbacks:
                self._invoke(callback, payload)

    def _emit_error(self, error: StreamError) -> None:
        for callback in list(self._error_callbacks):
            self._invoke(callback, error)

    def _notify(self, callbacks: set[ConnectionCallback]) -> None:
        for callback in list(callbacks):
            self._invoke(callback)

    def _set_state(self, state: StreamState) -> None:
        if state is self._state:
            return
        self._state = state
        for callback in list(self._state_callbacks):
            self._invoke(callback, state)

    def _invoke(self, callback: Callable[..., Any], *args: Any) -> None:
        try:
            callback(*args)
        except Exception:
            logger.exception(f"Error in stream callback for {self.url}")


@dataclass(frozen=True)
class Subscription:
    """Result of a convenience subscribe helper."""

    unsubscribe: Unsubscribe
    connection: StreamConnection


class ClawdVaultStreaming:
    """Registry owning one StreamConnection per (topic, resource id).

    Entries are created lazily and only removed by disconnect() or
    disconnect_all(); nothing expires on its own.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        options: StreamingOptions | None = None,
        source_factory: EventSourceFactory | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.options = options or StreamingOptions()
        self._source_factory = source_factory
        self._connections: dict[StreamKey, StreamConnection] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, key: object) -> bool:
        return key in self._connections

    def url_for(self, key: StreamKey) -> str:
        return f"{self.base_url}/stream/{key.topic.value}?mint={quote(key.resource_id, safe='')}"

    def get_or_create(self, topic: StreamTopic | str, resource_id: str) -> StreamConnection:
        """Return the shared connection for a key, creating it (unconnected) if needed."""
        key = StreamKey(StreamTopic(topic), resource_id)
        connection = self._connections.get(key)
        if connection is None:
            connection = StreamConnection(self.url_for(key), self.options, self._source_factory)
            self._connections[key] = connection
        return connection

    def disconnect(self, topic: StreamTopic | str, resource_id: str) -> None:
        """Disconnect and forget one connection. No-op if absent."""
        connection = self._connections.pop(StreamKey(StreamTopic(topic), resource_id), None)
        if connection is not None:
            connection.disconnect()

    def disconnect_all(self) -> None:
        """Disconnect and forget every connection."""
        connections = list(self._connections.values())
        self._connections.clear()
        for connection in connections:
            connection.disconnect()

    async def aclose(self) -> None:
        """disconnect_all() and wait for every transport to be released."""
        connections = list(self._connections.values())
        self._connections.clear()
        await asyncio.gather(*(connection.aclose() for connection in connections))

    # Per-topic accessors

    def stream_trades(self, mint: str) -> StreamConnection:
        return self.get_or_create(StreamTopic.TRADES, mint)

    def stream_token(self, mint: str) -> StreamConnection:
        return self.get_or_create(StreamTopic.TOKEN, mint)

    def stream_chat(self, mint: str) -> StreamConnection:
        return self.get_or_create(StreamTopic.CHAT, mint)

    # Subscribe-and-connect helpers

    def on_trades(self, mint: str, callback: EventCallback) -> Subscription:
        """Receive every trade on mint."""
        return self._subscribe(self.stream_trades(mint), "trade", callback)

    def on_price(self, mint: str, callback: EventCallback) -> Subscription:
        """Receive price / market-cap updates for mint."""
        return self._subscribe(self.stream_token(mint), "update", callback)

    def on_chat(self, mint: str, callback: EventCallback) -> Subscription:
        """Receive chat messages for mint."""
        return self._subscribe(self.stream_chat(mint), "message", callback)

    @staticmethod
    def _subscribe(
        connection: StreamConnection, channel: str, callback: EventCallback
    ) -> Subscription:
        unsubscribe = connection.on(channel, callback)
        connection.connect()
        return Subscription(unsubscribe=unsubscribe, connection=connection)


def create_streaming(
    base_url: str = DEFAULT_BASE_URL,
    options: StreamingOptions | None = None,
) -> ClawdVaultStreaming:
    """Create a streaming registry for base_url."""
    return ClawdVaultStreaming(base_url, options)
