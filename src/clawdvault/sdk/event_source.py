"""Server-push transport handles for stream connections.

An EventSource is one live subscription to a text/event-stream URL. It is
created, opened, drained and closed by exactly one StreamConnection; the
connection decides when to reconnect, the source never retries on its own.

Implementations:
- HTTPEventSource: httpx streaming GET with an incremental SSE decoder
- MockEventSource: in-memory source for tests (push/fail/end)
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import httpx

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = "message"


@dataclass(frozen=True)
class SSEMessage:
    """One dispatched server-sent event (raw, undecoded data)."""

    event: str
    data: str
    id: str | None = None


@runtime_checkable
class EventSource(Protocol):
    """Transport handle owned by a single StreamConnection."""

    url: str

    def add_channel(self, channel: str) -> None:
        """Start delivering events named channel."""
        ...

    async def open(self) -> None:
        """Open the subscription.

        Raises:
            ConnectionError: If the server cannot be reached or rejects the stream
        """
        ...

    def messages(self) -> AsyncIterator[SSEMessage]:
        """Yield messages for attached channels until the stream ends or fails."""
        ...

    async def close(self) -> None:
        """Release the underlying connection. Safe to call more than once."""
        ...


EventSourceFactory = Callable[[str], EventSource]


class SSEDecoder:
    """Incremental decoder for the text/event-stream line format.

    Feed lines without their terminators; a blank line dispatches the
    buffered event. Comment lines (":...") and unknown fields are ignored.
    """

    def __init__(self) -> None:
        self._event = ""
        self._data: list[str] = []
        self.last_event_id: str | None = None
        self.retry: int | None = None

    def decode(self, line: str) -> SSEMessage | None:
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None

        field, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if field == "event":
            self._event = value
        elif field == "data":
            self._data.append(value)
        elif field == "id":
            if "\0" not in value:
                self.last_event_id = value
        elif field == "retry":
            if value.isdigit():
                self.retry = int(value)
        return None

    def _dispatch(self) -> SSEMessage | None:
        if not self._data:
            self._event = ""
            return None

        message = SSEMessage(
            event=self._event or DEFAULT_CHANNEL,
            data="\n".join(self._data),
            id=self.last_event_id,
        )
        self._event = ""
        self._data = []
        return message


class HTTPEventSource:
    """EventSource over an httpx streaming GET.

    Unnamed events are always delivered on the "message" channel; named
    events only once their channel has been attached with add_channel().
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self._timeout = timeout
        self._headers = headers or {}
        self._client = client
        self._owns_client = client is None
        self._response: httpx.Response | None = None
        self._channels: set[str] = {DEFAULT_CHANNEL}

    @property
    def channels(self) -> frozenset[str]:
        return frozenset(self._channels)

    def add_channel(self, channel: str) -> None:
        self._channels.add(channel)

    async def open(self) -> None:
        if self._client is None:
            # No read timeout: the server may stay silent between events
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout, read=None))

        request = self._client.build_request(
            "GET",
            self.url,
            headers={
                "Accept": "text/event-stream",
                "Cache-Control": "no-cache",
                **self._headers,
            },
        )
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise ConnectionError(f"Failed to open stream {self.url}: {e}") from e

        if response.status_code != 200:
            await response.aclose()
            raise ConnectionError(f"Stream {self.url} returned HTTP {response.status_code}")

        self._response = response
        logger.debug(f"Opened event stream {self.url}")

    async def messages(self) -> AsyncIterator[SSEMessage]:
        if self._response is None:
            raise ConnectionError("Event stream not open")

        decoder = SSEDecoder()
        async for line in self._response.aiter_lines():
            message = decoder.decode(line.rstrip("\r"))
            if message is not None and message.event in self._channels:
                yield message

    async def close(self) -> None:
        if self._response is not None:
            await self._response.aclose()
            self._response = None
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class MockEventSource:
    """In-memory event source for tests.

    Usage:
        source = MockEventSource("https://example/stream")
        source.push('{"id": "t1"}', event="trade")
        source.fail()   # transport drop
        source.end()    # server closed the stream
    """

    def __init__(self, url: str, open_error: Exception | None = None):
        self.url = url
        self.opened = False
        self.closed = False
        self._open_error = open_error
        self._channels: set[str] = {DEFAULT_CHANNEL}
        self._queue: asyncio.Queue[SSEMessage | Exception | None] = asyncio.Queue()

    @property
    def channels(self) -> frozenset[str]:
        return frozenset(self._channels)

    def add_channel(self, channel: str) -> None:
        self._channels.add(channel)

    def push(self, data: str, event: str = DEFAULT_CHANNEL) -> None:
        """Queue a raw message for delivery."""
        self._queue.put_nowait(SSEMessage(event=event, data=data))

    def fail(self, error: Exception | None = None) -> None:
        """Make the stream raise, as a dropped connection would."""
        self._queue.put_nowait(error or ConnectionError("Mock stream dropped"))

    def end(self) -> None:
        """End the stream cleanly, as a server close would."""
        self._queue.put_nowait(None)

    async def open(self) -> None:
        if self._open_error is not None:
            raise self._open_error
        self.opened = True

    async def messages(self) -> AsyncIterator[SSEMessage]:
        while True:
            item = await self._queue.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            if item.event in self._channels:
                yield item

    async def close(self) -> None:
        self.closed = True


class MockEventSourceFactory:
    """EventSourceFactory that hands out MockEventSources and records them."""

    def __init__(self) -> None:
        self.sources: list[MockEventSource] = []
        self._open_errors: deque[Exception] = deque()

    def fail_next_open(self, error: Exception | None = None) -> None:
        """Make the next created source fail in open()."""
        self._open_errors.append(error or ConnectionError("Mock open refused"))

    @property
    def latest(self) -> MockEventSource:
        return self.sources[-1]

    def __call__(self, url: str) -> MockEventSource:
        open_error = self._open_errors.popleft() if self._open_errors else None
        source = MockEventSource(url, open_error=open_error)
        self.sources.append(source)
        return source
