"""Unit tests for the SSE decoder and HTTP event source."""

from __future__ import annotations

import httpx
import pytest

from clawdvault.sdk.event_source import (
    DEFAULT_CHANNEL,
    EventSource,
    HTTPEventSource,
    MockEventSource,
    SSEDecoder,
    SSEMessage,
)

STREAM_URL = "https://api.test/stream/trades?mint=M1"

SSE_BODY = (
    b": keep-alive\n"
    b"\n"
    b"event: connected\n"
    b'data: {"mint":"M1"}\n'
    b"\n"
    b"event: trade\n"
    b'data: {"id":"t1"}\n'
    b"\n"
    b'data: {"plain":true}\n'
    b"\n"
)


def decode_all(decoder: SSEDecoder, lines: list[str]) -> list[SSEMessage]:
    messages = []
    for line in lines:
        message = decoder.decode(line)
        if message is not None:
            messages.append(message)
    return messages


# =============================================================================
# SSEDecoder
# =============================================================================


class TestSSEDecoder:
    """Tests for the line-level event-stream decoder."""

    def test_unnamed_event_uses_default_channel(self) -> None:
        messages = decode_all(SSEDecoder(), ["data: hello", ""])
        assert messages == [SSEMessage(event=DEFAULT_CHANNEL, data="hello")]

    def test_named_event(self) -> None:
        messages = decode_all(SSEDecoder(), ["event: trade", 'data: {"id":"t1"}', ""])
        assert messages == [SSEMessage(event="trade", data='{"id":"t1"}')]

    def test_multiline_data_joined_with_newline(self) -> None:
        messages = decode_all(SSEDecoder(), ["data: a", "data: b", ""])
        assert messages[0].data == "a\nb"

    def test_comments_and_unknown_fields_ignored(self) -> None:
        messages = decode_all(SSEDecoder(), [": ping", "foo: bar", "data: x", ""])
        assert messages == [SSEMessage(event=DEFAULT_CHANNEL, data="x")]

    def test_blank_line_without_data_dispatches_nothing(self) -> None:
        decoder = SSEDecoder()
        assert decode_all(decoder, ["event: trade", ""]) == []
        # Event name does not leak into the next message
        assert decode_all(decoder, ["data: y", ""])[0].event == DEFAULT_CHANNEL

    def test_value_without_space(self) -> None:
        messages = decode_all(SSEDecoder(), ["data:compact", ""])
        assert messages[0].data == "compact"

    def test_id_and_retry_tracked(self) -> None:
        decoder = SSEDecoder()
        messages = decode_all(decoder, ["id: 42", "retry: 5000", "data: x", ""])

        assert messages[0].id == "42"
        assert decoder.last_event_id == "42"
        assert decoder.retry == 5000

    def test_invalid_retry_ignored(self) -> None:
        decoder = SSEDecoder()
        decoder.decode("retry: soon")
        assert decoder.retry is None


# =============================================================================
# HTTPEventSource
# =============================================================================


def make_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestHTTPEventSource:
    """Tests for the httpx-backed event source."""

    def test_satisfies_protocol(self) -> None:
        assert isinstance(HTTPEventSource(STREAM_URL), EventSource)
        assert isinstance(MockEventSource(STREAM_URL), EventSource)

    @pytest.mark.asyncio
    async def test_delivers_default_and_attached_channels(self) -> None:
        seen_headers: dict[str, str] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen_headers.update(request.headers)
            return httpx.Response(
                200, content=SSE_BODY, headers={"content-type": "text/event-stream"}
            )

        async with make_client(handler) as client:
            source = HTTPEventSource(STREAM_URL, client=client)
            source.add_channel("trade")
            await source.open()
            messages = [message async for message in source.messages()]
            await source.close()

        assert seen_headers["accept"] == "text/event-stream"
        assert [m.event for m in messages] == ["trade", DEFAULT_CHANNEL]
        assert messages[0].data == '{"id":"t1"}'

    @pytest.mark.asyncio
    async def test_unattached_named_events_filtered(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=SSE_BODY)

        async with make_client(handler) as client:
            source = HTTPEventSource(STREAM_URL, client=client)
            await source.open()
            messages = [message async for message in source.messages()]
            await source.close()

        assert [m.data for m in messages] == ['{"plain":true}']

    @pytest.mark.asyncio
    async def test_non_200_raises_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, json={"error": "busy"})

        async with make_client(handler) as client:
            source = HTTPEventSource(STREAM_URL, client=client)
            with pytest.raises(ConnectionError, match="HTTP 503"):
                await source.open()

    @pytest.mark.asyncio
    async def test_transport_error_raises_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with make_client(handler) as client:
            source = HTTPEventSource(STREAM_URL, client=client)
            with pytest.raises(ConnectionError, match="refused"):
                await source.open()

    @pytest.mark.asyncio
    async def test_messages_before_open_raises(self) -> None:
        source = HTTPEventSource(STREAM_URL)
        with pytest.raises(ConnectionError):
            async for _ in source.messages():
                pass

    @pytest.mark.asyncio
    async def test_close_is_repeatable_and_keeps_shared_client(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"")

        async with make_client(handler) as client:
            source = HTTPEventSource(STREAM_URL, client=client)
            await source.open()
            await source.close()
            await source.close()
            assert not client.is_closed


# =============================================================================
# MockEventSource
# =============================================================================


class TestMockEventSource:
    """Tests for the in-memory source used by streaming tests."""

    @pytest.mark.asyncio
    async def test_push_then_end(self) -> None:
        source = MockEventSource(STREAM_URL)
        source.add_channel("trade")
        source.push("1", event="trade")
        source.push("2", event="ignored")
        source.push("3")
        source.end()

        await source.open()
        messages = [message.data async for message in source.messages()]
        assert messages == ["1", "3"]

    @pytest.mark.asyncio
    async def test_fail_raises_from_iterator(self) -> None:
        source = MockEventSource(STREAM_URL)
        source.fail(ConnectionResetError("reset"))
        with pytest.raises(ConnectionResetError):
            async for _ in source.messages():
                pass

    @pytest.mark.asyncio
    async def test_open_error(self) -> None:
        source = MockEventSource(STREAM_URL, open_error=ConnectionError("nope"))
        with pytest.raises(ConnectionError):
            await source.open()
        assert source.opened is False
