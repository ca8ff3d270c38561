"""
Unit tests for the background stream pump and its channels.

Streams are served by httpx.MockTransport with scripted response bodies so
chunks, read failures and hangs can be set up per connection.
"""
from __future__ import annotations

import asyncio
from typing import Callable, Optional
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import pytest_asyncio

from replicate_jobs.inference.exceptions import (
    APIStatusError,
    ChannelClosedError,
    InvalidEventDataError,
    StreamUnavailableError,
    TransportError,
)
from replicate_jobs.inference.schemas import Job
from replicate_jobs.streaming.events import StreamEvent
from replicate_jobs.streaming.pump import Channel, StreamPump

from .conftest import TEST_STREAM_URL, job_payload

DRAIN_TIMEOUT_SECONDS = 5.0

# ============================================================================
# Helpers
# ============================================================================


def sse(*events: tuple[str, str, str]) -> bytes:
    """Encode (event, id, data) triples as an event stream."""
    return b"".join(
        f"event: {event}\nid: {event_id}\ndata: {data}\n\n".encode()
        for event, event_id, data in events
    )


class ScriptedStream(httpx.AsyncByteStream):
    """Response body yielding ``chunks``, then failing or hanging if asked."""

    def __init__(self, *chunks: bytes, error: Optional[Exception] = None, hang: bool = False):
        self.chunks = chunks
        self.error = error
        self.hang = hang
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error
        if self.hang:
            await asyncio.Event().wait()

    async def aclose(self) -> None:
        self.closed = True


def sse_response(*chunks: bytes, error: Optional[Exception] = None, hang: bool = False):
    """Streaming 200 response over a ScriptedStream."""
    return httpx.Response(
        200,
        headers={"Content-Type": "text/event-stream"},
        stream=ScriptedStream(*chunks, error=error, hang=hang),
    )


class StreamHandler:
    """Answers each connection with the next scripted response."""

    def __init__(self, *connections: Callable[[], httpx.Response]):
        self.connections = list(connections)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests), len(self.connections)) - 1
        return self.connections[index]()


def streaming_job(**fields) -> Job:
    urls = {"get": "https://api.test/v1/predictions/job1", "stream": TEST_STREAM_URL}
    return Job.model_validate(job_payload(status="processing", urls=urls, **fields))


async def drain(channel: Channel) -> list:
    async def collect():
        return [item async for item in channel]

    return await asyncio.wait_for(collect(), timeout=DRAIN_TIMEOUT_SECONDS)


# ============================================================================
# Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def make_pump():
    """Build a pump over a mock transport; closes the HTTP clients afterwards."""
    clients: list[httpx.AsyncClient] = []

    def _make(handler: StreamHandler, **kwargs) -> StreamPump:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        clients.append(http_client)
        return StreamPump(http_client, kwargs.pop("job", None) or streaming_job(), **kwargs)

    yield _make

    for client in clients:
        await client.aclose()


# ============================================================================
# Normal delivery
# ============================================================================


class TestDelivery:
    """Events arrive in order and ``done`` ends the stream."""

    @pytest.mark.asyncio
    async def test_events_in_order_until_done(self, make_pump):
        handler = StreamHandler(
            lambda: sse_response(
                sse(("output", "1", "hello"), ("output", "2", "world")),
                sse(("done", "3", "{}"), ("output", "4", "never delivered")),
            )
        )
        pump = make_pump(handler)

        pump.start()
        events = await drain(pump.events)
        errors = await drain(pump.errors)
        await pump.wait_closed()

        assert [e.id for e in events] == ["1", "2", "3"]
        assert "".join(str(e) for e in events) == "helloworld"
        assert events[-1].is_done
        assert errors == []
        assert pump.connections == 1

    @pytest.mark.asyncio
    async def test_stream_request_headers(self, make_pump):
        handler = StreamHandler(lambda: sse_response(sse(("done", "1", "{}"))))
        pump = make_pump(handler)

        pump.start()
        await drain(pump.events)
        await pump.wait_closed()

        request = handler.requests[0]
        assert str(request.url) == TEST_STREAM_URL
        assert request.headers["Accept"] == "text/event-stream"
        assert request.headers["Cache-Control"] == "no-cache"
        assert "Last-Event-ID" not in request.headers
        assert "Authorization" not in request.headers

    @pytest.mark.asyncio
    async def test_last_event_sent_on_first_connection(self, make_pump):
        handler = StreamHandler(lambda: sse_response(sse(("done", "42", "{}"))))
        pump = make_pump(handler, last_event=StreamEvent(event_type="output", id="41"))

        pump.start()
        await drain(pump.events)
        await pump.wait_closed()

        assert handler.requests[0].headers["Last-Event-ID"] == "41"
        assert pump.resume_id == "42"

    @pytest.mark.asyncio
    async def test_events_split_across_chunks(self, make_pump):
        payload = sse(("output", "1", "abc"), ("done", "2", "{}"))
        chunks = [payload[i:i + 3] for i in range(0, len(payload), 3)]
        handler = StreamHandler(lambda: sse_response(*chunks))
        pump = make_pump(handler)

        pump.start()
        events = await drain(pump.events)
        await pump.wait_closed()

        assert [(e.event_type, e.data) for e in events] == [("output", "abc"), ("done", "{}")]

    @pytest.mark.asyncio
    async def test_backpressure_keeps_every_event(self, make_pump):
        outputs = [("output", str(i), f"chunk{i}") for i in range(1, 11)]
        handler = StreamHandler(lambda: sse_response(sse(*outputs, ("done", "11", "{}"))))
        pump = make_pump(handler, max_queue_size=1)

        pump.start()
        events = await drain(pump.events)
        await pump.wait_closed()

        assert [e.id for e in events] == [str(i) for i in range(1, 12)]


# ============================================================================
# Failures and reconnection
# ============================================================================


class TestReconnect:
    """Read errors, clean ends and fatal failures."""

    @pytest.mark.asyncio
    async def test_read_error_reconnects_with_resume_id(self, make_pump):
        handler = StreamHandler(
            lambda: sse_response(
                sse(("output", "1", "a")),
                error=httpx.ReadError("connection lost"),
            ),
            lambda: sse_response(sse(("output", "2", "b"), ("done", "3", "{}"))),
        )
        pump = make_pump(handler)

        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            pump.start()
            events = await drain(pump.events)
            errors = await drain(pump.errors)
            await pump.wait_closed()

        assert [e.id for e in events] == ["1", "2", "3"]
        assert len(errors) == 1
        assert isinstance(errors[0], TransportError)
        assert "Error reading stream" in str(errors[0])
        sleep.assert_awaited_once_with(1.0)
        assert pump.connections == 2
        assert "Last-Event-ID" not in handler.requests[0].headers
        assert handler.requests[1].headers["Last-Event-ID"] == "1"

    @pytest.mark.asyncio
    async def test_reconnect_delay_configurable(self, make_pump):
        handler = StreamHandler(
            lambda: sse_response(error=httpx.ReadError("reset")),
            lambda: sse_response(sse(("done", "1", "{}"))),
        )
        pump = make_pump(handler, reconnect_delay=0.25)

        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            pump.start()
            await drain(pump.events)
            await pump.wait_closed()

        sleep.assert_awaited_once_with(0.25)

    @pytest.mark.asyncio
    async def test_response_closed_before_reconnect_pause(self, make_pump):
        broken = ScriptedStream(sse(("output", "1", "a")), error=httpx.ReadError("reset"))
        handler = StreamHandler(
            lambda: httpx.Response(200, stream=broken),
            lambda: sse_response(sse(("done", "2", "{}"))),
        )
        pump = make_pump(handler)
        closed_during_pause = []

        async def pause(delay):
            closed_during_pause.append(broken.closed)

        with patch("asyncio.sleep", new_callable=AsyncMock, side_effect=pause):
            pump.start()
            await drain(pump.events)
            await pump.wait_closed()

        assert closed_during_pause == [True]

    @pytest.mark.asyncio
    async def test_clean_end_reconnects_immediately(self, make_pump):
        handler = StreamHandler(
            lambda: sse_response(sse(("output", "1", "a"))),
            lambda: sse_response(sse(("done", "2", "{}"))),
        )
        pump = make_pump(handler)

        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            pump.start()
            events = await drain(pump.events)
            errors = await drain(pump.errors)
            await pump.wait_closed()

        assert [e.id for e in events] == ["1", "2"]
        assert errors == []
        sleep.assert_not_awaited()
        assert handler.requests[1].headers["Last-Event-ID"] == "1"

    @pytest.mark.asyncio
    async def test_connect_failure_is_fatal(self, make_pump):
        def refuse():
            raise httpx.ConnectError("connection refused")

        handler = StreamHandler(refuse)
        pump = make_pump(handler)

        pump.start()
        events = await drain(pump.events)
        errors = await drain(pump.errors)
        await pump.wait_closed()

        assert events == []
        assert len(errors) == 1
        assert isinstance(errors[0], TransportError)
        assert "Failed to send request" in str(errors[0])
        assert pump.connections == 1

    @pytest.mark.asyncio
    async def test_error_status_is_fatal(self, make_pump):
        handler = StreamHandler(
            lambda: httpx.Response(503, json={"title": "Unavailable", "status": 503})
        )
        pump = make_pump(handler)

        pump.start()
        events = await drain(pump.events)
        errors = await drain(pump.errors)
        await pump.wait_closed()

        assert events == []
        assert len(errors) == 1
        assert isinstance(errors[0], APIStatusError)
        assert errors[0].status_code == 503
        assert errors[0].title == "Unavailable"
        assert len(handler.requests) == 1

    @pytest.mark.asyncio
    async def test_undecodable_event_is_not_fatal(self, make_pump):
        payload = (
            "event: output\nid: 1\ndata: café\n\n"
            "event: done\nid: 2\ndata: {}\n\n"
        ).encode("utf-8")
        handler = StreamHandler(lambda: sse_response(payload))
        pump = make_pump(handler)

        pump.start()
        events = await drain(pump.events)
        errors = await drain(pump.errors)
        await pump.wait_closed()

        assert [e.id for e in events] == ["2"]
        assert len(errors) == 1
        assert isinstance(errors[0], InvalidEventDataError)


# ============================================================================
# Stopping
# ============================================================================


class TestStopping:
    """Cancellation and consumer departure."""

    @pytest.mark.asyncio
    async def test_cancel_event_stops_pump(self, make_pump):
        handler = StreamHandler(lambda: sse_response(sse(("output", "1", "a")), hang=True))
        cancel_event = asyncio.Event()
        pump = make_pump(handler, cancel_event=cancel_event)

        pump.start()
        first = await asyncio.wait_for(pump.events.receive(), DRAIN_TIMEOUT_SECONDS)
        cancel_event.set()
        await asyncio.wait_for(pump.wait_closed(), DRAIN_TIMEOUT_SECONDS)

        assert first.id == "1"
        assert not pump.running
        assert await pump.events.receive() is None
        assert await drain(pump.errors) == []

    @pytest.mark.asyncio
    async def test_stop(self, make_pump):
        handler = StreamHandler(lambda: sse_response(hang=True))
        pump = make_pump(handler)

        pump.start()
        await asyncio.wait_for(pump.stop(), DRAIN_TIMEOUT_SECONDS)

        assert pump.cancel_event.is_set()
        assert not pump.running
        assert await drain(pump.events) == []

    @pytest.mark.asyncio
    async def test_stop_after_done_with_full_channel(self, make_pump):
        """The pump exits on done even though nobody has read the events yet."""
        payload = sse(("output", "1", "a"), ("output", "2", "b"), ("done", "3", "{}"))
        handler = StreamHandler(lambda: sse_response(payload))
        pump = make_pump(handler, max_queue_size=3)

        pump.start()
        await asyncio.sleep(0.2)
        await asyncio.wait_for(pump.stop(), DRAIN_TIMEOUT_SECONDS)

        assert not pump.running
        assert [e.id for e in await drain(pump.events)] == ["1", "2", "3"]
        assert await drain(pump.errors) == []

    @pytest.mark.asyncio
    async def test_stop_with_full_channel_ends_iteration(self, make_pump):
        outputs = [("output", str(i), f"chunk{i}") for i in range(1, 6)]
        handler = StreamHandler(lambda: sse_response(sse(*outputs), hang=True))
        pump = make_pump(handler, max_queue_size=2)

        pump.start()
        await asyncio.sleep(0.2)
        await asyncio.wait_for(pump.stop(), DRAIN_TIMEOUT_SECONDS)

        # Only what fit in the channel was delivered
        assert [e.id for e in await drain(pump.events)] == ["1", "2"]
        assert await drain(pump.errors) == []

    @pytest.mark.asyncio
    async def test_closed_event_channel_ends_pump(self, make_pump):
        handler = StreamHandler(lambda: sse_response(sse(("output", "1", "a")), hang=True))
        pump = make_pump(handler)
        pump.events.close()

        pump.start()
        errors = await drain(pump.errors)
        await asyncio.wait_for(pump.wait_closed(), DRAIN_TIMEOUT_SECONDS)

        assert len(errors) == 1
        assert isinstance(errors[0], ChannelClosedError)
        assert str(errors[0]) == "Failed to send stream event: event channel closed"

    @pytest.mark.asyncio
    async def test_job_without_stream_url(self, make_pump):
        job = Job.model_validate(job_payload())

        with pytest.raises(StreamUnavailableError):
            make_pump(StreamHandler(), job=job)


class TestChannel:
    """Bounded channel semantics."""

    @pytest.mark.asyncio
    async def test_send_then_finish(self):
        channel: Channel[int] = Channel(4)

        await channel.send(1)
        await channel.send(2)
        channel.finish()

        assert [item async for item in channel] == [1, 2]
        assert await channel.receive() is None

    @pytest.mark.asyncio
    async def test_send_after_close_raises(self):
        channel: Channel[int] = Channel(1)
        channel.close()

        with pytest.raises(ChannelClosedError):
            await channel.send(1)

    @pytest.mark.asyncio
    async def test_close_releases_blocked_sender(self):
        channel: Channel[int] = Channel(1)
        await channel.send(1)

        blocked = asyncio.ensure_future(channel.send(2))
        await asyncio.sleep(0)
        channel.close()

        with pytest.raises(ChannelClosedError):
            await asyncio.wait_for(blocked, DRAIN_TIMEOUT_SECONDS)

    @pytest.mark.asyncio
    async def test_finish_on_full_channel(self):
        channel: Channel[int] = Channel(2)
        await channel.send(1)
        await channel.send(2)

        channel.finish()

        assert channel.finished
        assert [item async for item in channel] == [1, 2]
        assert await channel.receive() is None

    @pytest.mark.asyncio
    async def test_finish_wakes_waiting_receiver(self):
        channel: Channel[int] = Channel(1)

        waiting = asyncio.ensure_future(channel.receive())
        await asyncio.sleep(0)
        channel.finish()

        assert await asyncio.wait_for(waiting, DRAIN_TIMEOUT_SECONDS) is None
