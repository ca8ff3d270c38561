"""
Background pump for a job's event stream.

The pump owns one long-lived GET connection to the job's stream URL, feeds
the bytes through EventBuffer/decode_event and republishes the results on
two bounded channels: one for events, one for errors.

Lifecycle:
- Initial connection failure or non-2xx status: one error, pump stops
- Undecodable event: error published, pump carries on
- ``done`` event: published, pump stops
- Event channel closed by the consumer: final error, pump stops
- Read error mid-stream: error published, fixed pause, reconnect (no limit)
- Stream ends without ``done``: reconnect at once
- cancel_event set or stop() awaited: pump stops

Backpressure: a full channel suspends the pump; nothing is dropped.
"""
from __future__ import annotations

import asyncio
from typing import AsyncIterator, Generic, Optional, TypeVar

import httpx

from replicate_jobs.infra.logging import get_logger
from replicate_jobs.inference.exceptions import (
    APIStatusError,
    ChannelClosedError,
    ReplicateError,
    ResponseDecodeError,
    StreamUnavailableError,
    TransportError,
)
from replicate_jobs.inference.schemas import Job
from replicate_jobs.streaming.events import EventBuffer, StreamEvent, decode_event

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_QUEUE_SIZE = 64
DEFAULT_RECONNECT_DELAY_SECONDS = 1.0

STREAM_HEADERS = {
    "Accept": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}

# Marks the end of a channel
_END = object()


class Channel(Generic[T]):
    """
    Bounded single-producer channel over asyncio.Queue.

    The sender calls ``send`` and finally ``finish``; the receiver iterates
    with ``async for`` and may ``close`` to signal it has gone away, after
    which ``send`` raises ChannelClosedError.

    ``finish`` never suspends. On a full channel the end marker is queued
    by ``receive`` as soon as it frees a slot.
    """

    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._finished = False
        self._end_pending = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def finished(self) -> bool:
        return self._finished

    async def send(self, item: T) -> None:
        """
        Publish an item, suspending while the channel is full.

        Raises:
            ChannelClosedError: The receiver has closed the channel
        """
        if self._closed:
            raise ChannelClosedError()
        await self._queue.put(item)
        if self._closed:
            raise ChannelClosedError()

    def finish(self) -> None:
        """Sender side: no more items will follow."""
        if self._finished or self._closed:
            return
        self._finished = True
        try:
            self._queue.put_nowait(_END)
        except asyncio.QueueFull:
            self._end_pending = True

    async def receive(self) -> Optional[T]:
        """Next item, or None once the sender has finished."""
        if self._finished and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is _END:
            # Leave the marker for any other waiting receiver
            self._queue.put_nowait(_END)
            return None
        if self._end_pending:
            self._end_pending = False
            self._queue.put_nowait(_END)
        return item

    def close(self) -> None:
        """Receiver side: stop accepting items and release a blocked sender."""
        self._closed = True
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break

    def __aiter__(self) -> AsyncIterator[T]:
        return self

    async def __anext__(self) -> T:
        item = await self.receive()
        if item is None:
            raise StopAsyncIteration
        return item


class StreamPump:
    """
    Background task streaming one job's events.

    Usage:
        pump = StreamPump(http_client, job)
        pump.start()
        async for event in pump.events:
            print(event)
        await pump.wait_closed()
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        job: Job,
        last_event: Optional[StreamEvent] = None,
        max_queue_size: int = DEFAULT_QUEUE_SIZE,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY_SECONDS,
        cancel_event: Optional[asyncio.Event] = None,
        timeout_seconds: float = 60.0,
    ):
        """
        Initialize the pump.

        Args:
            http_client: Client used for the stream connection
            job: Job whose ``urls["stream"]`` is consumed
            last_event: Last event already seen; its id is sent as Last-Event-ID
            max_queue_size: Capacity of each channel
            reconnect_delay: Pause after a read error before reconnecting
            cancel_event: Set to stop the pump
            timeout_seconds: Connect/write timeout (reads never time out)

        Raises:
            StreamUnavailableError: The job has no stream URL
        """
        url = job.stream_url
        if not url:
            raise StreamUnavailableError(job.id)

        self.url = url
        self.job_id = job.id
        self.reconnect_delay = reconnect_delay
        self.cancel_event = cancel_event if cancel_event is not None else asyncio.Event()
        self.events: Channel[StreamEvent] = Channel(max_queue_size)
        self.errors: Channel[ReplicateError] = Channel(max_queue_size)
        self.connections = 0

        self._http_client = http_client
        self._timeout = httpx.Timeout(timeout_seconds, read=None)
        self._resume_id = last_event.id if last_event is not None and last_event.id else None
        self._task: Optional[asyncio.Task] = None

    @property
    def resume_id(self) -> Optional[str]:
        """Id sent as Last-Event-ID on the next connection."""
        return self._resume_id

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the pump background task."""
        if self._task is not None:
            logger.warning("stream_pump_already_started", extra={"job_id": self.job_id})
            return
        self._task = asyncio.create_task(
            self._supervise(),
            name=f"stream-pump-{self.job_id}",
        )
        logger.info("stream_pump_started", extra={"job_id": self.job_id})

    async def stop(self) -> None:
        """Stop the pump and wait for it to exit."""
        self.cancel_event.set()
        await self.wait_closed()

    async def wait_closed(self) -> None:
        """Wait for the pump to exit on its own (done, fatal error or cancel)."""
        if self._task is not None:
            await self._task

    async def _supervise(self) -> None:
        pump = asyncio.create_task(self._pump())
        stop_requested = asyncio.create_task(self.cancel_event.wait())
        graceful = False
        try:
            done, _ = await asyncio.wait(
                {pump, stop_requested},
                return_when=asyncio.FIRST_COMPLETED,
            )
            graceful = pump in done
            if graceful:
                pump.result()
        finally:
            for task in (pump, stop_requested):
                task.cancel()
            await asyncio.gather(pump, stop_requested, return_exceptions=True)

            # The consumer may have stopped reading
            self.events.finish()
            self.errors.finish()

            logger.info(
                "stream_pump_stopped",
                extra={
                    "job_id": self.job_id,
                    "cancelled": not graceful,
                    "connections": self.connections,
                }
            )

    def _headers(self) -> dict[str, str]:
        headers = dict(STREAM_HEADERS)
        if self._resume_id:
            headers["Last-Event-ID"] = self._resume_id
        return headers

    async def _pump(self) -> None:
        while True:
            self.connections += 1
            logger.debug(
                "stream_connect",
                extra={
                    "job_id": self.job_id,
                    "connection": self.connections,
                    "resume_id": self._resume_id,
                }
            )

            read_failed = False
            try:
                async with self._http_client.stream(
                    "GET",
                    self.url,
                    headers=self._headers(),
                    timeout=self._timeout,
                ) as response:
                    if not response.is_success:
                        content = await response.aread()
                        await self._publish_error(
                            APIStatusError.from_response(response.status_code, content)
                        )
                        return

                    buffer = EventBuffer()
                    try:
                        async for chunk in response.aiter_bytes():
                            for block in buffer.feed(chunk):
                                if await self._dispatch(block):
                                    return
                    except httpx.TransportError as e:
                        logger.warning(
                            "stream_read_error",
                            extra={
                                "job_id": self.job_id,
                                "error": str(e),
                                "reconnect_delay": self.reconnect_delay,
                            }
                        )
                        await self._publish_error(
                            TransportError(
                                f"Error reading stream: {e}",
                                url=self.url,
                                original_error=e,
                            )
                        )
                        read_failed = True
            except httpx.TransportError as e:
                logger.error(
                    "stream_connect_failed",
                    extra={"job_id": self.job_id, "error": str(e)}
                )
                await self._publish_error(
                    TransportError(
                        f"Failed to send request: {e}",
                        url=self.url,
                        original_error=e,
                    )
                )
                return

            if read_failed:
                # Response is closed by now; pause before reconnecting
                await asyncio.sleep(self.reconnect_delay)
                continue

            logger.info("stream_ended_without_done", extra={"job_id": self.job_id})

    async def _dispatch(self, block: str) -> bool:
        """Decode and publish one block. Returns True when the pump should stop."""
        try:
            event = decode_event(block)
        except ResponseDecodeError as e:
            await self._publish_error(e)
            return False

        try:
            await self.events.send(event)
        except ChannelClosedError:
            logger.warning("stream_consumer_gone", extra={"job_id": self.job_id})
            await self._publish_error(
                ChannelClosedError("Failed to send stream event: event channel closed")
            )
            return True

        if event.id:
            self._resume_id = event.id
        return event.is_done

    async def _publish_error(self, error: ReplicateError) -> None:
        try:
            await self.errors.send(error)
        except ChannelClosedError:
            logger.debug(
                "stream_error_dropped",
                extra={"job_id": self.job_id, "error": str(error)}
            )
