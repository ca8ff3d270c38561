"""
Event stream consumption.

Provides:
- decode_event / EventBuffer: bytes -> StreamEvent
- StreamPump: background reconnecting stream reader
- Channel: bounded event/error channel
"""
from replicate_jobs.streaming.events import (
    DONE_EVENT,
    OUTPUT_EVENT,
    EventBuffer,
    StreamEvent,
    decode_event,
)
from replicate_jobs.streaming.pump import Channel, StreamPump

__all__ = [
    "DONE_EVENT",
    "OUTPUT_EVENT",
    "EventBuffer",
    "StreamEvent",
    "decode_event",
    "Channel",
    "StreamPump",
]
