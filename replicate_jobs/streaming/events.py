"""
Server-sent event decoding.

Provides:
- StreamEvent: one decoded event block
- decode_event: block text -> StreamEvent
- EventBuffer: byte chunks -> complete event blocks
"""
from __future__ import annotations

import codecs
from dataclasses import dataclass

from replicate_jobs.inference.exceptions import InvalidEventDataError

DONE_EVENT = "done"
OUTPUT_EVENT = "output"

BLOCK_SEPARATOR = "\n\n"


@dataclass(frozen=True)
class StreamEvent:
    """
    One event from a job's stream.

    ``event_type`` may be empty when the service omits it. ``id`` is the
    resume token for Last-Event-ID.
    """
    event_type: str = ""
    id: str = ""
    data: str = ""

    @property
    def is_done(self) -> bool:
        return self.event_type == DONE_EVENT

    def __str__(self) -> str:
        return self.data if self.event_type == OUTPUT_EVENT else ""


def decode_event(block: str) -> StreamEvent:
    """
    Decode one event block.

    Each line is split on its first ``:``; ``id``, ``event`` and ``data``
    are recognised and anything else is ignored. Repeated ``data`` lines
    are joined with newlines in the order seen.

    Args:
        block: Event text without the blank-line terminator

    Returns:
        The decoded event

    Raises:
        InvalidEventDataError: Data is non-empty and not ASCII
    """
    event_type = ""
    event_id = ""
    data_lines: list[str] = []

    for line in block.split("\n"):
        line = line.rstrip("\r")
        field, sep, value = line.partition(":")
        if not sep:
            continue
        value = value.lstrip()
        if field == "id":
            event_id = value
        elif field == "event":
            event_type = value
        elif field == "data":
            data_lines.append(value)

    data = "\n".join(data_lines)
    if data and not data.isascii():
        raise InvalidEventDataError(data)

    return StreamEvent(event_type=event_type, id=event_id, data=data)


class EventBuffer:
    """
    Accumulates stream bytes and yields complete event blocks.

    Bytes are decoded incrementally, so a multi-byte character split
    across chunks is reassembled instead of being replaced.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._text = ""

    def feed(self, chunk: bytes) -> list[str]:
        """
        Append a chunk and split off every complete block.

        Args:
            chunk: Raw bytes from the connection

        Returns:
            Blocks completed by this chunk, oldest first
        """
        self._text += self._decoder.decode(chunk)
        blocks = []
        while True:
            block, sep, rest = self._text.partition(BLOCK_SEPARATOR)
            if not sep:
                break
            blocks.append(block)
            self._text = rest
        return blocks

    @property
    def pending(self) -> str:
        """Text received after the last complete block."""
        return self._text
