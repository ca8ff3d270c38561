"""Progress extraction from free-text job logs."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

# tqdm-style line: "NN% |<bar>| C/T ..."
PROGRESS_PATTERN = re.compile(
    r"^\s*(?P<percentage>\d+)%\s*\|.+?\|\s*(?P<current>\d+)/(?P<total>\d+)"
)


@dataclass(frozen=True)
class ProgressReading:
    """A single progress-bar reading."""
    fraction: float
    current: int
    total: int


def parse_progress(logs: Optional[str]) -> Optional[ProgressReading]:
    """
    Return the most recent progress reading in ``logs``.

    Lines are scanned from the end, so the last progress bar printed wins
    even when other output is interleaved with it.

    Args:
        logs: Multi-line log text

    Returns:
        ProgressReading with the percentage scaled to 0-1, or None
    """
    if not logs:
        return None

    for line in reversed(logs.splitlines()):
        match = PROGRESS_PATTERN.match(line.strip())
        if match is None:
            continue
        return ProgressReading(
            fraction=int(match.group("percentage")) / 100.0,
            current=int(match.group("current")),
            total=int(match.group("total")),
        )

    return None
