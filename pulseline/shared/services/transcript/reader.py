"""Incremental transcript tailing.

The transcript is an append-only JSON-lines file. Each invocation reads only
the bytes past the offset recorded in the session, so a long session costs
the same per redraw as a short one.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def should_throttle(last_poll: float | None, throttle_ms: int, now: float | None = None) -> bool:
    """True when the previous read happened less than ``throttle_ms`` ago.

    ``last_poll`` and ``now`` are ``time.monotonic()`` readings. A throttle of
    0 never skips, and a session that has never polled always reads.
    """
    if throttle_ms <= 0 or last_poll is None:
        return False
    current = now if now is not None else time.monotonic()
    return (current - last_poll) * 1000 < throttle_ms


def read_new_lines(path: Path, start_offset: int, end_offset: int) -> list[str]:
    """Trimmed, non-empty lines in the byte range ``[start_offset, end_offset)``.

    Bytes appended after ``end_offset`` are left for the next poll, so the
    stored offset always matches what was applied.

    Bytes that are not valid UTF-8 are replaced rather than rejected, so one
    bad sequence costs at most the line it sits on.
    """
    with path.open("rb") as handle:
        handle.seek(start_offset)
        data = handle.read(max(0, end_offset - start_offset))
    text = data.decode("utf-8", errors="replace")
    lines: list[str] = []
    for line in text.splitlines():
        line = line.strip()
        if line:
            lines.append(line)
    return lines


def parse_events(lines: list[str]) -> list[Any]:
    events: list[Any] = []
    for line in lines:
        try:
            events.append(json.loads(line))
        except (json.JSONDecodeError, RecursionError):
            logger.debug("Skipping malformed transcript line: %.80s", line)
    return events


def apply_window(events: list[Any], window: int) -> list[Any]:
    """Keep only the newest ``window`` events (0 keeps everything)."""
    if window > 0 and len(events) > window:
        logger.debug("Windowing %d transcript events down to %d", len(events), window)
        return events[-window:]
    return events


@dataclass
class TranscriptRead:
    """Outcome of one poll of the transcript file."""

    events: list[Any] = field(default_factory=list)
    file_length: int = 0
    truncated: bool = False


class TranscriptReader:
    """Reads new events from a transcript file given a prior offset."""

    def __init__(self, window_events: int = 0) -> None:
        self.window_events = window_events

    def file_length(self, path: Path) -> int | None:
        try:
            return path.stat().st_size
        except OSError:
            logger.debug("Cannot stat transcript %s", path, exc_info=True)
            return None

    def read(self, path: Path, offset: int) -> TranscriptRead | None:
        """Poll ``path`` from ``offset``; ``None`` if the file is unavailable.

        A file shorter than ``offset`` was truncated or rotated: the read
        restarts from byte 0 and the result is flagged ``truncated``.
        """
        length = self.file_length(path)
        if length is None:
            return None

        truncated = length < offset
        if truncated:
            logger.info("Transcript %s shrank below offset %d; rereading from start", path, offset)
            offset = 0

        try:
            lines = read_new_lines(path, offset, length)
        except OSError:
            logger.debug("Failed to read transcript %s", path, exc_info=True)
            lines = []
        events = apply_window(parse_events(lines), self.window_events)
        return TranscriptRead(events=events, file_length=length, truncated=truncated)
