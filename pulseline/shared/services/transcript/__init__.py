"""Transcript tailing, classification and state folding."""

from .classifier import classify_event
from .collector import (
    FileTranscriptCollector,
    TranscriptCollector,
    TranscriptSnapshot,
    apply_action,
    apply_transcript_event,
    snapshot_from_state,
)
from .normalize import parse_timestamp_ms
from .reader import TranscriptReader

__all__ = [
    "FileTranscriptCollector",
    "TranscriptCollector",
    "TranscriptReader",
    "TranscriptSnapshot",
    "apply_action",
    "apply_transcript_event",
    "classify_event",
    "parse_timestamp_ms",
    "snapshot_from_state",
]
