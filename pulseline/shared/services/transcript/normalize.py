"""Normalization helpers for transcript events."""

from __future__ import annotations

from typing import Any

from pulseline.shared.models.activity import TodoSummary

TERMINAL_STATUSES = frozenset({"completed", "done", "failed", "cancelled", "canceled", "success"})
TODO_WRAPPER_KEYS = ("input", "arguments", "args", "output", "result")

_MIN_TIMESTAMP_LEN = len("YYYY-MM-DDTHH:MM:SS")


def _days_from_civil(year: int, month: int, day: int) -> int | None:
    """Days since 1970-01-01 for a proleptic Gregorian date."""
    if not 1 <= month <= 12 or not 1 <= day <= 31:
        return None
    y = year - 1 if month <= 2 else year
    m = month + 9 if month <= 2 else month - 3
    era = (y if y >= 0 else y - 399) // 400
    yoe = y - era * 400
    doy = (153 * m + 2) // 5 + day - 1
    doe = yoe * 365 + yoe // 4 - yoe // 100 + doy
    return era * 146097 + doe - 719468


def _digits(text: str) -> int | None:
    return int(text) if text.isascii() and text.isdigit() else None


def parse_timestamp_ms(value: Any) -> int | None:
    """Parse ``YYYY-MM-DDTHH:MM:SS[.fff][Z|±HH:MM]`` into epoch milliseconds.

    Fractional seconds beyond milliseconds are truncated. Any zone suffix is
    accepted but not applied; the clock time is taken as UTC.
    """
    if not isinstance(value, str):
        return None
    raw = value.strip()
    if len(raw) < _MIN_TIMESTAMP_LEN:
        return None
    if raw[4] != "-" or raw[7] != "-" or raw[10] not in "T " or raw[13] != ":" or raw[16] != ":":
        return None

    parts = [_digits(raw[0:4]), _digits(raw[5:7]), _digits(raw[8:10]),
             _digits(raw[11:13]), _digits(raw[14:16]), _digits(raw[17:19])]
    if any(part is None for part in parts):
        return None
    year, month, day, hour, minute, second = parts

    millis = 0
    if len(raw) > 19 and raw[19] == ".":
        end = 20
        while end < len(raw) and raw[end].isascii() and raw[end].isdigit():
            end += 1
        fraction = raw[20:end]
        if len(fraction) == 1:
            millis = int(fraction) * 100
        elif len(fraction) == 2:
            millis = int(fraction) * 10
        elif fraction:
            millis = int(fraction[:3])

    days = _days_from_civil(year, month, day)
    if days is None:
        return None
    seconds = days * 86400 + hour * 3600 + minute * 60 + second
    return seconds * 1000 + millis


def find_string(value: Any, keys: tuple[str, ...] | list[str]) -> str | None:
    """First string value among ``keys`` of a JSON object."""
    if not isinstance(value, dict):
        return None
    for key in keys:
        found = value.get(key)
        if isinstance(found, str):
            return found
    return None


def find_nested_string(value: Any, paths: list[tuple[str, ...]]) -> str | None:
    """First string reached by walking one of ``paths`` into ``value``."""
    for path in paths:
        cursor = value
        for segment in path:
            if not isinstance(cursor, dict):
                cursor = None
                break
            cursor = cursor.get(segment)
        if isinstance(cursor, str):
            return cursor
    return None


def find_todos_array(value: Any) -> list[Any] | None:
    """A ``todos`` list at the top level or under a common wrapper key."""
    if not isinstance(value, dict):
        return None
    todos = value.get("todos")
    if isinstance(todos, list):
        return todos
    for key in TODO_WRAPPER_KEYS:
        wrapper = value.get(key)
        if isinstance(wrapper, dict) and isinstance(wrapper.get("todos"), list):
            return wrapper["todos"]
    return None


def _status_of(todo: Any) -> str:
    if isinstance(todo, dict) and isinstance(todo.get("status"), str):
        return todo["status"].lower()
    return ""


def extract_todo_summary(value: Any) -> TodoSummary | None:
    """Summarize a legacy whole-list ``todos[]`` payload."""
    todos = find_todos_array(value)
    if not todos:
        return None
    completed = sum(1 for todo in todos if _status_of(todo) in ("completed", "done"))
    in_progress: list[str] = []
    for todo in todos:
        if _status_of(todo) != "in_progress":
            continue
        label = find_string(todo, ("activeForm", "content"))
        if label:
            in_progress.append(label)
    return TodoSummary.from_counts(completed, len(todos), in_progress)


def is_terminal_status(status: str) -> bool:
    return status.lower() in TERMINAL_STATUSES
