"""Short per-tool argument summaries for the running-tool line.

Each tool name maps to an extractor that picks the one argument worth
showing (a file path, a shell command, a search pattern, a URL) and trims it
to a fixed number of visible characters. Adding a tool takes one decorated
function:

    @target_extractor("MyTool")
    def _target_my_tool(args):
        return truncate_str(args.get("thing"), 30)
"""

from __future__ import annotations

from typing import Any, Callable

PATH_WIDTH = 30
COMMAND_WIDTH = 30
PATTERN_WIDTH = 20
URL_WIDTH = 30
QUERY_WIDTH = 30

ELLIPSIS = "..."
PATH_PREFIX = ".../"


# ── Truncation ──


def truncate_str(text: str, max_chars: int) -> str:
    """Trim ``text`` to ``max_chars`` characters, ending in ``...`` when cut.

    Works on code points, so a multi-byte character is never split.
    """
    if len(text) <= max_chars:
        return text
    if max_chars <= len(ELLIPSIS):
        return text[: max(0, max_chars)]
    return text[: max_chars - len(ELLIPSIS)] + ELLIPSIS


def truncate_path(path: str, max_chars: int) -> str:
    """Shorten a path to ``.../<filename>``, or a trimmed filename."""
    if len(path) <= max_chars:
        return path
    filename = path.rsplit("/", 1)[-1]
    if len(filename) + len(PATH_PREFIX) <= max_chars:
        return f"{PATH_PREFIX}{filename}"
    return truncate_str(filename, max_chars)


def _str_arg(args: dict[str, Any], key: str) -> str | None:
    value = args.get(key)
    return value if isinstance(value, str) else None


# ── Extractor Registry ──

_EXTRACTORS: dict[str, Callable[[dict[str, Any]], str | None]] = {}


def target_extractor(*names: str):
    """Decorator to register a target extractor for one or more tool names."""

    def decorator(fn: Callable[[dict[str, Any]], str | None]):
        for name in names:
            _EXTRACTORS[name] = fn
        return fn

    return decorator


def extract_target(name: str, tool_input: Any) -> str | None:
    """Main entry point: summarize a ``tool_use`` block's ``input``."""
    if not isinstance(tool_input, dict):
        return None
    extractor = _EXTRACTORS.get(name, _target_default)
    return extractor(tool_input)


@target_extractor("Read", "Write", "Edit", "NotebookEdit")
def _target_file(args: dict[str, Any]) -> str | None:
    path = _str_arg(args, "file_path")
    return truncate_path(path, PATH_WIDTH) if path is not None else None


@target_extractor("Bash")
def _target_bash(args: dict[str, Any]) -> str | None:
    command = _str_arg(args, "command")
    return truncate_str(command, COMMAND_WIDTH) if command is not None else None


@target_extractor("Glob", "Grep")
def _target_search(args: dict[str, Any]) -> str | None:
    pattern = _str_arg(args, "pattern")
    return truncate_str(pattern, PATTERN_WIDTH) if pattern is not None else None


@target_extractor("WebFetch")
def _target_fetch(args: dict[str, Any]) -> str | None:
    url = _str_arg(args, "url")
    return truncate_str(url, URL_WIDTH) if url is not None else None


@target_extractor("WebSearch")
def _target_web_search(args: dict[str, Any]) -> str | None:
    query = _str_arg(args, "query")
    return truncate_str(query, QUERY_WIDTH) if query is not None else None


@target_extractor("Task")
def _target_task(args: dict[str, Any]) -> str | None:
    # Task calls become agents, never tool lines.
    return None


def _target_default(args: dict[str, Any]) -> str | None:
    """Unknown tools: first of file_path, command, pattern."""
    for extractor in (_target_file, _target_bash, _target_search):
        target = extractor(args)
        if target is not None:
            return target
    return None
