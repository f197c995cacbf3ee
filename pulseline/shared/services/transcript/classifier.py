"""Transcript event classification.

Transcripts mix three historical event shapes. Each shape has one pure
classifier here that either declines (returns ``None``) or turns the raw
JSON value into a list of normalized actions. ``classify_event`` tries the
classifiers in priority order and stops at the first that accepts:

1. content blocks: ``{"message": {"content": [{"type": "tool_use", ...}]}}``
   or a top-level ``content`` array of typed blocks
2. agent progress: ``{"type": "progress", "data": {"type": "agent_progress"}}``
3. flat events: ``{"type": "tool_use", "tool_use_id": ..., "name": ...}``
   and friends, with field-name aliases for older producers

No classifier touches session state; the collector applies the actions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from pulseline.shared.formatters.tool_target import extract_target
from pulseline.shared.models.activity import TodoSummary
from pulseline.shared.services.transcript.normalize import (
    extract_todo_summary,
    find_nested_string,
    find_string,
    is_terminal_status,
    parse_timestamp_ms,
)

TASK_TOOL = "Task"
TODO_TOOLS = frozenset({"TaskCreate", "TaskUpdate", "TodoWrite"})

_TOOL_NAME_KEYS = ("name", "tool_name", "tool")
_TOOL_ID_KEYS = ("id", "tool_use_id", "tool_call_id")
_RESULT_ID_KEYS = ("tool_use_id", "id", "tool_call_id")
_EVENT_TYPE_KEYS = ("type", "event", "event_type")


# ── Actions ──


@dataclass(frozen=True)
class ToolStarted:
    tool_id: str
    name: str
    target: str | None = None


@dataclass(frozen=True)
class ToolFinished:
    """A ``tool_result`` arrived; may also close a Task-backed agent."""

    tool_use_id: str


@dataclass(frozen=True)
class TaskQueued:
    """A ``Task`` call waiting to be paired with an agent id."""

    tool_use_id: str
    description: str
    agent_type: str | None = None
    model: str | None = None
    event_ts: int | None = None


@dataclass(frozen=True)
class AgentProgressed:
    """Non-terminal agent progress; linking is decided against state."""

    agent_id: str
    description: str
    agent_type: str | None = None
    model: str | None = None
    event_ts: int | None = None


@dataclass(frozen=True)
class AgentUpserted:
    agent_id: str
    description: str
    agent_type: str | None = None
    model: str | None = None
    event_ts: int | None = None


@dataclass(frozen=True)
class AgentRemoved:
    agent_id: str


@dataclass(frozen=True)
class TaskItemCreated:
    subject: str
    active_form: str | None = None


@dataclass(frozen=True)
class TaskItemUpdated:
    task_id: str
    status: str


@dataclass(frozen=True)
class TodoReplaced:
    """Legacy whole-list todo payload (``None`` clears the summary)."""

    todo: TodoSummary | None


@dataclass(frozen=True)
class Ignored:
    pass


TodoMutated = TaskItemCreated | TaskItemUpdated | TodoReplaced
Action = (
    ToolStarted
    | ToolFinished
    | TaskQueued
    | AgentProgressed
    | AgentUpserted
    | AgentRemoved
    | TodoMutated
    | Ignored
)

Classifier = Callable[[dict[str, Any], int | None], list[Action] | None]


# ── Todo routing ──


def _task_create(event: dict[str, Any], fallback: dict[str, Any] | None) -> list[Action]:
    subject = (
        find_string(event, ("subject",))
        or find_nested_string(event, [("input", "subject")])
        or find_string(fallback, ("subject",))
    )
    if subject is None:
        return []
    active_form = (
        find_string(event, ("activeForm",))
        or find_nested_string(event, [("input", "activeForm")])
        or find_string(fallback, ("activeForm",))
    )
    return [TaskItemCreated(subject=subject, active_form=active_form)]


def _task_update(event: dict[str, Any], fallback: dict[str, Any] | None) -> list[Action]:
    task_id = (
        find_string(event, ("taskId",))
        or find_nested_string(event, [("input", "taskId")])
        or find_string(fallback, ("taskId",))
    )
    if task_id is not None:
        status = (
            find_string(event, ("status",))
            or find_nested_string(event, [("input", "status")])
            or find_string(fallback, ("status",))
            or "pending"
        )
        return [TaskItemUpdated(task_id=task_id, status=status)]
    # Older producers sent the whole list through TaskUpdate.
    return _todo_write(event, fallback)


def _todo_write(event: dict[str, Any], fallback: dict[str, Any] | None) -> list[Action]:
    todo = extract_todo_summary(event)
    if todo is None and fallback is not None:
        todo = extract_todo_summary(fallback)
    return [TodoReplaced(todo=todo)]


def route_todo(name: str, event: dict[str, Any], fallback: dict[str, Any] | None = None) -> list[Action]:
    if name == "TaskCreate":
        return _task_create(event, fallback)
    if name == "TaskUpdate":
        return _task_update(event, fallback)
    return _todo_write(event, fallback)


# ── Shape 1: content blocks ──


def content_blocks(raw_event: dict[str, Any]) -> list[Any] | None:
    """The typed ``content`` array of an event, if it has one."""
    message = raw_event.get("message")
    blocks = message.get("content") if isinstance(message, dict) else None
    if not isinstance(blocks, list):
        blocks = raw_event.get("content")
    if not isinstance(blocks, list):
        return None
    if not any(isinstance(block, dict) and isinstance(block.get("type"), str) for block in blocks):
        return None
    return blocks


def _classify_tool_use_block(block: dict[str, Any], event_ts: int | None) -> list[Action]:
    name = find_string(block, ("name",)) or "unknown"
    tool_id = find_string(block, ("id",)) or "unknown-id"
    tool_input = block.get("input")

    if name == TASK_TOOL:
        args = tool_input if isinstance(tool_input, dict) else {}
        return [
            TaskQueued(
                tool_use_id=tool_id,
                description=find_string(args, ("description", "prompt")) or "Task",
                agent_type=find_string(args, ("subagent_type",)),
                model=find_string(args, ("model",)),
                event_ts=event_ts,
            )
        ]
    if name in TODO_TOOLS:
        return route_todo(name, block)
    return [ToolStarted(tool_id=tool_id, name=name, target=extract_target(name, tool_input))]


def _classify_tool_result_block(block: dict[str, Any]) -> list[Action]:
    actions: list[Action] = []
    tool_use_id = find_string(block, ("tool_use_id",))
    if tool_use_id is not None:
        actions.append(ToolFinished(tool_use_id=tool_use_id))
    todo = extract_todo_summary(block)
    if todo is not None:
        actions.append(TodoReplaced(todo=todo))
    return actions


def classify_content_blocks(raw_event: dict[str, Any], event_ts: int | None) -> list[Action] | None:
    blocks = content_blocks(raw_event)
    if blocks is None:
        return None
    actions: list[Action] = []
    for block in blocks:
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")
        if block_type == "tool_use":
            actions.extend(_classify_tool_use_block(block, event_ts))
        elif block_type == "tool_result":
            actions.extend(_classify_tool_result_block(block))
    return actions


# ── Shape 2: agent progress ──


def classify_agent_progress(raw_event: dict[str, Any], event_ts: int | None) -> list[Action] | None:
    if raw_event.get("type") != "progress":
        return None
    data = raw_event.get("data")
    if not isinstance(data, dict) or data.get("type") != "agent_progress":
        return None

    agent_id = find_string(data, ("agentId", "agent_id")) or "agent"
    status = find_string(data, ("status", "state")) or "running"
    if is_terminal_status(status):
        return [AgentRemoved(agent_id=agent_id)]
    return [
        AgentProgressed(
            agent_id=agent_id,
            description=find_string(data, ("description", "prompt", "message")) or "Agent",
            agent_type=find_string(data, ("agentType", "subagent_type")),
            model=find_string(data, ("model",)),
            event_ts=event_ts,
        )
    ]


# ── Shape 3: flat events ──


def _flat_task_tool(event: dict[str, Any], raw_event: dict[str, Any], event_ts: int | None) -> list[Action]:
    """A flat ``tool_use`` of Task: tracked directly as an agent."""
    agent_id = (
        find_string(event, ("id", "tool_use_id", "task_id"))
        or find_string(raw_event, ("id", "tool_use_id", "task_id"))
        or "task-active"
    )
    description = (
        find_string(event, ("name", "description", "prompt"))
        or find_nested_string(
            event,
            [("input", "description"), ("input", "prompt"), ("arguments", "description")],
        )
        or "Task"
    )
    return [AgentUpserted(agent_id=agent_id, description=description, event_ts=event_ts)]


def _flat_tool_use(event: dict[str, Any], raw_event: dict[str, Any], event_ts: int | None) -> list[Action]:
    name = find_string(event, _TOOL_NAME_KEYS) or find_string(raw_event, _TOOL_NAME_KEYS) or "unknown"
    if name == TASK_TOOL:
        return _flat_task_tool(event, raw_event, event_ts)
    if name in TODO_TOOLS:
        return route_todo(name, event, raw_event)
    tool_id = (
        find_string(event, _TOOL_ID_KEYS)
        or find_string(raw_event, _TOOL_ID_KEYS)
        or f"{name}-active"
    )
    return [ToolStarted(tool_id=tool_id, name=name)]


def _flat_tool_result(event: dict[str, Any], raw_event: dict[str, Any]) -> list[Action]:
    actions: list[Action] = []
    tool_use_id = find_string(event, _RESULT_ID_KEYS) or find_string(raw_event, _RESULT_ID_KEYS)
    if tool_use_id is not None:
        actions.append(ToolFinished(tool_use_id=tool_use_id))
    todo = extract_todo_summary(event) or extract_todo_summary(raw_event)
    if todo is not None:
        actions.append(TodoReplaced(todo=todo))
    return actions


def _flat_task_event(event: dict[str, Any], event_ts: int | None) -> list[Action]:
    agent_id = find_string(event, ("task_id", "id", "name")) or "task"
    description = find_string(event, ("name", "description", "prompt")) or agent_id
    status = find_string(event, ("status", "state")) or "running"
    if is_terminal_status(status):
        return [AgentRemoved(agent_id=agent_id)]
    return [AgentUpserted(agent_id=agent_id, description=description, event_ts=event_ts)]


def _flat_by_name(event: dict[str, Any], raw_event: dict[str, Any], event_ts: int | None) -> list[Action]:
    name = find_string(event, _TOOL_NAME_KEYS)
    if name == TASK_TOOL:
        return _flat_task_tool(event, raw_event, event_ts)
    if name in TODO_TOOLS:
        return route_todo(name, event, raw_event)
    return [Ignored()]


def classify_flat_event(raw_event: dict[str, Any], event_ts: int | None) -> list[Action] | None:
    message = raw_event.get("message")
    event = message if isinstance(message, dict) else raw_event
    event_type = find_string(event, _EVENT_TYPE_KEYS) or find_string(raw_event, _EVENT_TYPE_KEYS)

    if event_type == "tool_use":
        return _flat_tool_use(event, raw_event, event_ts)
    if event_type == "tool_result":
        return _flat_tool_result(event, raw_event)
    if event_type == TASK_TOOL:
        return _flat_task_event(event, event_ts)
    if event_type in TODO_TOOLS:
        return route_todo(event_type, event, raw_event)
    return _flat_by_name(event, raw_event, event_ts)


CLASSIFIERS: tuple[Classifier, ...] = (
    classify_content_blocks,
    classify_agent_progress,
    classify_flat_event,
)


def event_timestamp(raw_event: dict[str, Any]) -> int | None:
    return parse_timestamp_ms(raw_event.get("timestamp"))


def classify_event(raw_event: Any) -> list[Action]:
    """Normalize one transcript JSON value into state actions."""
    if not isinstance(raw_event, dict):
        return [Ignored()]
    event_ts = event_timestamp(raw_event)
    for classifier in CLASSIFIERS:
        actions = classifier(raw_event, event_ts)
        if actions is not None:
            return actions
    return [Ignored()]
