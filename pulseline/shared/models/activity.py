"""Activity models derived from the session transcript.

These are the normalized facts the transcript collector maintains: tools
currently running, per-name completion tallies, sub-agents, the pending
Task queue used to link agents to their originating Task call, and todo
progress. Each model round-trips through a plain dict for the session cache.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


def _opt_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _opt_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    return value if isinstance(value, int) else None


def _require_mapping(data: Any, model: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise TypeError(f"{model} payload must be an object, got {type(data).__name__}")
    return data


@dataclass
class ToolInvocation:
    """A tool call that has started but not yet produced a result."""

    id: str
    name: str
    target: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> ToolInvocation:
        data = _require_mapping(data, "ToolInvocation")
        return cls(id=str(data["id"]), name=str(data["name"]), target=_opt_str(data.get("target")))


@dataclass
class CompletedToolCount:
    name: str
    count: int


@dataclass
class AgentTask:
    """A delegated sub-agent.

    Active while ``completed_at`` is ``None``. Timestamps are epoch
    milliseconds.
    """

    id: str
    description: str
    agent_type: str | None = None
    model: str | None = None
    started_at: int | None = None
    completed_at: int | None = None

    @property
    def is_active(self) -> bool:
        return self.completed_at is None

    def elapsed_ms(self, now_ms: int) -> int | None:
        """Running time so far, or the fixed duration once completed."""
        if self.started_at is None:
            return None
        end = self.completed_at if self.completed_at is not None else now_ms
        return max(0, end - self.started_at)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> AgentTask:
        data = _require_mapping(data, "AgentTask")
        return cls(
            id=str(data["id"]),
            description=str(data["description"]),
            agent_type=_opt_str(data.get("agent_type")),
            model=_opt_str(data.get("model")),
            started_at=_opt_int(data.get("started_at")),
            completed_at=_opt_int(data.get("completed_at")),
        )


@dataclass
class PendingTaskLink:
    """A Task call waiting for its agent-progress identity to appear."""

    tool_use_id: str
    description: str
    agent_type: str | None = None
    model: str | None = None
    event_ts: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> PendingTaskLink:
        data = _require_mapping(data, "PendingTaskLink")
        return cls(
            tool_use_id=str(data["tool_use_id"]),
            description=str(data["description"]),
            agent_type=_opt_str(data.get("agent_type")),
            model=_opt_str(data.get("model")),
            event_ts=_opt_int(data.get("event_ts")),
        )


@dataclass
class TaskItem:
    """One row of a TaskCreate/TaskUpdate todo list."""

    subject: str
    active_form: str | None = None
    status: str = "pending"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> TaskItem:
        data = _require_mapping(data, "TaskItem")
        return cls(
            subject=str(data["subject"]),
            active_form=_opt_str(data.get("active_form")),
            status=str(data.get("status") or "pending"),
        )


@dataclass
class TodoSummary:
    """Aggregate todo progress shown on the TODO line."""

    pending: int
    completed: int
    total: int
    display_text: str
    in_progress_items: list[str] = field(default_factory=list)

    @classmethod
    def from_counts(
        cls,
        completed: int,
        total: int,
        in_progress_items: list[str] | None = None,
    ) -> TodoSummary | None:
        """Build a summary, or ``None`` once nothing is left pending."""
        pending = max(0, total - completed)
        if total == 0 or pending == 0:
            return None
        return cls(
            pending=pending,
            completed=completed,
            total=total,
            display_text=f"{completed}/{total} done, {pending} pending",
            in_progress_items=list(in_progress_items or []),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> TodoSummary:
        data = _require_mapping(data, "TodoSummary")
        items = data.get("in_progress_items") or []
        return cls(
            pending=int(data["pending"]),
            completed=int(data["completed"]),
            total=int(data["total"]),
            display_text=str(data["display_text"]),
            in_progress_items=[str(item) for item in items if isinstance(item, str)],
        )
