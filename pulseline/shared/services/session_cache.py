"""Session cache — carries derived session state across status line processes.

Every redraw runs a fresh process, so the transcript offset and everything
derived from the transcript would be lost without a disk cache. One JSON file
per session key lives in the system temp directory:

    <tmp>/pulseline-<hash>.json

The hash is a stable digest of the session key (session id, transcript path,
project path); it only needs to be stable across processes, not secret.

Loading is best-effort: a missing, truncated, or foreign-schema file is a
plain cache miss. Saving writes a sibling temp file and renames it over the
target. Concurrent invocations for the same key are last-writer-wins.
"""
from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Generic, TypeVar

from pulseline.shared.models.activity import (
    AgentTask,
    PendingTaskLink,
    TaskItem,
    TodoSummary,
    ToolInvocation,
)
from pulseline.shared.models.payload import BudgetMetrics
from pulseline.shared.services.environment import EnvSnapshot
from pulseline.shared.services.git_status import GitSnapshot

logger = logging.getLogger(__name__)

# Env/git snapshots older than this are recomputed instead of restored.
CACHE_TTL_MS = 10_000
CACHE_SCHEMA_VERSION = 1
CACHE_FILE_PREFIX = "pulseline"

SnapshotT = TypeVar("SnapshotT", EnvSnapshot, GitSnapshot)


def now_epoch_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class CacheEntry(Generic[SnapshotT]):
    """An env or git snapshot stamped with its capture time."""

    path: str
    snapshot: SnapshotT
    cached_at_ms: int

    def is_fresh(self, now_ms: int) -> bool:
        return now_ms - self.cached_at_ms < CACHE_TTL_MS

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "snapshot": self.snapshot.to_dict(),
            "cached_at_ms": self.cached_at_ms,
        }

    @classmethod
    def from_dict(cls, data: Any, snapshot_cls: type[SnapshotT]) -> CacheEntry[SnapshotT]:
        if not isinstance(data, dict):
            raise TypeError("cache entry must be an object")
        return cls(
            path=str(data["path"]),
            snapshot=snapshot_cls.from_dict(data["snapshot"]),
            cached_at_ms=int(data["cached_at_ms"]),
        )


def _optional_int(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise TypeError("expected an integer, got a boolean")
    return int(value)


@dataclass
class SessionCache:
    """Serializable projection of ``SessionState``."""

    transcript_offset: int = 0
    transcript_path: str | None = None
    active_tools: list[ToolInvocation] = field(default_factory=list)
    active_agents: list[AgentTask] = field(default_factory=list)
    completed_agents: list[AgentTask] = field(default_factory=list)
    completed_tool_counts: dict[str, int] = field(default_factory=dict)
    todo: TodoSummary | None = None
    todo_mode: str | None = None
    pending_tasks: list[PendingTaskLink] = field(default_factory=list)
    task_agent_links: dict[str, str] = field(default_factory=dict)
    task_items: dict[str, TaskItem] = field(default_factory=dict)
    task_counter: int = 0
    budget: BudgetMetrics | None = None
    env: CacheEntry[EnvSnapshot] | None = None
    git: CacheEntry[GitSnapshot] | None = None
    # output-token baseline for the speed readout
    last_output_tokens: int | None = None
    last_output_at_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": CACHE_SCHEMA_VERSION,
            "transcript_offset": self.transcript_offset,
            "transcript_path": self.transcript_path,
            "active_tools": [tool.to_dict() for tool in self.active_tools],
            "active_agents": [agent.to_dict() for agent in self.active_agents],
            "completed_agents": [agent.to_dict() for agent in self.completed_agents],
            "completed_tool_counts": dict(self.completed_tool_counts),
            "todo": self.todo.to_dict() if self.todo else None,
            "todo_mode": self.todo_mode,
            "pending_tasks": [pending.to_dict() for pending in self.pending_tasks],
            "task_agent_links": dict(self.task_agent_links),
            "task_items": {key: item.to_dict() for key, item in self.task_items.items()},
            "task_counter": self.task_counter,
            "budget": self.budget.to_dict() if self.budget else None,
            "env": self.env.to_dict() if self.env else None,
            "git": self.git.to_dict() if self.git else None,
            "last_output_tokens": self.last_output_tokens,
            "last_output_at_ms": self.last_output_at_ms,
        }

    @classmethod
    def from_dict(cls, data: Any) -> SessionCache:
        """Rebuild a cache from its JSON form.

        Raises ``ValueError``/``TypeError``/``KeyError``/``OverflowError`` on
        any schema mismatch; callers treat that as a cache miss.
        """
        if not isinstance(data, dict):
            raise TypeError("session cache must be a JSON object")
        if data.get("version") != CACHE_SCHEMA_VERSION:
            raise ValueError(f"unsupported session cache version: {data.get('version')!r}")

        offset = data.get("transcript_offset", 0)
        if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
            raise ValueError(f"invalid transcript offset: {offset!r}")
        transcript_path = data.get("transcript_path")
        if transcript_path is not None and not isinstance(transcript_path, str):
            raise TypeError("transcript_path must be a string")

        counts = data.get("completed_tool_counts") or {}
        links = data.get("task_agent_links") or {}
        items = data.get("task_items") or {}
        if not isinstance(counts, dict) or not isinstance(links, dict) or not isinstance(items, dict):
            raise TypeError("cache maps must be JSON objects")

        todo_mode = data.get("todo_mode")
        return cls(
            transcript_offset=offset,
            transcript_path=transcript_path,
            active_tools=[ToolInvocation.from_dict(t) for t in data.get("active_tools") or []],
            active_agents=[AgentTask.from_dict(a) for a in data.get("active_agents") or []],
            completed_agents=[AgentTask.from_dict(a) for a in data.get("completed_agents") or []],
            completed_tool_counts={str(name): int(count) for name, count in counts.items()},
            todo=TodoSummary.from_dict(data["todo"]) if data.get("todo") else None,
            todo_mode=todo_mode if todo_mode in ("legacy", "tasks") else None,
            pending_tasks=[PendingTaskLink.from_dict(p) for p in data.get("pending_tasks") or []],
            task_agent_links={str(k): str(v) for k, v in links.items()},
            task_items={str(k): TaskItem.from_dict(v) for k, v in items.items()},
            task_counter=int(data.get("task_counter") or 0),
            budget=BudgetMetrics.from_dict(data["budget"]) if data.get("budget") else None,
            env=CacheEntry.from_dict(data["env"], EnvSnapshot) if data.get("env") else None,
            git=CacheEntry.from_dict(data["git"], GitSnapshot) if data.get("git") else None,
            last_output_tokens=_optional_int(data.get("last_output_tokens")),
            last_output_at_ms=_optional_int(data.get("last_output_at_ms")),
        )

    def dumps(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))

    @classmethod
    def loads(cls, text: str) -> SessionCache:
        return cls.from_dict(json.loads(text))


def session_hash(session_key: str) -> str:
    return hashlib.sha1(session_key.encode("utf-8")).hexdigest()[:16]


def cache_path(session_key: str, directory: Path | None = None) -> Path:
    """Fixed cache file location for a session key."""
    base = directory if directory is not None else Path(tempfile.gettempdir())
    return base / f"{CACHE_FILE_PREFIX}-{session_hash(session_key)}.json"


def replace_file(path: Path, text: str) -> None:
    """Write ``text`` beside ``path`` and rename it into place.

    A concurrent reader sees either the previous document or this one. The
    temp file is removed if anything fails before the rename.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


# json accepts Infinity/NaN and unbounded nesting; int(inf) overflows.
_LOAD_ERRORS = (
    OSError,
    UnicodeDecodeError,
    ValueError,
    TypeError,
    KeyError,
    OverflowError,
    RecursionError,
)


class CacheStore(ABC):
    """Key-value persistence boundary for session caches."""

    @abstractmethod
    def load(self, session_key: str) -> SessionCache | None:
        """Return the stored cache, or ``None`` on any miss or error."""

    @abstractmethod
    def save(self, session_key: str, cache: SessionCache) -> None:
        """Persist ``cache``; failures are logged, never raised."""


class FileCacheStore(CacheStore):
    """One JSON file per session key under ``directory`` (default: temp dir)."""

    def __init__(self, directory: Path | None = None) -> None:
        self._directory = Path(directory) if directory is not None else None

    def path_for(self, session_key: str) -> Path:
        return cache_path(session_key, self._directory)

    def load(self, session_key: str) -> SessionCache | None:
        path = self.path_for(session_key)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("No session cache at %s", path)
            return None
        except _LOAD_ERRORS:
            logger.debug("Unreadable session cache at %s", path, exc_info=True)
            return None
        try:
            return SessionCache.loads(text)
        except _LOAD_ERRORS:
            logger.debug("Discarding corrupt session cache at %s", path, exc_info=True)
            return None

    def save(self, session_key: str, cache: SessionCache) -> None:
        path = self.path_for(session_key)
        try:
            replace_file(path, cache.dumps())
        except (OSError, TypeError, ValueError):
            logger.debug("Failed to save session cache to %s", path, exc_info=True)


class MemoryCacheStore(CacheStore):
    """In-process store holding serialized documents, for tests and embedding."""

    def __init__(self) -> None:
        self.documents: dict[str, str] = {}

    def load(self, session_key: str) -> SessionCache | None:
        text = self.documents.get(session_key)
        if text is None:
            return None
        try:
            return SessionCache.loads(text)
        except _LOAD_ERRORS:
            logger.debug("Discarding corrupt in-memory cache for %s", session_key, exc_info=True)
            return None

    def save(self, session_key: str, cache: SessionCache) -> None:
        self.documents[session_key] = cache.dumps()

