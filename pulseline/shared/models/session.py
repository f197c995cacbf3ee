"""Session state — the mutable aggregate behind one status line session.

A ``SessionState`` owns everything derived from the transcript (running
tools, completion tallies, sub-agents, the pending Task queue and its links,
todo progress) plus the short-lived env/git snapshots and the last budget
metrics. The collector mutates it through the methods below; the runner
moves it to and from disk with ``to_cache`` / ``load_from_cache``.
"""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field

from pulseline.shared.models.activity import (
    AgentTask,
    CompletedToolCount,
    PendingTaskLink,
    TaskItem,
    TodoSummary,
    ToolInvocation,
)
from pulseline.shared.models.payload import BudgetMetrics
from pulseline.shared.services.environment import EnvSnapshot
from pulseline.shared.services.git_status import GitSnapshot
from pulseline.shared.services.session_cache import CacheEntry, SessionCache, now_epoch_ms

logger = logging.getLogger(__name__)

MAX_COMPLETED_AGENTS = 10

TODO_MODE_LEGACY = "legacy"
TODO_MODE_TASKS = "tasks"


@dataclass
class SessionState:
    last_transcript_offset: int = 0
    last_transcript_path: str | None = None
    # time.monotonic() of the last read; never persisted
    last_transcript_poll: float | None = None
    active_tools: list[ToolInvocation] = field(default_factory=list)
    active_agents: list[AgentTask] = field(default_factory=list)
    completed_agents: list[AgentTask] = field(default_factory=list)
    completed_tool_counts: dict[str, int] = field(default_factory=dict)
    todo: TodoSummary | None = None
    todo_mode: str | None = None
    pending_tasks: deque[PendingTaskLink] = field(default_factory=deque)
    task_agent_links: dict[str, str] = field(default_factory=dict)
    task_items: dict[str, TaskItem] = field(default_factory=dict)
    task_counter: int = 0
    cached_env: CacheEntry[EnvSnapshot] | None = None
    cached_git: CacheEntry[GitSnapshot] | None = None
    cached_budget: BudgetMetrics | None = None
    last_output_tokens: int | None = None
    last_output_at_ms: int | None = None

    # ── Transcript bookkeeping ──

    def reset_activity(self) -> None:
        """Forget everything derived from transcript bytes."""
        self.active_tools.clear()
        self.active_agents.clear()
        self.completed_agents.clear()
        self.completed_tool_counts.clear()
        self.todo = None
        self.todo_mode = None
        self.pending_tasks.clear()
        self.task_agent_links.clear()
        self.task_items.clear()
        self.task_counter = 0

    def reset_transcript_if_path_changed(self, transcript_path: str) -> bool:
        if self.last_transcript_path == transcript_path:
            return False
        if self.last_transcript_path is not None:
            logger.info(
                "Transcript path changed from %s to %s; resetting activity",
                self.last_transcript_path,
                transcript_path,
            )
        self.last_transcript_path = transcript_path
        self.last_transcript_offset = 0
        self.last_transcript_poll = None
        self.cached_budget = None
        self.last_output_tokens = None
        self.last_output_at_ms = None
        self.reset_activity()
        return True

    # ── Env / git snapshots ──

    def cached_env_for(self, cwd: str, now_ms: int | None = None) -> EnvSnapshot | None:
        """The env snapshot for ``cwd`` if one was captured within the TTL."""
        now = now_ms if now_ms is not None else now_epoch_ms()
        entry = self.cached_env
        if entry is not None and entry.path == cwd and entry.is_fresh(now):
            return entry.snapshot
        return None

    def set_cached_env(self, cwd: str, snapshot: EnvSnapshot, now_ms: int | None = None) -> None:
        stamp = now_ms if now_ms is not None else now_epoch_ms()
        self.cached_env = CacheEntry(path=cwd, snapshot=snapshot, cached_at_ms=stamp)

    def cached_git_for(self, cwd: str, now_ms: int | None = None) -> GitSnapshot | None:
        now = now_ms if now_ms is not None else now_epoch_ms()
        entry = self.cached_git
        if entry is not None and entry.path == cwd and entry.is_fresh(now):
            return entry.snapshot
        return None

    def set_cached_git(self, cwd: str, snapshot: GitSnapshot, now_ms: int | None = None) -> None:
        stamp = now_ms if now_ms is not None else now_epoch_ms()
        self.cached_git = CacheEntry(path=cwd, snapshot=snapshot, cached_at_ms=stamp)

    # ── Tools ──

    def upsert_tool(self, tool_id: str, name: str, target: str | None = None) -> None:
        self.active_tools = [tool for tool in self.active_tools if tool.id != tool_id]
        self.active_tools.append(ToolInvocation(id=tool_id, name=name, target=target))

    def remove_tool(self, tool_id: str) -> None:
        for tool in self.active_tools:
            if tool.id == tool_id:
                self.record_tool_completion(tool.name)
                break
        else:
            return
        self.active_tools = [tool for tool in self.active_tools if tool.id != tool_id]

    def record_tool_completion(self, name: str) -> None:
        self.completed_tool_counts[name] = self.completed_tool_counts.get(name, 0) + 1

    def top_completed_tools(self, limit: int) -> list[CompletedToolCount]:
        ranked = sorted(self.completed_tool_counts.items(), key=lambda item: (-item[1], item[0]))
        return [CompletedToolCount(name=name, count=count) for name, count in ranked[: max(0, limit)]]

    def capped_tools(self, limit: int) -> list[ToolInvocation]:
        if limit <= 0:
            return []
        return list(self.active_tools[-limit:])

    # ── Agents ──

    def upsert_agent(
        self,
        agent_id: str,
        description: str,
        agent_type: str | None = None,
        started_at: int | None = None,
        model: str | None = None,
    ) -> None:
        """Create or refresh an active agent.

        A refreshed agent keeps its original start time, and keeps its model
        unless the new call names one.
        """
        existing = next((agent for agent in self.active_agents if agent.id == agent_id), None)
        if existing is not None:
            self.active_agents.remove(existing)
            started_at = existing.started_at
            model = model or existing.model
        elif started_at is None:
            started_at = now_epoch_ms()
        self.active_agents.append(
            AgentTask(
                id=agent_id,
                description=description,
                agent_type=agent_type,
                model=model,
                started_at=started_at,
            )
        )

    def remove_agent(self, agent_id: str) -> None:
        agent = next((agent for agent in self.active_agents if agent.id == agent_id), None)
        if agent is None:
            return
        self.active_agents.remove(agent)
        agent.completed_at = now_epoch_ms()
        self.completed_agents.append(agent)
        self.task_agent_links = {
            task_id: linked for task_id, linked in self.task_agent_links.items() if linked != agent_id
        }
        if len(self.completed_agents) > MAX_COMPLETED_AGENTS:
            del self.completed_agents[: len(self.completed_agents) - MAX_COMPLETED_AGENTS]

    def is_active_agent(self, agent_id: str) -> bool:
        return any(agent.id == agent_id for agent in self.active_agents)

    def is_completed_agent(self, agent_id: str) -> bool:
        return any(agent.id == agent_id for agent in self.completed_agents)

    def agents_for_display(self, limit: int) -> list[AgentTask]:
        """Most recent active agents, then recently completed ones."""
        if limit <= 0:
            return []
        result = list(self.active_agents[-limit:])
        remaining = limit - len(result)
        if remaining > 0:
            completed = sorted(
                self.completed_agents,
                key=lambda agent: agent.completed_at or 0,
                reverse=True,
            )
            result.extend(completed[:remaining])
        return result

    # ── Task → agent linking ──

    def push_pending_task(
        self,
        tool_use_id: str,
        description: str,
        agent_type: str | None = None,
        model: str | None = None,
        event_ts: int | None = None,
    ) -> None:
        self.pending_tasks.append(
            PendingTaskLink(
                tool_use_id=tool_use_id,
                description=description,
                agent_type=agent_type,
                model=model,
                event_ts=event_ts,
            )
        )

    def link_agent_to_pending_task(self, agent_id: str) -> PendingTaskLink | None:
        """Pair ``agent_id`` with the oldest unlinked Task call."""
        if not self.pending_tasks:
            return None
        pending = self.pending_tasks.popleft()
        self.task_agent_links[pending.tool_use_id] = agent_id
        return pending

    def resolve_task_agent(self, tool_use_id: str) -> str | None:
        return self.task_agent_links.get(tool_use_id)

    def drain_pending_task(self, tool_use_id: str) -> PendingTaskLink | None:
        for pending in self.pending_tasks:
            if pending.tool_use_id == tool_use_id:
                self.pending_tasks.remove(pending)
                return pending
        return None

    def is_task_linked_agent(self, agent_id: str) -> bool:
        return agent_id in self.task_agent_links.values()

    # ── Output speed ──

    def output_speed(self, output_tokens: int | None, now_ms: int) -> float | None:
        """Output tokens per second since the previous sample, then re-baseline.

        ``None`` on the first sample, when no time has passed, or when the
        count did not grow (a new request resets ``current_usage``).
        """
        if output_tokens is None:
            return None
        speed = None
        prev_tokens, prev_at = self.last_output_tokens, self.last_output_at_ms
        if prev_tokens is not None and prev_at is not None:
            delta_ms = now_ms - prev_at
            delta_tokens = output_tokens - prev_tokens
            if delta_ms > 0 and delta_tokens > 0:
                speed = delta_tokens * 1000 / delta_ms
        self.last_output_tokens = output_tokens
        self.last_output_at_ms = now_ms
        return speed

    # ── Todo ──

    def set_todo(self, todo: TodoSummary | None) -> None:
        """Replace the whole todo summary from a legacy ``todos[]`` list.

        Ignored once the session has switched to task-item tracking.
        """
        if self.todo_mode == TODO_MODE_TASKS:
            logger.debug("Ignoring legacy todo list while tracking task items")
            return
        self.todo_mode = TODO_MODE_LEGACY
        self.todo = todo

    def create_task_item(self, subject: str, active_form: str | None = None) -> str:
        self.todo_mode = TODO_MODE_TASKS
        self.task_counter += 1
        task_id = str(self.task_counter)
        self.task_items[task_id] = TaskItem(subject=subject, active_form=active_form)
        self.rebuild_todo_from_tasks()
        return task_id

    def update_task_item(self, task_id: str, status: str) -> None:
        self.todo_mode = TODO_MODE_TASKS
        if status == "deleted":
            self.task_items.pop(task_id, None)
        elif task_id in self.task_items:
            self.task_items[task_id].status = status
        self.rebuild_todo_from_tasks()

    def rebuild_todo_from_tasks(self) -> None:
        completed = sum(1 for item in self.task_items.values() if item.status == "completed")
        in_progress = [
            item.active_form or item.subject
            for item in self.task_items.values()
            if item.status == "in_progress"
        ]
        self.todo = TodoSummary.from_counts(completed, len(self.task_items), in_progress)

    # ── Persistence boundary ──

    def to_cache(self) -> SessionCache:
        return SessionCache(
            transcript_offset=self.last_transcript_offset,
            transcript_path=self.last_transcript_path,
            active_tools=list(self.active_tools),
            active_agents=list(self.active_agents),
            completed_agents=list(self.completed_agents),
            completed_tool_counts=dict(self.completed_tool_counts),
            todo=self.todo,
            todo_mode=self.todo_mode,
            pending_tasks=list(self.pending_tasks),
            task_agent_links=dict(self.task_agent_links),
            task_items=dict(self.task_items),
            task_counter=self.task_counter,
            budget=self.cached_budget,
            env=self.cached_env,
            git=self.cached_git,
            last_output_tokens=self.last_output_tokens,
            last_output_at_ms=self.last_output_at_ms,
        )

    def load_from_cache(self, cache: SessionCache, now_ms: int | None = None) -> None:
        """Restore transcript-derived state; env/git only while still fresh."""
        now = now_ms if now_ms is not None else now_epoch_ms()
        self.last_transcript_offset = cache.transcript_offset
        self.last_transcript_path = cache.transcript_path
        self.active_tools = list(cache.active_tools)
        self.active_agents = list(cache.active_agents)
        self.completed_agents = list(cache.completed_agents)
        self.completed_tool_counts = dict(cache.completed_tool_counts)
        self.todo = cache.todo
        self.todo_mode = cache.todo_mode
        self.pending_tasks = deque(cache.pending_tasks)
        self.task_agent_links = dict(cache.task_agent_links)
        self.task_items = dict(cache.task_items)
        self.task_counter = cache.task_counter
        self.cached_budget = cache.budget
        self.last_output_tokens = cache.last_output_tokens
        self.last_output_at_ms = cache.last_output_at_ms

        if cache.env is not None and cache.env.is_fresh(now):
            self.cached_env = cache.env
        if cache.git is not None and cache.git.is_fresh(now):
            self.cached_git = cache.git

    @classmethod
    def from_cache(cls, cache: SessionCache, now_ms: int | None = None) -> SessionState:
        state = cls()
        state.load_from_cache(cache, now_ms=now_ms)
        return state
