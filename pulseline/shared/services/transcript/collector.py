"""Transcript collector — folds new transcript events into session state.

``FileTranscriptCollector.collect`` is the single per-invocation entry point:
it polls the transcript named in the payload, applies every new event to the
session and returns the capped display snapshot. Missing files, unreadable
bytes and malformed lines all degrade to "nothing new"; nothing here raises.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pulseline.shared.models.activity import AgentTask, CompletedToolCount, TodoSummary, ToolInvocation
from pulseline.shared.models.payload import StdinPayload
from pulseline.shared.models.session import SessionState
from pulseline.shared.services.transcript.classifier import (
    Action,
    AgentProgressed,
    AgentRemoved,
    AgentUpserted,
    Ignored,
    TaskItemCreated,
    TaskItemUpdated,
    TaskQueued,
    TodoReplaced,
    ToolFinished,
    ToolStarted,
    classify_event,
)
from pulseline.shared.services.transcript.reader import TranscriptReader, should_throttle

if TYPE_CHECKING:
    from pulseline.engine.config import RenderConfig

logger = logging.getLogger(__name__)


@dataclass
class TranscriptSnapshot:
    """Display-ready projection of the session's activity."""

    tools: list[ToolInvocation] = field(default_factory=list)
    completed_counts: list[CompletedToolCount] = field(default_factory=list)
    agents: list[AgentTask] = field(default_factory=list)
    todo: TodoSummary | None = None


def snapshot_from_state(state: SessionState, config: RenderConfig) -> TranscriptSnapshot:
    return TranscriptSnapshot(
        tools=state.capped_tools(config.max_tool_lines),
        completed_counts=state.top_completed_tools(config.max_completed_tools),
        agents=state.agents_for_display(config.max_agent_lines),
        todo=state.todo,
    )


# ── Action application ──


def complete_tool_result(state: SessionState, tool_use_id: str) -> None:
    """Finish a tool and whichever agent the same id stands for."""
    state.remove_tool(tool_use_id)
    linked_agent = state.resolve_task_agent(tool_use_id)
    if linked_agent is not None:
        state.remove_agent(linked_agent)
        return
    pending = state.drain_pending_task(tool_use_id)
    if pending is not None:
        # Finished before any progress event: record it as a completed agent.
        state.upsert_agent(
            tool_use_id,
            pending.description,
            pending.agent_type,
            pending.event_ts,
            pending.model,
        )
    state.remove_agent(tool_use_id)


def _apply_agent_progress(state: SessionState, action: AgentProgressed) -> None:
    if state.is_completed_agent(action.agent_id) and not state.is_active_agent(action.agent_id):
        # A straggling update must not claim another agent's pending Task.
        logger.debug("Ignoring progress for finished agent %s", action.agent_id)
        return
    if not state.is_active_agent(action.agent_id):
        pending = state.link_agent_to_pending_task(action.agent_id)
        if pending is not None:
            state.upsert_agent(
                action.agent_id,
                pending.description,
                pending.agent_type,
                pending.event_ts,
                pending.model,
            )
            return
    if state.is_task_linked_agent(action.agent_id):
        # The Task call's description outranks the progress prompt.
        return
    state.upsert_agent(
        action.agent_id,
        action.description,
        action.agent_type,
        action.event_ts,
        action.model,
    )


def apply_action(state: SessionState, action: Action) -> None:
    if isinstance(action, ToolStarted):
        state.upsert_tool(action.tool_id, action.name, action.target)
    elif isinstance(action, ToolFinished):
        complete_tool_result(state, action.tool_use_id)
    elif isinstance(action, TaskQueued):
        state.push_pending_task(
            action.tool_use_id,
            action.description,
            action.agent_type,
            action.model,
            action.event_ts,
        )
    elif isinstance(action, AgentProgressed):
        _apply_agent_progress(state, action)
    elif isinstance(action, AgentUpserted):
        state.upsert_agent(
            action.agent_id,
            action.description,
            action.agent_type,
            action.event_ts,
            action.model,
        )
    elif isinstance(action, AgentRemoved):
        state.remove_agent(action.agent_id)
    elif isinstance(action, TaskItemCreated):
        state.create_task_item(action.subject, action.active_form)
    elif isinstance(action, TaskItemUpdated):
        state.update_task_item(action.task_id, action.status)
    elif isinstance(action, TodoReplaced):
        state.set_todo(action.todo)
    elif not isinstance(action, Ignored):
        logger.debug("Unhandled transcript action %r", action)


def apply_transcript_event(state: SessionState, raw_event: Any) -> None:
    for action in classify_event(raw_event):
        apply_action(state, action)


# ── Collectors ──


class TranscriptCollector(ABC):
    @abstractmethod
    def collect(
        self,
        payload: StdinPayload,
        state: SessionState,
        config: RenderConfig,
    ) -> TranscriptSnapshot:
        """Bring ``state`` up to date and return its display snapshot."""


class FileTranscriptCollector(TranscriptCollector):
    """Tails the transcript file named by the payload."""

    def collect(
        self,
        payload: StdinPayload,
        state: SessionState,
        config: RenderConfig,
    ) -> TranscriptSnapshot:
        transcript_path = payload.transcript_path
        if not transcript_path:
            return snapshot_from_state(state, config)

        state.reset_transcript_if_path_changed(transcript_path)

        path = Path(transcript_path)
        if not path.exists():
            logger.debug("Transcript %s does not exist yet", path)
            return snapshot_from_state(state, config)

        if should_throttle(state.last_transcript_poll, config.transcript_poll_throttle_ms):
            return snapshot_from_state(state, config)

        reader = TranscriptReader(window_events=config.transcript_window_events)
        result = reader.read(path, state.last_transcript_offset)
        if result is None:
            return snapshot_from_state(state, config)

        if result.truncated:
            state.last_transcript_offset = 0
            state.reset_activity()

        for event in result.events:
            apply_transcript_event(state, event)

        state.last_transcript_offset = result.file_length
        state.last_transcript_poll = time.monotonic()
        return snapshot_from_state(state, config)

