"""Per-invocation pipeline: payload in, rendered status lines out.

    cache load -> transcript collect -> env/git/budget -> render -> cache save

The runner keeps one ``SessionState`` per session key for its own lifetime
and hydrates it from the cache store the first time a key is seen, so a
fresh process resumes where the previous one stopped.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from pulseline.render.layout import render_frame
from pulseline.shared.models.frame import RenderFrame
from pulseline.shared.models.payload import BudgetMetrics, StdinPayload
from pulseline.shared.models.session import SessionState
from pulseline.shared.services.environment import EnvCollector, EnvSnapshot, FileSystemEnvCollector
from pulseline.shared.services.git_status import GitCollector, GitSnapshot, LocalGitCollector
from pulseline.shared.services.session_cache import CacheStore, FileCacheStore, now_epoch_ms
from pulseline.shared.services.transcript import FileTranscriptCollector, TranscriptCollector

from .config import RenderConfig
from .errors import PayloadError

logger = logging.getLogger(__name__)

UNKNOWN_PROJECT = "unknown"


def session_key(payload: StdinPayload) -> str:
    """Logical session identity: session id, transcript path, project path."""
    return "|".join(
        [
            payload.session_id or "",
            payload.transcript_path or "",
            payload.resolve_project_path() or "",
        ]
    )


def parse_payload(text: str) -> StdinPayload:
    """Decode stdin; blank input counts as an empty object."""
    if not text.strip():
        text = "{}"
    try:
        data: Any = json.loads(text)
    except json.JSONDecodeError as exc:
        raise PayloadError(str(exc)) from exc
    if not isinstance(data, dict):
        raise PayloadError(f"expected a JSON object, got {type(data).__name__}")
    return StdinPayload.from_dict(data)


class PulseLineRunner:
    """Runs the status line pipeline against a cache store."""

    def __init__(
        self,
        cache_store: CacheStore | None = None,
        env_collector: EnvCollector | None = None,
        git_collector: GitCollector | None = None,
        transcript_collector: TranscriptCollector | None = None,
    ) -> None:
        self.sessions: dict[str, SessionState] = {}
        self.cache_store = cache_store if cache_store is not None else FileCacheStore()
        self.env_collector = env_collector or FileSystemEnvCollector()
        self.git_collector = git_collector or LocalGitCollector()
        self.transcript_collector = transcript_collector or FileTranscriptCollector()

    def session_for(self, key: str, config: RenderConfig) -> SessionState:
        state = self.sessions.get(key)
        if state is not None:
            return state
        cached = self.cache_store.load(key) if config.cache_enabled else None
        if cached is not None:
            logger.debug("Resuming session %s from cache at offset %d", key, cached.transcript_offset)
            state = SessionState.from_cache(cached)
        else:
            state = SessionState()
        self.sessions[key] = state
        return state

    def _env_snapshot(self, state: SessionState, project_path: str) -> EnvSnapshot:
        now = now_epoch_ms()
        snapshot = state.cached_env_for(project_path, now)
        if snapshot is not None:
            return snapshot
        if project_path == UNKNOWN_PROJECT:
            snapshot = EnvSnapshot()
        else:
            snapshot = self.env_collector.collect_env(project_path)
        state.set_cached_env(project_path, snapshot, now)
        return snapshot

    def _git_snapshot(self, state: SessionState, project_path: str) -> GitSnapshot:
        now = now_epoch_ms()
        snapshot = state.cached_git_for(project_path, now)
        if snapshot is not None:
            return snapshot
        if project_path == UNKNOWN_PROJECT:
            snapshot = GitSnapshot()
        else:
            snapshot = self.git_collector.collect_git(project_path)
        state.set_cached_git(project_path, snapshot, now)
        return snapshot

    @staticmethod
    def _budget(state: SessionState, payload: StdinPayload) -> BudgetMetrics:
        """This payload's metrics, or the last ones seen when it has none."""
        if payload.budget.has_data():
            state.cached_budget = payload.budget
            return payload.budget
        return state.cached_budget or BudgetMetrics()

    def build_frame(self, payload: StdinPayload, config: RenderConfig) -> RenderFrame:
        key = session_key(payload)
        state = self.session_for(key, config)

        snapshot = self.transcript_collector.collect(payload, state, config)
        project_path = payload.resolve_project_path() or UNKNOWN_PROJECT

        frame = RenderFrame.from_payload(payload)
        frame.git = self._git_snapshot(state, project_path)
        frame.env = self._env_snapshot(state, project_path)
        frame.budget = self._budget(state, payload)
        if config.show_speed:
            frame.speed = state.output_speed(payload.budget.output_tokens, now_epoch_ms())
        frame.tools = snapshot.tools
        frame.completed_tools = snapshot.completed_counts
        frame.agents = snapshot.agents
        frame.todo = snapshot.todo

        if config.cache_enabled:
            self.cache_store.save(key, state.to_cache())
        return frame

    def run(self, payload: StdinPayload, config: RenderConfig) -> list[str]:
        return render_frame(self.build_frame(payload, config), config)

    def run_from_str(self, text: str, config: RenderConfig) -> list[str]:
        """Raises ``PayloadError`` when ``text`` is not a JSON object."""
        return self.run(parse_payload(text), config)


def run_from_str(
    text: str,
    config: RenderConfig,
    cache_store: CacheStore | None = None,
) -> list[str]:
    """One-shot convenience wrapper around ``PulseLineRunner``."""
    return PulseLineRunner(cache_store=cache_store).run_from_str(text, config)
