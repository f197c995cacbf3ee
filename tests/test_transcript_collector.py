from __future__ import annotations

import json
import time
from pathlib import Path

import pytest

from pulseline.engine.config import RenderConfig
from pulseline.shared.models.payload import StdinPayload
from pulseline.shared.models.session import SessionState
from pulseline.shared.services.transcript import FileTranscriptCollector, TranscriptReader
from pulseline.shared.services.transcript import reader as reader_module
from pulseline.shared.services.transcript.reader import apply_window, parse_events, should_throttle


FIXTURES_DIR = Path(__file__).parent / "fixtures" / "activity"

# Every invocation reads; the throttle has its own tests.
UNTHROTTLED = RenderConfig(transcript_poll_throttle_ms=0)


def _copy_fixture(tmp_path: Path, name: str) -> Path:
    dst = tmp_path / name
    dst.write_text((FIXTURES_DIR / name).read_text(encoding="utf-8"), encoding="utf-8")
    return dst


def _append(path: Path, *events: dict) -> None:
    with path.open("a", encoding="utf-8") as handle:
        for event in events:
            handle.write(json.dumps(event) + "\n")


def _payload(path: Path) -> StdinPayload:
    return StdinPayload(transcript_path=str(path))


# ── Reader ──


def test_should_throttle() -> None:
    assert not should_throttle(None, 250, now=10.0)
    assert not should_throttle(10.0, 0, now=10.0)
    assert should_throttle(10.0, 250, now=10.1)
    assert not should_throttle(10.0, 250, now=10.3)


def test_apply_window_keeps_newest() -> None:
    assert apply_window([1, 2, 3, 4], 2) == [3, 4]
    assert apply_window([1, 2, 3, 4], 0) == [1, 2, 3, 4]


def test_parse_events_skips_malformed_lines() -> None:
    assert parse_events(['{"a": 1}', "{not json", "[2]"]) == [{"a": 1}, [2]]


def test_parse_events_skips_deeply_nested_line() -> None:
    nested = "[" * 100_000 + "]" * 100_000
    assert parse_events([nested, '{"a": 1}']) == [{"a": 1}]


def test_reader_reads_from_offset_and_flags_truncation(tmp_path: Path) -> None:
    path = tmp_path / "t.jsonl"
    path.write_bytes(b'{"n": 1}\n\n   \n{"n": 2}\n')
    reader = TranscriptReader()

    first = reader.read(path, 0)
    assert first.events == [{"n": 1}, {"n": 2}]
    assert first.file_length == path.stat().st_size
    assert not first.truncated

    assert reader.read(path, first.file_length).events == []

    again = reader.read(path, first.file_length + 100)
    assert again.truncated
    assert again.events == [{"n": 1}, {"n": 2}]


def test_reader_tolerates_invalid_utf8(tmp_path: Path) -> None:
    path = tmp_path / "t.jsonl"
    path.write_bytes(b'{"n": 1}\n\xff\xfe garbage\n{"n": 2}\n')
    assert TranscriptReader().read(path, 0).events == [{"n": 1}, {"n": 2}]


def test_reader_missing_file(tmp_path: Path) -> None:
    assert TranscriptReader().read(tmp_path / "missing.jsonl", 0) is None


# ── Collector ──


def test_bash_round_trip_tallies_completion(tmp_path: Path) -> None:
    path = _copy_fixture(tmp_path, "bash_roundtrip.jsonl")
    state = SessionState()
    snapshot = FileTranscriptCollector().collect(_payload(path), state, UNTHROTTLED)

    assert snapshot.tools == []
    assert [(entry.name, entry.count) for entry in snapshot.completed_counts] == [("Bash", 1)]
    assert state.last_transcript_offset == path.stat().st_size


def test_running_tool_is_shown_until_result(tmp_path: Path) -> None:
    path = tmp_path / "t.jsonl"
    _append(
        path,
        {"message": {"content": [{"type": "tool_use", "id": "r1", "name": "Read", "input": {"file_path": "/a.py"}}]}},
    )
    state = SessionState()
    collector = FileTranscriptCollector()

    snapshot = collector.collect(_payload(path), state, UNTHROTTLED)
    assert [(tool.name, tool.target) for tool in snapshot.tools] == [("Read", "/a.py")]

    _append(path, {"message": {"content": [{"type": "tool_result", "tool_use_id": "r1"}]}})
    snapshot = collector.collect(_payload(path), state, UNTHROTTLED)
    assert snapshot.tools == []
    assert state.completed_tool_counts == {"Read": 1}


def test_collect_is_idempotent_without_new_bytes(tmp_path: Path) -> None:
    path = _copy_fixture(tmp_path, "bash_roundtrip.jsonl")
    state = SessionState()
    collector = FileTranscriptCollector()
    collector.collect(_payload(path), state, UNTHROTTLED)
    collector.collect(_payload(path), state, UNTHROTTLED)
    assert state.completed_tool_counts == {"Bash": 1}


def test_task_agents_link_in_order(tmp_path: Path) -> None:
    path = _copy_fixture(tmp_path, "task_agents.jsonl")
    state = SessionState()
    snapshot = FileTranscriptCollector().collect(_payload(path), state, UNTHROTTLED)

    # agent-a finished with its Task, which released the link.
    assert state.task_agent_links == {"toolu_task_y": "agent-b"}
    assert [agent.id for agent in snapshot.agents] == ["agent-b", "agent-a"]

    live, done = snapshot.agents
    assert live.description == "Write migration"
    assert live.agent_type == "coder"
    assert live.is_active
    assert done.description == "Audit auth module"
    assert done.model == "haiku"
    assert not done.is_active
    # Task tools never appear as running tools or in the tally.
    assert snapshot.tools == []
    assert state.completed_tool_counts == {}


def test_task_result_before_progress_records_completed_agent(tmp_path: Path) -> None:
    path = tmp_path / "t.jsonl"
    _append(
        path,
        {"message": {"content": [{"type": "tool_use", "id": "tk", "name": "Task", "input": {"description": "Quick"}}]}},
        {"message": {"content": [{"type": "tool_result", "tool_use_id": "tk"}]}},
    )
    state = SessionState()
    FileTranscriptCollector().collect(_payload(path), state, UNTHROTTLED)
    assert state.active_agents == []
    assert [agent.description for agent in state.completed_agents] == ["Quick"]
    assert len(state.pending_tasks) == 0


def test_task_items_drive_todo(tmp_path: Path) -> None:
    path = _copy_fixture(tmp_path, "task_items.jsonl")
    snapshot = FileTranscriptCollector().collect(_payload(path), SessionState(), UNTHROTTLED)
    assert snapshot.todo.display_text == "1/3 done, 2 pending"
    assert snapshot.todo.in_progress_items == ["Write tests"]
    assert snapshot.tools == []


def test_truncated_transcript_resets_activity(tmp_path: Path) -> None:
    path = _copy_fixture(tmp_path, "bash_roundtrip.jsonl")
    state = SessionState()
    collector = FileTranscriptCollector()
    collector.collect(_payload(path), state, UNTHROTTLED)
    assert state.completed_tool_counts == {"Bash": 1}

    path.write_text("", encoding="utf-8")
    _append(path, {"message": {"content": [{"type": "tool_use", "id": "g", "name": "Grep"}]}})
    snapshot = collector.collect(_payload(path), state, UNTHROTTLED)

    assert state.completed_tool_counts == {}
    assert [tool.id for tool in snapshot.tools] == ["g"]
    assert state.last_transcript_offset == path.stat().st_size


def test_path_change_starts_over(tmp_path: Path) -> None:
    first = _copy_fixture(tmp_path, "bash_roundtrip.jsonl")
    second = tmp_path / "other.jsonl"
    _append(second, {"type": "user", "message": {"content": "hi"}})
    state = SessionState()
    collector = FileTranscriptCollector()

    collector.collect(_payload(first), state, UNTHROTTLED)
    collector.collect(_payload(second), state, UNTHROTTLED)
    assert state.last_transcript_path == str(second)
    assert state.completed_tool_counts == {}
    assert state.last_transcript_offset == second.stat().st_size


def test_window_limits_applied_events(tmp_path: Path) -> None:
    path = tmp_path / "t.jsonl"
    _append(
        path,
        *[
            {"message": {"content": [{"type": "tool_use", "id": f"t{index}", "name": "Read"}]}}
            for index in range(5)
        ],
    )
    state = SessionState()
    FileTranscriptCollector().collect(
        _payload(path), state, RenderConfig(transcript_poll_throttle_ms=0, transcript_window_events=2)
    )
    assert [tool.id for tool in state.active_tools] == ["t3", "t4"]
    assert state.last_transcript_offset == path.stat().st_size


def test_throttle_skips_rapid_second_read(tmp_path: Path) -> None:
    path = _copy_fixture(tmp_path, "bash_roundtrip.jsonl")
    state = SessionState()
    collector = FileTranscriptCollector()
    throttled = RenderConfig(transcript_poll_throttle_ms=60_000)

    collector.collect(_payload(path), state, throttled)
    offset = state.last_transcript_offset
    _append(path, {"message": {"content": [{"type": "tool_use", "id": "late", "name": "Read"}]}})
    collector.collect(_payload(path), state, throttled)
    assert state.last_transcript_offset == offset

    state.last_transcript_poll = time.monotonic() - 120
    collector.collect(_payload(path), state, throttled)
    assert [tool.id for tool in state.active_tools] == ["late"]


def test_missing_transcript_and_no_path(tmp_path: Path) -> None:
    state = SessionState()
    collector = FileTranscriptCollector()
    snapshot = collector.collect(StdinPayload(), state, UNTHROTTLED)
    assert snapshot.tools == [] and snapshot.todo is None

    collector.collect(_payload(tmp_path / "not-yet.jsonl"), state, UNTHROTTLED)
    assert state.last_transcript_offset == 0


def test_bytes_appended_during_read_wait_for_next_poll(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    path = tmp_path / "t.jsonl"
    _append(path, {"type": "user", "message": {"content": "start"}})
    real_read_new_lines = reader_module.read_new_lines
    appended = []

    def append_then_read(target: Path, start: int, end: int) -> list[str]:
        if not appended:
            appended.append(True)
            _append(
                target,
                {"message": {"content": [{"type": "tool_use", "id": "b1", "name": "Bash", "input": {"command": "ls"}}]}},
                {"message": {"content": [{"type": "tool_result", "tool_use_id": "b1"}]}},
            )
        return real_read_new_lines(target, start, end)

    monkeypatch.setattr(reader_module, "read_new_lines", append_then_read)
    state = SessionState()
    collector = FileTranscriptCollector()

    collector.collect(_payload(path), state, UNTHROTTLED)
    assert state.completed_tool_counts == {}
    assert state.last_transcript_offset < path.stat().st_size

    collector.collect(_payload(path), state, UNTHROTTLED)
    collector.collect(_payload(path), state, UNTHROTTLED)
    assert state.completed_tool_counts == {"Bash": 1}
    assert state.last_transcript_offset == path.stat().st_size


def test_standalone_agent_progress_uses_its_own_prompt(tmp_path: Path) -> None:
    path = tmp_path / "t.jsonl"
    _append(
        path,
        {
            "type": "progress",
            "data": {
                "type": "agent_progress",
                "agent_id": "solo",
                "state": "running",
                "subagent_type": "explorer",
                "prompt": "Map the repo",
            },
        },
    )
    state = SessionState()
    snapshot = FileTranscriptCollector().collect(_payload(path), state, UNTHROTTLED)

    assert [(agent.id, agent.description, agent.agent_type) for agent in snapshot.agents] == [
        ("solo", "Map the repo", "explorer")
    ]
    assert state.task_agent_links == {}

    _append(path, {"type": "progress", "data": {"type": "agent_progress", "agent_id": "solo", "state": "completed"}})
    snapshot = FileTranscriptCollector().collect(_payload(path), state, UNTHROTTLED)
    assert state.active_agents == []
    assert not snapshot.agents[0].is_active


def test_flat_tool_events_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "t.jsonl"
    _append(path, {"type": "tool_use", "tool_use_id": "t1", "name": "Bash"})
    state = SessionState()
    collector = FileTranscriptCollector()

    snapshot = collector.collect(_payload(path), state, UNTHROTTLED)
    assert [(tool.id, tool.name) for tool in snapshot.tools] == [("t1", "Bash")]

    _append(path, {"type": "tool_result", "tool_use_id": "t1"})
    snapshot = collector.collect(_payload(path), state, UNTHROTTLED)
    assert snapshot.tools == []
    assert [(entry.name, entry.count) for entry in snapshot.completed_counts] == [("Bash", 1)]


def test_late_progress_for_finished_agent_leaves_pending_task(tmp_path: Path) -> None:
    path = tmp_path / "t.jsonl"
    _append(
        path,
        {"type": "progress", "data": {"type": "agent_progress", "agentId": "old", "prompt": "first"}},
        {"type": "progress", "data": {"type": "agent_progress", "agentId": "old", "status": "completed"}},
        {"message": {"content": [{"type": "tool_use", "id": "tk", "name": "Task", "input": {"description": "Fresh"}}]}},
        {"type": "progress", "data": {"type": "agent_progress", "agentId": "old", "prompt": "straggler"}},
    )
    state = SessionState()
    FileTranscriptCollector().collect(_payload(path), state, UNTHROTTLED)

    assert state.active_agents == []
    assert state.task_agent_links == {}
    assert [pending.tool_use_id for pending in state.pending_tasks] == ["tk"]
