from __future__ import annotations

import json
from pathlib import Path

import pytest

from pulseline.engine import PayloadError, PulseLineRunner, RenderConfig, run_from_str, session_key
from pulseline.engine.runner import parse_payload
from pulseline.shared.services.environment import EnvCollector, EnvSnapshot
from pulseline.shared.services.git_status import GitCollector, GitSnapshot
from pulseline.shared.services.session_cache import MemoryCacheStore


class CountingEnvCollector(EnvCollector):
    def __init__(self):
        self.calls = 0

    def collect_env(self, cwd):
        self.calls += 1
        return EnvSnapshot(claude_md_count=1, rules_count=2, hooks_count=3, mcp_count=4, skills_count=5)


class CountingGitCollector(GitCollector):
    def __init__(self):
        self.calls = 0

    def collect_git(self, cwd):
        self.calls += 1
        return GitSnapshot(branch="main", dirty=True, ahead=1)


CONFIG = RenderConfig(transcript_poll_throttle_ms=0)


def _runner(store: MemoryCacheStore) -> PulseLineRunner:
    return PulseLineRunner(
        cache_store=store,
        env_collector=CountingEnvCollector(),
        git_collector=CountingGitCollector(),
    )


def _stdin(transcript: Path, project: str = "/work/proj", **extra) -> str:
    payload = {
        "session_id": "s-1",
        "model": {"id": "claude-x", "display_name": "Model X"},
        "output_style": {"name": "default"},
        "version": "2.0.1",
        "workspace": {"current_dir": project},
        "transcript_path": str(transcript),
    }
    payload.update(extra)
    return json.dumps(payload)


def _append(path: Path, event: dict) -> None:
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(event) + "\n")


def _tool_use(tool_id: str, name: str, **tool_input) -> dict:
    return {"message": {"content": [{"type": "tool_use", "id": tool_id, "name": name, "input": tool_input}]}}


def _tool_result(tool_id: str) -> dict:
    return {"message": {"content": [{"type": "tool_result", "tool_use_id": tool_id}]}}


# ── Payload ──


def test_parse_payload_blank_is_empty_object() -> None:
    payload = parse_payload("  \n")
    assert payload.session_id is None
    assert payload.model_display() == "unknown"


def test_parse_payload_rejects_bad_json() -> None:
    with pytest.raises(PayloadError) as excinfo:
        parse_payload("{nope")
    assert str(excinfo.value).startswith("invalid stdin JSON:")

    with pytest.raises(PayloadError):
        parse_payload("[1, 2]")


def test_payload_wrong_types_become_none() -> None:
    payload = parse_payload(json.dumps({"session_id": 5, "cwd": "/a", "context_window": {"used_percentage": "x"}}))
    assert payload.session_id is None
    assert payload.resolve_project_path() == "/a"
    assert not payload.budget.has_data()


def test_session_key_components() -> None:
    payload = parse_payload(json.dumps({"session_id": "s", "transcript_path": "/t", "cwd": "/p"}))
    assert session_key(payload) == "s|/t|/p"


# ── Pipeline ──


def test_core_lines_without_transcript() -> None:
    lines = _runner(MemoryCacheStore()).run_from_str(
        json.dumps({"model": {"display_name": "Model X"}}), CONFIG
    )
    assert lines[0].startswith("M:Model X | S:unknown | CC:unknown | P:unknown | G:unknown")
    assert lines[1] == "0 CLAUDE.md | 0 rules | 0 hooks | 0 MCPs | 0 skills | <1m"
    assert lines[2] == "CTX:NA | TOK NA | $0.00 ($0.00/h)"
    assert len(lines) == 3


def test_activity_persists_across_fresh_runners(tmp_path: Path) -> None:
    transcript = tmp_path / "t.jsonl"
    _append(transcript, _tool_use("b1", "Bash", command="make test"))
    store = MemoryCacheStore()

    first = _runner(store).run_from_str(_stdin(transcript), CONFIG)
    assert "T:Bash make test" in first

    _append(transcript, _tool_result("b1"))
    second = _runner(store).run_from_str(_stdin(transcript), CONFIG)
    assert "T:Bash make test" not in second
    assert "C:Bashx1" in second


def test_same_runner_reuses_session_state(tmp_path: Path) -> None:
    transcript = tmp_path / "t.jsonl"
    _append(transcript, _tool_use("r1", "Read", file_path="/a.py"))
    runner = _runner(MemoryCacheStore())
    runner.run_from_str(_stdin(transcript), CONFIG)
    runner.run_from_str(_stdin(transcript), CONFIG)

    assert len(runner.sessions) == 1
    state = next(iter(runner.sessions.values()))
    assert [tool.id for tool in state.active_tools] == ["r1"]


def test_env_and_git_are_cached_within_ttl(tmp_path: Path) -> None:
    transcript = tmp_path / "t.jsonl"
    transcript.write_text("", encoding="utf-8")
    runner = _runner(MemoryCacheStore())

    lines = runner.run_from_str(_stdin(transcript), CONFIG)
    runner.run_from_str(_stdin(transcript), CONFIG)

    assert runner.env_collector.calls == 1
    assert runner.git_collector.calls == 1
    assert lines[0].endswith("G:main* ↑1")
    assert lines[1].startswith("1 CLAUDE.md | 2 rules | 3 hooks | 4 MCPs | 5 skills")


def test_unknown_project_skips_collectors() -> None:
    runner = _runner(MemoryCacheStore())
    runner.run_from_str("{}", CONFIG)
    assert runner.env_collector.calls == 0
    assert runner.git_collector.calls == 0


def test_budget_falls_back_to_last_seen(tmp_path: Path) -> None:
    transcript = tmp_path / "t.jsonl"
    transcript.write_text("", encoding="utf-8")
    store = MemoryCacheStore()
    budget = {
        "context_window": {
            "context_window_size": 200000,
            "used_percentage": 25,
            "current_usage": {
                "input_tokens": 1500,
                "output_tokens": 20,
                "cache_creation_input_tokens": 0,
                "cache_read_input_tokens": 3000,
            },
        },
        "cost": {"total_cost_usd": 1.5, "total_duration_ms": 1_800_000},
    }

    first = _runner(store).run_from_str(_stdin(transcript, **budget), CONFIG)
    assert first[2] == "CTX:25% (50.0k/200.0k) | TOK I: 1.5k O: 20 C:0/3.0k | $1.50 ($3.00/h)"
    assert first[1].endswith("| 30m")

    second = _runner(store).run_from_str(_stdin(transcript), CONFIG)
    assert second[2] == first[2]


def test_cache_disabled_does_not_save(tmp_path: Path) -> None:
    transcript = tmp_path / "t.jsonl"
    _append(transcript, _tool_use("b1", "Bash", command="ls"))
    store = MemoryCacheStore()
    config = RenderConfig(transcript_poll_throttle_ms=0, cache_enabled=False)

    _runner(store).run_from_str(_stdin(transcript), config)
    assert store.documents == {}


def test_module_level_run_from_str_uses_given_store() -> None:
    store = MemoryCacheStore()
    lines = run_from_str("{}", CONFIG, cache_store=store)
    assert len(lines) == 3
    assert list(store.documents) == ["||"]


# ── Output speed ──


def _with_tokens(transcript: Path, output_tokens: int) -> str:
    return _stdin(
        transcript,
        context_window={
            "context_window_size": 200000,
            "used_percentage": 30,
            "current_usage": {
                "input_tokens": 5000,
                "output_tokens": output_tokens,
                "cache_creation_input_tokens": 0,
                "cache_read_input_tokens": 0,
            },
        },
    )


def test_speed_hidden_unless_enabled(tmp_path: Path) -> None:
    transcript = tmp_path / "t.jsonl"
    transcript.write_text("", encoding="utf-8")
    runner = _runner(MemoryCacheStore())
    runner.run_from_str(_with_tokens(transcript, 100), CONFIG)
    state = next(iter(runner.sessions.values()))
    assert state.last_output_tokens is None

    lines = runner.run_from_str(_with_tokens(transcript, 900), CONFIG)
    assert "↗" not in lines[2]


def test_speed_shown_inline_after_second_sample(tmp_path: Path) -> None:
    transcript = tmp_path / "t.jsonl"
    transcript.write_text("", encoding="utf-8")
    store = MemoryCacheStore()
    config = RenderConfig(transcript_poll_throttle_ms=0, show_speed=True)

    first = _runner(store).run_from_str(_with_tokens(transcript, 100), config)
    assert "↗" not in first[2]
    assert "O: 100" in first[2]

    # Move the stored baseline two seconds into the past.
    cached = store.load(session_key(parse_payload(_with_tokens(transcript, 100))))
    cached.last_output_at_ms -= 2_000
    store.save(session_key(parse_payload(_with_tokens(transcript, 100))), cached)

    second = _runner(store).run_from_str(_with_tokens(transcript, 300), config)
    token_segment = second[2].split(" | ")[1]
    assert token_segment.startswith("TOK I: 5.0k O: 300 C:0/0 ↗")
    assert token_segment.endswith("/s")
