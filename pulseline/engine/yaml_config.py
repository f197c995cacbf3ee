"""YAML configuration loader.

Two optional files feed the render config, merged key by key with the
project file winning:

1. user scope: ``~/.config/pulseline/config.yaml``
   (``$PULSELINE_CONFIG_HOME`` replaces the directory)
2. project scope: ``<project>/.claude/pulseline.yaml``

PULSELINE_* env vars are applied last, in ``RenderConfig.with_env_overrides``.

Example YAML:
    display:
      icons: false
      color: true

    segments:
      tools:
        enabled: true
        max_lines: 2
        max_completed: 4
      agents:
        enabled: true
        max_lines: 2
      todo:
        enabled: true
      speed:
        enabled: false

    transcript:
      window_events: 400
      poll_throttle_ms: 250

    cache:
      enabled: true
"""
from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .config import GLYPH_ASCII, GLYPH_ICON, RenderConfig
from .errors import ConfigError

logger = logging.getLogger(__name__)

USER_CONFIG_FILENAME = "config.yaml"
PROJECT_CONFIG_FILENAME = "pulseline.yaml"


@dataclass
class DisplayConfig:
    icons: bool = False
    color: bool = False


@dataclass
class ToolsSegmentConfig:
    enabled: bool = True
    max_lines: int = 2
    max_completed: int = 4


@dataclass
class AgentsSegmentConfig:
    enabled: bool = True
    max_lines: int = 2


@dataclass
class TodoSegmentConfig:
    enabled: bool = True


@dataclass
class SpeedSegmentConfig:
    enabled: bool = False


@dataclass
class SegmentsConfig:
    tools: ToolsSegmentConfig = field(default_factory=ToolsSegmentConfig)
    agents: AgentsSegmentConfig = field(default_factory=AgentsSegmentConfig)
    todo: TodoSegmentConfig = field(default_factory=TodoSegmentConfig)
    speed: SpeedSegmentConfig = field(default_factory=SpeedSegmentConfig)


@dataclass
class TranscriptConfig:
    window_events: int = 400
    poll_throttle_ms: int = 250


@dataclass
class CacheConfig:
    enabled: bool = True


@dataclass
class PulselineConfig:
    """Complete merged YAML configuration."""
    display: DisplayConfig = field(default_factory=DisplayConfig)
    segments: SegmentsConfig = field(default_factory=SegmentsConfig)
    transcript: TranscriptConfig = field(default_factory=TranscriptConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ── Locations ──


def config_home() -> Path:
    override = os.getenv("PULSELINE_CONFIG_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "pulseline"


def config_path() -> Path:
    """User-scope config file path."""
    return config_home() / USER_CONFIG_FILENAME


def project_config_path(project_root: str | Path) -> Path:
    return Path(project_root) / ".claude" / PROJECT_CONFIG_FILENAME


# ── Reading ──


def read_yaml_file(path: Path) -> dict[str, Any]:
    """Parse one config file, raising ``ConfigError`` on any problem."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as exc:
        raise ConfigError(path, f"cannot read file: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(path, f"YAML parse error: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(path, "top level must be a mapping")
    return data


def _load_yaml_file(path: Path, label: str) -> dict[str, Any]:
    """Best-effort load: a missing file is empty, a broken one is logged."""
    if not path.is_file():
        logger.debug("_load_yaml_file: %s not found at %s", label, path)
        return {}
    try:
        data = read_yaml_file(path)
    except ConfigError as exc:
        logger.warning("_load_yaml_file: skipping %s: %s", label, exc)
        return {}
    logger.debug(
        "_load_yaml_file: loaded %s from %s (sections: %s)",
        label, path, ", ".join(sorted(data)) if data else "empty",
    )
    return data


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


# ── Parsing ──


class _SectionReader:
    """Typed access to nested config keys.

    In strict mode a mistyped value raises ``ConfigError``; otherwise it is
    logged and the default kept.
    """

    def __init__(self, raw: dict[str, Any], path: Path, strict: bool):
        self._raw = raw
        self._path = path
        self._strict = strict

    def _reject(self, dotted: str, expected: str, value: Any) -> None:
        reason = f"{dotted}: expected {expected}, got {type(value).__name__}"
        if self._strict:
            raise ConfigError(self._path, reason)
        logger.warning("Ignoring config value in %s: %s", self._path, reason)

    def section(self, *keys: str) -> dict[str, Any]:
        cursor: Any = self._raw
        for depth, key in enumerate(keys):
            cursor = cursor.get(key) if isinstance(cursor, dict) else None
            if cursor is None:
                return {}
            if not isinstance(cursor, dict):
                self._reject(".".join(keys[: depth + 1]), "a mapping", cursor)
                return {}
        return cursor

    def boolean(self, section: dict[str, Any], dotted: str, key: str, default: bool) -> bool:
        value = section.get(key)
        if value is None:
            return default
        if not isinstance(value, bool):
            self._reject(f"{dotted}.{key}", "a boolean", value)
            return default
        return value

    def count(self, section: dict[str, Any], dotted: str, key: str, default: int) -> int:
        value = section.get(key)
        if value is None:
            return default
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            self._reject(f"{dotted}.{key}", "a non-negative integer", value)
            return default
        return value


def parse_config(raw: dict[str, Any], path: Path, strict: bool = False) -> PulselineConfig:
    reader = _SectionReader(raw, path, strict)
    config = PulselineConfig()

    display = reader.section("display")
    config.display.icons = reader.boolean(display, "display", "icons", config.display.icons)
    config.display.color = reader.boolean(display, "display", "color", config.display.color)

    tools = reader.section("segments", "tools")
    seg = config.segments
    seg.tools.enabled = reader.boolean(tools, "segments.tools", "enabled", seg.tools.enabled)
    seg.tools.max_lines = reader.count(tools, "segments.tools", "max_lines", seg.tools.max_lines)
    seg.tools.max_completed = reader.count(
        tools, "segments.tools", "max_completed", seg.tools.max_completed,
    )

    agents = reader.section("segments", "agents")
    seg.agents.enabled = reader.boolean(agents, "segments.agents", "enabled", seg.agents.enabled)
    seg.agents.max_lines = reader.count(agents, "segments.agents", "max_lines", seg.agents.max_lines)

    todo = reader.section("segments", "todo")
    seg.todo.enabled = reader.boolean(todo, "segments.todo", "enabled", seg.todo.enabled)

    speed = reader.section("segments", "speed")
    seg.speed.enabled = reader.boolean(speed, "segments.speed", "enabled", seg.speed.enabled)

    transcript = reader.section("transcript")
    config.transcript.window_events = reader.count(
        transcript, "transcript", "window_events", config.transcript.window_events,
    )
    config.transcript.poll_throttle_ms = reader.count(
        transcript, "transcript", "poll_throttle_ms", config.transcript.poll_throttle_ms,
    )

    cache = reader.section("cache")
    config.cache.enabled = reader.boolean(cache, "cache", "enabled", config.cache.enabled)
    return config


def load_merged_config(project_root: str | None = None) -> PulselineConfig:
    """User config overlaid with the project config (if any)."""
    user_path = config_path()
    merged = _load_yaml_file(user_path, "user config")
    source = user_path
    if project_root:
        project_path = project_config_path(project_root)
        project_raw = _load_yaml_file(project_path, "project config")
        if project_raw:
            merged = deep_merge(merged, project_raw)
            source = project_path
    return parse_config(merged, source, strict=False)


def check_configs(project_root: str | None = None) -> list[tuple[Path, str]]:
    """Validate each existing config file; returns ``(path, error)`` pairs."""
    paths = [config_path()]
    if project_root:
        paths.append(project_config_path(project_root))

    errors: list[tuple[Path, str]] = []
    for path in paths:
        if not path.is_file():
            continue
        try:
            parse_config(read_yaml_file(path), path, strict=True)
        except ConfigError as exc:
            errors.append((path, exc.reason))
    return errors


def build_render_config(config: PulselineConfig) -> RenderConfig:
    """Translate the YAML model into a ``RenderConfig`` with env overrides."""
    seg = config.segments
    render = RenderConfig(
        glyph_mode=GLYPH_ICON if config.display.icons else GLYPH_ASCII,
        color_enabled=config.display.color,
        max_tool_lines=seg.tools.max_lines,
        max_completed_tools=seg.tools.max_completed,
        max_agent_lines=seg.agents.max_lines,
        transcript_window_events=config.transcript.window_events,
        transcript_poll_throttle_ms=config.transcript.poll_throttle_ms,
        show_tools=seg.tools.enabled,
        show_completed_tools=seg.tools.enabled,
        show_agents=seg.agents.enabled,
        show_todo=seg.todo.enabled,
        show_speed=seg.speed.enabled,
        cache_enabled=config.cache.enabled,
    )
    return render.with_env_overrides()


def dump_config(config: PulselineConfig) -> str:
    return yaml.safe_dump(config.to_dict(), sort_keys=False, default_flow_style=False)


def default_config_yaml() -> str:
    return dump_config(PulselineConfig())


def default_project_config_yaml() -> str:
    """Project template: only the keys projects usually tune."""
    return (
        "# Project overrides for pulseline; keys here win over the user config.\n"
        "segments:\n"
        "  tools:\n"
        "    max_lines: 2\n"
        "  agents:\n"
        "    max_lines: 2\n"
        "  todo:\n"
        "    enabled: true\n"
    )
