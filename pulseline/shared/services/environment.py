"""Project metadata counts for the environment line.

Counts CLAUDE.md files, rule files, hook handlers, MCP servers and skills
across project and user scope. Every read is best-effort: an unreadable or
malformed file simply contributes nothing.
"""
from __future__ import annotations

import abc
import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class EnvSnapshot:
    claude_md_count: int = 0
    rules_count: int = 0
    hooks_count: int = 0
    mcp_count: int = 0
    skills_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> EnvSnapshot:
        if not isinstance(data, dict):
            raise TypeError("EnvSnapshot payload must be an object")
        return cls(**{name: int(data.get(name, 0)) for name in cls.__dataclass_fields__})


def _read_json(path: Path) -> dict[str, Any] | None:
    try:
        value = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError, json.JSONDecodeError):
        logger.debug("Skipping unreadable settings file %s", path, exc_info=True)
        return None
    return value if isinstance(value, dict) else None


def count_claude_md(root: Path, user_home: Path | None) -> int:
    paths = [
        root / "CLAUDE.md",
        root / "CLAUDE.local.md",
        root / ".claude" / "CLAUDE.md",
        root / ".claude" / "CLAUDE.local.md",
    ]
    if user_home is not None:
        paths.append(user_home / ".claude" / "CLAUDE.md")
    return sum(1 for path in paths if path.is_file())


def count_md_files_recursive(path: Path) -> int:
    if not path.is_dir():
        return 0
    count = 0
    for _dirpath, _dirnames, filenames in os.walk(path):
        count += sum(1 for name in filenames if name.endswith(".md"))
    return count


def count_skill_dirs(path: Path) -> int:
    """A skill is a directory containing a SKILL.md."""
    if not path.is_dir():
        return 0
    try:
        return sum(1 for entry in path.iterdir() if (entry / "SKILL.md").is_file())
    except OSError:
        return 0


def count_hooks_in_json(path: Path) -> int:
    """Count handlers in ``{"hooks": {"Event": [{"hooks": [...]}, ...]}}``."""
    value = _read_json(path)
    hooks = value.get("hooks") if value else None
    if not isinstance(hooks, dict):
        return 0
    total = 0
    for groups in hooks.values():
        if not isinstance(groups, list):
            continue
        for group in groups:
            handlers = group.get("hooks") if isinstance(group, dict) else None
            if isinstance(handlers, list):
                total += len(handlers)
    return total


def _mcp_server_names(value: dict[str, Any] | None) -> set[str]:
    servers = value.get("mcpServers") if value else None
    return set(servers) if isinstance(servers, dict) else set()


def _disabled_names(value: dict[str, Any] | None, key: str) -> set[str]:
    names = value.get(key) if value else None
    if not isinstance(names, list):
        return set()
    return {name for name in names if isinstance(name, str)}


def count_mcp_servers(root: Path, user_home: Path | None) -> int:
    """Union of server names across user and project scope."""
    names: set[str] = set()
    if user_home is not None:
        names |= _mcp_server_names(_read_json(user_home / ".claude" / "settings.json"))
        claude_json = _read_json(user_home / ".claude.json")
        names |= _mcp_server_names(claude_json)
        names -= _disabled_names(claude_json, "disabledMcpServers")

    mcp_json_servers = _mcp_server_names(_read_json(root / ".mcp.json"))
    names |= _mcp_server_names(_read_json(root / ".claude" / "settings.json"))
    local_settings = _read_json(root / ".claude" / "settings.local.json")
    names |= _mcp_server_names(local_settings)
    mcp_json_servers -= _disabled_names(local_settings, "disabledMcpjsonServers")
    return len(names | mcp_json_servers)


class EnvCollector(abc.ABC):
    """Source of the project metadata counts."""

    @abc.abstractmethod
    def collect_env(self, cwd: str) -> EnvSnapshot:
        """Count config artifacts visible from ``cwd``."""


class FileSystemEnvCollector(EnvCollector):
    def __init__(self, user_home: Path | None = None) -> None:
        self._user_home = user_home

    def _resolve_home(self) -> Path | None:
        if self._user_home is not None:
            return self._user_home
        home = os.environ.get("HOME") or os.environ.get("USERPROFILE")
        return Path(home) if home else None

    def collect_env(self, cwd: str) -> EnvSnapshot:
        root = Path(cwd)
        if not root.exists():
            return EnvSnapshot()
        home = self._resolve_home()

        rules = count_md_files_recursive(root / ".claude" / "rules")
        skills = count_skill_dirs(root / ".claude" / "skills")
        hooks = count_hooks_in_json(root / ".claude" / "settings.json")
        hooks += count_hooks_in_json(root / ".claude" / "settings.local.json")
        if home is not None:
            rules += count_md_files_recursive(home / ".claude" / "rules")
            skills += count_skill_dirs(home / ".claude" / "skills")
            hooks += count_hooks_in_json(home / ".claude" / "settings.json")

        return EnvSnapshot(
            claude_md_count=count_claude_md(root, home),
            rules_count=rules,
            hooks_count=hooks,
            mcp_count=count_mcp_servers(root, home),
            skills_count=skills,
        )
