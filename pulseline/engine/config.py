"""Render configuration.

All settings have sensible defaults. YAML files refine them (see
``yaml_config``) and PULSELINE_* env vars override both.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace

logger = logging.getLogger(__name__)

GLYPH_ASCII = "ascii"
GLYPH_ICON = "icon"

_TRUTHY = {"1", "true", "yes", "on"}

# env var -> RenderConfig field, for integer settings
_INT_ENV_VARS = {
    "PULSELINE_MAX_TOOL_LINES": "max_tool_lines",
    "PULSELINE_MAX_AGENT_LINES": "max_agent_lines",
    "PULSELINE_MAX_COMPLETED_TOOLS": "max_completed_tools",
    "PULSELINE_WINDOW_EVENTS": "transcript_window_events",
    "PULSELINE_POLL_THROTTLE_MS": "transcript_poll_throttle_ms",
}


def env_flag(name: str) -> bool | None:
    """Tri-state boolean env var: ``None`` when unset."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip().lower() in _TRUTHY


@dataclass
class RenderConfig:
    """What the status line shows and how hard it works for it."""

    glyph_mode: str = GLYPH_ASCII
    color_enabled: bool = False
    max_tool_lines: int = 2
    max_completed_tools: int = 4
    max_agent_lines: int = 2
    # 0 = apply every new event
    transcript_window_events: int = 400
    # 0 = read the transcript on every invocation
    transcript_poll_throttle_ms: int = 250
    show_tools: bool = True
    show_completed_tools: bool = True
    show_agents: bool = True
    show_todo: bool = True
    show_speed: bool = False
    cache_enabled: bool = True

    @property
    def use_icons(self) -> bool:
        return self.glyph_mode == GLYPH_ICON

    def with_env_overrides(self) -> RenderConfig:
        """Apply PULSELINE_* env overrides on top of this config."""
        pulseline_vars = {
            k: v for k, v in os.environ.items() if k.startswith("PULSELINE_")
        }
        if not pulseline_vars:
            return self
        logger.debug(
            "RenderConfig: PULSELINE_* env overrides: %s",
            ", ".join(f"{k}={v}" for k, v in sorted(pulseline_vars.items())),
        )

        changes: dict[str, object] = {}
        for env_name, field_name in _INT_ENV_VARS.items():
            raw = os.getenv(env_name)
            if raw is None or not raw.strip():
                continue
            try:
                value = int(raw)
            except ValueError:
                logger.warning("Ignoring %s=%r: not an integer", env_name, raw)
                continue
            if value < 0:
                logger.warning("Ignoring %s=%r: must not be negative", env_name, raw)
                continue
            changes[field_name] = value

        color = env_flag("PULSELINE_COLOR")
        if color is not None:
            changes["color_enabled"] = color
        icons = env_flag("PULSELINE_ICONS")
        if icons is not None:
            changes["glyph_mode"] = GLYPH_ICON if icons else GLYPH_ASCII
        speed = env_flag("PULSELINE_SHOW_SPEED")
        if speed is not None:
            changes["show_speed"] = speed
        if env_flag("PULSELINE_NO_CACHE"):
            changes["cache_enabled"] = False
        return replace(self, **changes)

    @classmethod
    def from_env(cls) -> RenderConfig:
        """Defaults plus PULSELINE_* env overrides, ignoring YAML files."""
        return cls().with_env_overrides()
