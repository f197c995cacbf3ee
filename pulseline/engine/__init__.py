"""Pulseline engine — configuration, errors and the per-invocation runner."""
from .config import RenderConfig
from .errors import ConfigError, PayloadError, PulselineError

__all__ = [
    # Config
    "RenderConfig",
    # Runner (lazy import to avoid circular deps with the renderer)
    "PulseLineRunner",
    "run_from_str",
    "session_key",
    # YAML config (lazy import)
    "PulselineConfig",
    "load_merged_config",
    "build_render_config",
    # Errors
    "ConfigError",
    "PayloadError",
    "PulselineError",
]


def __getattr__(name: str):
    if name in ("PulseLineRunner", "run_from_str", "session_key"):
        from . import runner
        return getattr(runner, name)
    if name in ("PulselineConfig", "load_merged_config", "build_render_config"):
        from . import yaml_config
        return getattr(yaml_config, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
