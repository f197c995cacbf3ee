"""Exception hierarchy for the status line engine.

Only the outer surfaces raise: malformed stdin and invalid config files.
Everything below the runner degrades to empty values instead.
"""
from __future__ import annotations

from pathlib import Path


class PulselineError(Exception):
    """Base exception for all pulseline errors."""


class PayloadError(PulselineError):
    """The status line host sent something other than a JSON object."""
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"invalid stdin JSON: {reason}")


class ConfigError(PulselineError):
    """A config file could not be read or has a wrongly typed value."""
    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")
