"""Status line host payload — the JSON document received on stdin."""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from typing import Any


def _str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None


def _obj(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


@dataclass
class BudgetMetrics:
    """Context window usage and cost figures for the budget line."""

    context_window_size: int | None = None
    context_used_percentage: int | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    cache_creation_tokens: int | None = None
    cache_read_tokens: int | None = None
    total_cost_usd: float | None = None
    total_duration_ms: int | None = None

    def has_data(self) -> bool:
        return any(value is not None for value in asdict(self).values())

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> BudgetMetrics:
        if not isinstance(data, dict):
            raise TypeError("BudgetMetrics payload must be an object")
        return cls(
            context_window_size=_int(data.get("context_window_size")),
            context_used_percentage=_int(data.get("context_used_percentage")),
            input_tokens=_int(data.get("input_tokens")),
            output_tokens=_int(data.get("output_tokens")),
            cache_creation_tokens=_int(data.get("cache_creation_tokens")),
            cache_read_tokens=_int(data.get("cache_read_tokens")),
            total_cost_usd=_float(data.get("total_cost_usd")),
            total_duration_ms=_int(data.get("total_duration_ms")),
        )


@dataclass
class StdinPayload:
    session_id: str | None = None
    model_id: str | None = None
    model_display_name: str | None = None
    output_style: str | None = None
    version: str | None = None
    cwd: str | None = None
    workspace_dir: str | None = None
    transcript_path: str | None = None
    budget: BudgetMetrics = field(default_factory=BudgetMetrics)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StdinPayload:
        model = _obj(data.get("model"))
        context = _obj(data.get("context_window"))
        usage = _obj(context.get("current_usage"))
        cost = _obj(data.get("cost"))
        return cls(
            session_id=_str(data.get("session_id")),
            model_id=_str(model.get("id")),
            model_display_name=_str(model.get("display_name")),
            output_style=_str(_obj(data.get("output_style")).get("name")),
            version=_str(data.get("version")),
            cwd=_str(data.get("cwd")),
            workspace_dir=_str(_obj(data.get("workspace")).get("current_dir")),
            transcript_path=_str(data.get("transcript_path")),
            budget=BudgetMetrics(
                context_window_size=_int(context.get("context_window_size")),
                context_used_percentage=_int(context.get("used_percentage")),
                input_tokens=_int(usage.get("input_tokens")),
                output_tokens=_int(usage.get("output_tokens")),
                cache_creation_tokens=_int(usage.get("cache_creation_input_tokens")),
                cache_read_tokens=_int(usage.get("cache_read_input_tokens")),
                total_cost_usd=_float(cost.get("total_cost_usd")),
                total_duration_ms=_int(cost.get("total_duration_ms")),
            ),
        )

    def resolve_project_path(self) -> str | None:
        return self.workspace_dir or self.cwd

    def model_display(self) -> str:
        return self.model_display_name or self.model_id or "unknown"

    def project_path_display(self) -> str:
        raw_path = self.resolve_project_path() or "unknown"
        home = os.environ.get("HOME") or os.environ.get("USERPROFILE")
        if home and raw_path.startswith(home):
            return raw_path.replace(home, "~", 1)
        return raw_path
