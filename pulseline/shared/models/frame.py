"""Everything one redraw displays, gathered before rendering."""

from __future__ import annotations

from dataclasses import dataclass, field

from pulseline.shared.models.activity import AgentTask, CompletedToolCount, TodoSummary, ToolInvocation
from pulseline.shared.models.payload import BudgetMetrics, StdinPayload
from pulseline.shared.services.environment import EnvSnapshot
from pulseline.shared.services.git_status import GitSnapshot


@dataclass
class RenderFrame:
    model: str = "unknown"
    output_style: str = "unknown"
    version: str = "unknown"
    project_path: str = "unknown"
    git: GitSnapshot = field(default_factory=GitSnapshot)
    env: EnvSnapshot = field(default_factory=EnvSnapshot)
    budget: BudgetMetrics = field(default_factory=BudgetMetrics)
    tools: list[ToolInvocation] = field(default_factory=list)
    completed_tools: list[CompletedToolCount] = field(default_factory=list)
    agents: list[AgentTask] = field(default_factory=list)
    todo: TodoSummary | None = None
    # output tokens per second since the previous redraw
    speed: float | None = None

    @property
    def elapsed_minutes(self) -> int:
        return (self.budget.total_duration_ms or 0) // 60_000

    @classmethod
    def from_payload(cls, payload: StdinPayload) -> RenderFrame:
        return cls(
            model=payload.model_display(),
            output_style=payload.output_style or "unknown",
            version=payload.version or "unknown",
            project_path=payload.project_path_display(),
            budget=payload.budget,
        )
