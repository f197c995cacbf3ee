"""Status line layout — turns a RenderFrame into printable lines.

Lines are built as rich ``Text`` so styling lives next to content. With
colour disabled the plain text is emitted; with colour enabled the text is
rendered to ANSI through a capture-only ``Console``.

    line 1  model | style | version | project | git
    line 2  CLAUDE.md / rules / hooks / MCPs / skills counts | session duration
    line 3  context window | tokens [speed] | cost
    T:      one per running tool
    C:      completed tool tally
    A:      one per displayed agent
    TODO:   todo progress
"""

from __future__ import annotations

import time

from rich.console import Console
from rich.text import Text

from pulseline.engine.config import RenderConfig
from pulseline.shared.models.activity import AgentTask, ToolInvocation
from pulseline.shared.models.frame import RenderFrame
from pulseline.shared.models.payload import BudgetMetrics

ICON_MODEL = "\ue26d"
ICON_STYLE = "\uf040"
ICON_VERSION = "\uf427"
ICON_PROJECT = "\U000f024b"
ICON_GIT = "\U000f02a2"
ICON_CLAUDE_MD = "\U000f0219"
ICON_RULES = "\U000f0c47"
ICON_HOOKS = "\U000f1b67"
ICON_MCP = "\U000f01a7"
ICON_SKILLS = "\uf0e7"
ICON_ELAPSED = "\uf2f2"
ICON_CONTEXT = "\uf49b"
ICON_TOKENS = "\U000f061d"
ICON_TOOL = "\uf0ad"
ICON_COMPLETED = "\uf00c"
ICON_AGENT = "\U000f19bb"
ICON_TODO = "\uf0c8"

STYLE_SEPARATOR = "dim"
STYLE_SECONDARY = "grey70"
STYLE_MODEL = "bright_blue"
STYLE_GIT = "green"
STYLE_GIT_DIRTY = "yellow"
STYLE_GIT_AHEAD = "cyan"
STYLE_GIT_BEHIND = "magenta"
STYLE_CTX_GOOD = "green"
STYLE_CTX_WARN = "yellow"
STYLE_CTX_CRITICAL = "bold red"
STYLE_COST = "grey70"
STYLE_SPEED = "cyan"
STYLE_TOOL = "bright_blue"
STYLE_COMPLETED = "grey58"
STYLE_AGENT = "medium_purple"
STYLE_TODO = "dark_cyan"


# ── Formatting helpers ──


def format_number(n: int) -> str:
    if n >= 1_000_000:
        return f"{n / 1_000_000:.1f}M"
    if n >= 1_000:
        return f"{n / 1_000:.1f}k"
    return str(n)


def format_duration(minutes: int) -> str:
    """Session duration: ``<1m``, ``45m``, ``1h 30m``, ``1d 1h``."""
    if minutes <= 0:
        return "<1m"
    days, rest = divmod(minutes, 1440)
    hours, mins = divmod(rest, 60)
    if days:
        return f"{days}d {hours}h" if hours else f"{days}d"
    if hours:
        return f"{hours}h {mins}m" if mins else f"{hours}h"
    return f"{mins}m"


def format_elapsed(seconds: float) -> str:
    """Agent running time: ``42s``, ``3m 5s``, ``1h 12m``."""
    secs = int(seconds)
    if secs < 60:
        return f"{secs}s"
    elif secs < 3600:
        m, s = divmod(secs, 60)
        return f"{m}m {s}s"
    else:
        h, remainder = divmod(secs, 3600)
        m = remainder // 60
        return f"{h}h {m}m"


def format_speed(tokens_per_sec: float) -> str:
    if tokens_per_sec >= 1000:
        return f"↗{tokens_per_sec / 1000:.1f}K/s"
    return f"↗{tokens_per_sec:.0f}/s"


def glyph(config: RenderConfig, icon: str, ascii_label: str) -> str:
    return f"{icon} " if config.use_icons else ascii_label


def _sep(text: Text) -> None:
    text.append(" | ", style=STYLE_SEPARATOR)


# ── Core lines ──


def format_identity_line(frame: RenderFrame, config: RenderConfig) -> Text:
    line = Text()
    line.append(glyph(config, ICON_MODEL, "M:"), style=STYLE_MODEL)
    line.append(frame.model, style=STYLE_MODEL)
    for icon, label, value in (
        (ICON_STYLE, "S:", frame.output_style),
        (ICON_VERSION, "CC:", frame.version),
        (ICON_PROJECT, "P:", frame.project_path),
    ):
        _sep(line)
        line.append(glyph(config, icon, label), style=STYLE_SECONDARY)
        line.append(value, style=STYLE_SECONDARY)
    _sep(line)
    line.append(glyph(config, ICON_GIT, "G:"), style=STYLE_GIT)
    line.append_text(format_git(frame))
    return line


def format_git(frame: RenderFrame) -> Text:
    git = frame.git
    if not git.branch or git.branch == "unknown":
        return Text("unknown")
    status = Text(git.branch, style=STYLE_GIT)
    if git.dirty:
        status.append("*", style=STYLE_GIT_DIRTY)
    if git.ahead > 0:
        status.append(f" ↑{git.ahead}", style=STYLE_GIT_AHEAD)
    if git.behind > 0:
        status.append(f" ↓{git.behind}", style=STYLE_GIT_BEHIND)
    return status


def format_env_line(frame: RenderFrame, config: RenderConfig) -> Text:
    env = frame.env
    line = Text()
    items = (
        (ICON_CLAUDE_MD, "CLAUDE.md", env.claude_md_count),
        (ICON_RULES, "rules", env.rules_count),
        (ICON_HOOKS, "hooks", env.hooks_count),
        (ICON_MCP, "MCPs", env.mcp_count),
        (ICON_SKILLS, "skills", env.skills_count),
    )
    for icon, label, count in items:
        if config.use_icons:
            line.append(f"{icon} ", style=STYLE_SEPARATOR)
        line.append(str(count), style=STYLE_SECONDARY)
        line.append(f" {label}", style=STYLE_SEPARATOR)
        _sep(line)
    if config.use_icons:
        line.append(f"{ICON_ELAPSED} ", style=STYLE_SEPARATOR)
    line.append(format_duration(frame.elapsed_minutes), style=STYLE_SECONDARY)
    return line


def _context_style(used_pct: int) -> str:
    if used_pct >= 85:
        return STYLE_CTX_CRITICAL
    if used_pct >= 70:
        return STYLE_CTX_WARN
    return STYLE_CTX_GOOD


def format_budget_line(
    budget: BudgetMetrics,
    config: RenderConfig,
    speed: float | None = None,
) -> Text:
    line = Text()
    label = glyph(config, ICON_CONTEXT, "CTX:")
    used_pct, size = budget.context_used_percentage, budget.context_window_size
    if used_pct is not None and size is not None:
        style = _context_style(used_pct)
        used_tokens = int(size * used_pct / 100)
        line.append(label, style=style)
        line.append(f"{used_pct}%", style=style)
        line.append(f" ({format_number(used_tokens)}/{format_number(size)})", style=STYLE_SECONDARY)
    else:
        line.append(label, style=STYLE_SECONDARY)
        line.append("NA")
    _sep(line)

    token_fields = (
        budget.input_tokens,
        budget.output_tokens,
        budget.cache_creation_tokens,
        budget.cache_read_tokens,
    )
    line.append(glyph(config, ICON_TOKENS, "TOK "), style=STYLE_SEPARATOR)
    if all(value is None for value in token_fields):
        line.append("NA")
    else:
        line.append(
            f"I: {format_number(budget.input_tokens or 0)} "
            f"O: {format_number(budget.output_tokens or 0)} "
            f"C:{format_number(budget.cache_creation_tokens or 0)}"
            f"/{format_number(budget.cache_read_tokens or 0)}",
            style=STYLE_SECONDARY,
        )
        if speed is not None:
            line.append(f" {format_speed(speed)}", style=STYLE_SPEED)
    _sep(line)

    total_cost = budget.total_cost_usd or 0.0
    duration_ms = budget.total_duration_ms or 0
    per_hour = total_cost / (duration_ms / 3_600_000) if duration_ms > 0 else 0.0
    line.append(f"${total_cost:.2f} (${per_hour:.2f}/h)", style=STYLE_COST)
    return line


# ── Activity lines ──


def format_tool(tool: ToolInvocation, config: RenderConfig) -> Text:
    line = Text(glyph(config, ICON_TOOL, "T:"), style=STYLE_TOOL)
    line.append(tool.name, style=STYLE_TOOL)
    if tool.target:
        line.append(f" {tool.target}", style=STYLE_SECONDARY)
    return line


def format_completed_tools(frame: RenderFrame, config: RenderConfig) -> Text:
    line = Text(glyph(config, ICON_COMPLETED, "C:"), style=STYLE_COMPLETED)
    tally = " ".join(f"{entry.name}x{entry.count}" for entry in frame.completed_tools)
    line.append(tally, style=STYLE_COMPLETED)
    return line


def format_agent(agent: AgentTask, config: RenderConfig, now_ms: int) -> Text:
    line = Text(glyph(config, ICON_AGENT, "A:"), style=STYLE_AGENT)
    if agent.agent_type:
        line.append(f"{agent.agent_type}: ", style=STYLE_AGENT)
    line.append(agent.description, style=STYLE_AGENT)
    if agent.model:
        line.append(f" [{agent.model}]", style=STYLE_SECONDARY)
    elapsed = agent.elapsed_ms(now_ms)
    if elapsed is not None:
        line.append(f" ({format_elapsed(elapsed / 1000)})", style=STYLE_SECONDARY)
    if not agent.is_active:
        line.append(" [done]", style=STYLE_COMPLETED)
    return line


def format_todo(frame: RenderFrame, config: RenderConfig) -> Text:
    todo = frame.todo
    line = Text(glyph(config, ICON_TODO, "TODO:"), style=STYLE_TODO)
    line.append(todo.display_text, style=STYLE_TODO)
    if todo.in_progress_items:
        line.append(f" | {todo.in_progress_items[0]}", style=STYLE_SECONDARY)
    return line


def build_lines(frame: RenderFrame, config: RenderConfig, now_ms: int | None = None) -> list[Text]:
    now = now_ms if now_ms is not None else int(time.time() * 1000)
    lines = [
        format_identity_line(frame, config),
        format_env_line(frame, config),
        format_budget_line(frame.budget, config, frame.speed),
    ]
    if config.show_tools:
        lines.extend(format_tool(tool, config) for tool in frame.tools[: config.max_tool_lines])
    if config.show_completed_tools and frame.completed_tools:
        lines.append(format_completed_tools(frame, config))
    if config.show_agents:
        lines.extend(
            format_agent(agent, config, now) for agent in frame.agents[: config.max_agent_lines]
        )
    if config.show_todo and frame.todo is not None:
        lines.append(format_todo(frame, config))
    return lines


def to_ansi(text: Text) -> str:
    console = Console(force_terminal=True, color_system="256", width=max(len(text), 1) + 1)
    with console.capture() as capture:
        console.print(text, end="", soft_wrap=True)
    return capture.get()


def render_frame(frame: RenderFrame, config: RenderConfig, now_ms: int | None = None) -> list[str]:
    lines = build_lines(frame, config, now_ms)
    if config.color_enabled:
        return [to_ansi(line) for line in lines]
    return [line.plain for line in lines]
