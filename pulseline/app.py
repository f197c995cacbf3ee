"""Pulseline CLI — status line entry point.

The host pipes a JSON payload on stdin for every redraw; the rendered lines
go to stdout. Config management lives behind ``--init``, ``--check`` and
``--print``.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from pulseline.engine.errors import PayloadError
from pulseline.engine.runner import PulseLineRunner
from pulseline.engine.yaml_config import (
    build_render_config,
    check_configs,
    config_path,
    default_config_yaml,
    default_project_config_yaml,
    dump_config,
    load_merged_config,
    project_config_path,
)

DEFAULT_LOG_FILE = Path.home() / ".cache" / "pulseline" / "pulseline.log"


def _setup_logging(log_file: str | None) -> None:
    """File logging, only when asked for; stdout belongs to the host."""
    level_name = os.getenv("PULSELINE_LOG_LEVEL", "").strip().upper()
    if not level_name and not log_file:
        return

    path = Path(log_file).expanduser() if log_file else DEFAULT_LOG_FILE
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path, maxBytes=2_000_000, backupCount=3, encoding="utf-8"
        )
    except OSError as exc:
        print(f"pulseline: cannot open log file {path}: {exc}", file=sys.stderr)
        return

    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name or "INFO", logging.INFO))
    root.handlers.clear()
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
        )
    )
    root.addHandler(file_handler)


def _project_root_from_stdin(text: str) -> str | None:
    """Project path for config lookup; the runner does the real parsing."""
    try:
        data = json.loads(text) if text.strip() else {}
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    workspace = data.get("workspace")
    if isinstance(workspace, dict) and isinstance(workspace.get("current_dir"), str):
        return workspace["current_dir"]
    cwd = data.get("cwd")
    return cwd if isinstance(cwd, str) else None


def _handle_init(project: bool) -> int:
    if project:
        target = project_config_path(Path.cwd())
        content = default_project_config_yaml()
    else:
        target = config_path()
        content = default_config_yaml()

    if target.exists():
        print(f"{target} already exists; not overwriting", file=sys.stderr)
        return 1
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")
    print(f"created {target}")
    return 0


def _handle_check() -> int:
    project_root = str(Path.cwd())
    failures = dict(check_configs(project_root))
    for path in (config_path(), project_config_path(project_root)):
        if not path.is_file():
            print(f"SKIP {path} (not found)")
        elif path in failures:
            print(f"FAIL {path}: {failures[path]}")
        else:
            print(f"OK   {path}")
    return 1 if failures else 0


def _handle_render(no_cache: bool) -> int:
    text = sys.stdin.read()
    project_root = _project_root_from_stdin(text) or str(Path.cwd())
    config = build_render_config(load_merged_config(project_root))
    if no_cache:
        config.cache_enabled = False

    try:
        lines = PulseLineRunner().run_from_str(text, config)
    except PayloadError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    print("\n".join(lines))
    return 0


def main(argv: list[str] | None = None) -> None:
    import argparse

    parser = argparse.ArgumentParser(
        prog="pulseline",
        description="Pulseline — live activity status line for coding sessions",
    )
    parser.add_argument(
        "--init", action="store_true",
        help="Write a default config file and exit",
    )
    parser.add_argument(
        "--project", action="store_true",
        help="With --init, write <cwd>/.claude/pulseline.yaml instead of the user config",
    )
    parser.add_argument(
        "--check", action="store_true",
        help="Validate the user and project config files and exit",
    )
    parser.add_argument(
        "--print", dest="print_config", action="store_true",
        help="Print the merged effective config and exit",
    )
    parser.add_argument(
        "--no-cache", action="store_true",
        help="Do not read or write the session cache for this run",
    )
    parser.add_argument(
        "--log-file", metavar="PATH",
        help=f"Write logs to PATH (default with PULSELINE_LOG_LEVEL: {DEFAULT_LOG_FILE})",
    )
    args = parser.parse_args(argv)

    _setup_logging(args.log_file)
    logging.getLogger(__name__).debug("pulseline invoked with %s", args)

    if args.init:
        sys.exit(_handle_init(args.project))
    if args.check:
        sys.exit(_handle_check())
    if args.print_config:
        print(dump_config(load_merged_config(str(Path.cwd()))), end="")
        sys.exit(0)
    sys.exit(_handle_render(args.no_cache))


if __name__ == "__main__":
    main()
