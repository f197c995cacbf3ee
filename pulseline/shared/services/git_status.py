"""Git working-tree status for the identity line."""

from __future__ import annotations

import abc
import logging
import subprocess
from dataclasses import asdict, dataclass
from typing import Any

logger = logging.getLogger(__name__)

_GIT_TIMEOUT_SECONDS = 2


@dataclass
class GitSnapshot:
    branch: str = "unknown"
    dirty: bool = False
    ahead: int = 0
    behind: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> GitSnapshot:
        if not isinstance(data, dict):
            raise TypeError("GitSnapshot payload must be an object")
        return cls(
            branch=str(data.get("branch") or "unknown"),
            dirty=bool(data.get("dirty", False)),
            ahead=int(data.get("ahead", 0)),
            behind=int(data.get("behind", 0)),
        )


def _git_stdout(cwd: str, args: list[str]) -> str | None:
    try:
        result = subprocess.run(
            ["git", "-C", cwd, *args],
            capture_output=True,
            text=True,
            timeout=_GIT_TIMEOUT_SECONDS,
        )
    except (OSError, subprocess.SubprocessError):
        logger.debug("git %s failed in %s", " ".join(args), cwd, exc_info=True)
        return None
    if result.returncode != 0:
        return None
    return result.stdout


def parse_status_output(output: str, snapshot: GitSnapshot) -> GitSnapshot:
    """Fold ``git status --porcelain=2 --branch`` output into ``snapshot``."""
    for line in output.splitlines():
        if line.startswith("# branch.head "):
            head = line[len("# branch.head "):].strip()
            if head and head != "(detached)":
                snapshot.branch = head
            continue
        if line.startswith("# branch.ab "):
            for token in line[len("# branch.ab "):].split():
                try:
                    if token.startswith("+"):
                        snapshot.ahead = int(token[1:])
                    elif token.startswith("-"):
                        snapshot.behind = int(token[1:])
                except ValueError:
                    continue
            continue
        if line[:2] in {"1 ", "2 ", "u ", "? ", "! "}:
            snapshot.dirty = True
    return snapshot


class GitCollector(abc.ABC):
    @abc.abstractmethod
    def collect_git(self, cwd: str) -> GitSnapshot:
        """Branch, dirty flag and upstream distance for the repo at ``cwd``."""


class LocalGitCollector(GitCollector):
    """Collects branch / dirty / ahead-behind by shelling out to git."""

    def collect_git(self, cwd: str) -> GitSnapshot:
        snapshot = GitSnapshot()
        branch = _git_stdout(cwd, ["symbolic-ref", "--quiet", "--short", "HEAD"])
        if branch is None:
            branch = _git_stdout(cwd, ["rev-parse", "--abbrev-ref", "HEAD"])
        if branch is None:
            return snapshot
        branch = branch.strip()
        if branch and branch != "HEAD":
            snapshot.branch = branch

        status = _git_stdout(cwd, ["status", "--porcelain=2", "--branch"])
        if status:
            parse_status_output(status, snapshot)
        return snapshot
