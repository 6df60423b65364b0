"""Conflict classification and in-progress operation detection."""

from __future__ import annotations

import logging
import re

from .exceptions import ExecutionError, GitweaveError
from .git import CommandRunner, PathLike, resolve_git_dir
from .types import InProgressOperation

logger = logging.getLogger(__name__)

UNMERGED_CODES = frozenset({"UU", "AA", "DD", "AU", "UA", "DU", "UD"})

CONFLICT_SIGNATURES: tuple[str, ...] = (
    "CONFLICT",
    "Automatic merge failed",
    "could not apply",
    "cherry-pick failed",
    "Merge conflict",
)

_CONFLICT_LINES = (
    re.compile(r"^CONFLICT \([^)]*\): Merge conflict in (?P<path>.+?)\s*$"),
    re.compile(r"^CONFLICT \([^)]*\): (?P<path>\S+) deleted in "),
)


def parse_unmerged_paths(status_output: str) -> list[str]:
    """Return paths whose porcelain status code marks them unmerged."""
    paths: list[str] = []
    for line in status_output.splitlines():
        if len(line) < 3 or line[:2] not in UNMERGED_CODES:
            continue
        paths.append(line[3:].strip())
    return paths


def classify_failure_output(combined: str) -> bool:
    """Return True when command output carries a conflict signature."""
    return any(marker in combined for marker in CONFLICT_SIGNATURES)


def conflict_files_from_output(combined: str) -> list[str]:
    """Extract paths from ``CONFLICT (...): Merge conflict in <path>`` lines."""
    files: list[str] = []
    for line in combined.splitlines():
        for pattern in _CONFLICT_LINES:
            match = pattern.match(line.strip())
            if match:
                if match.group("path") not in files:
                    files.append(match.group("path"))
                break
    return files


class ConflictDetector:
    """Answer conflict questions about a worktree without raising."""

    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    def has_unmerged_paths(self, worktree: PathLike) -> bool:
        try:
            status = self.runner.invoke(["status", "--porcelain"], worktree)
        except ExecutionError as exc:
            logger.debug("status failed while checking unmerged paths: %s", exc)
            return False
        return bool(parse_unmerged_paths(status.stdout))

    def get_conflict_files(self, worktree: PathLike) -> list[str]:
        try:
            result = self.runner.invoke(["diff", "--name-only", "--diff-filter=U"], worktree)
        except GitweaveError as exc:
            logger.debug("diff failed while listing conflict files: %s", exc)
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def collect_conflict_files(self, worktree: PathLike, combined: str = "") -> list[str]:
        """List conflicted paths, falling back to the failing command's output."""
        files = self.get_conflict_files(worktree)
        if files:
            return files
        return conflict_files_from_output(combined)

    classify_failure_output = staticmethod(classify_failure_output)


class OperationDetector:
    """Inspect the git dir to find a stopped merge, rebase or cherry-pick."""

    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    def detect(self, worktree: PathLike) -> InProgressOperation:
        try:
            git_dir = resolve_git_dir(self.runner, worktree)
        except GitweaveError as exc:
            logger.debug("Unable to resolve git dir for %s: %s", worktree, exc)
            return InProgressOperation.NONE

        if (git_dir / "rebase-merge").is_dir() or (git_dir / "rebase-apply").is_dir():
            return InProgressOperation.REBASE
        if (git_dir / "MERGE_HEAD").is_file():
            return InProgressOperation.MERGE
        if (git_dir / "CHERRY_PICK_HEAD").is_file():
            return InProgressOperation.CHERRY_PICK
        return InProgressOperation.NONE

    def rebase_in_progress(self, worktree: PathLike) -> bool:
        return self.detect(worktree) is InProgressOperation.REBASE
