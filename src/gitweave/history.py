"""Commit history retrieval from a single ``git log`` invocation."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

from .config import GitweaveSettings, get_settings
from .events import Broadcaster, NullBroadcaster, OperationEvents
from .exceptions import GitweaveError
from .git import CommandRunner, PathLike, current_branch
from .types import (
    CommitRecord,
    Failure,
    OperationOutcome,
    Success,
    WorktreeRef,
    validate_branch_name,
)

logger = logging.getLogger(__name__)

RECORD_START = "\x00"
META_END = "\x01"

# NUL opens each record and SOH closes the metadata; neither can occur in a
# commit message, so bodies are free-form.
LOG_FORMAT = "--format=%x00%n%H%n%h%n%an%n%ae%n%aI%n%s%n%b%x01"

_REQUIRED_FIELDS = 6


def _parse_block(block: str) -> tuple[CommitRecord, list[str]] | None:
    meta_raw, sep, files_raw = block.partition(META_END)
    if not sep:
        return None

    lines = meta_raw.split("\n")
    start = 0
    while start < len(lines) and not lines[start].strip():
        start += 1
    fields = lines[start:]
    if len(fields) < _REQUIRED_FIELDS:
        return None

    commit_hash = fields[0].strip()
    if not commit_hash:
        return None

    record = CommitRecord(
        hash=commit_hash,
        short_hash=fields[1].strip(),
        author=fields[2].strip(),
        author_email=fields[3].strip(),
        date=fields[4].strip(),
        subject=fields[5].strip(),
        body="\n".join(fields[6:]).strip(),
    )
    files = [line.strip() for line in files_raw.split("\n") if line.strip()]
    return record, files


def parse_log_output(output: str, limit: int | None = None) -> list[CommitRecord]:
    """
    Parse ``git log -m --name-only`` output produced with :data:`LOG_FORMAT`.

    With ``-m`` a merge commit is emitted once per parent, so the same hash
    can appear several times with different file lists. Those occurrences
    are folded into a single record whose files are the union, keeping the
    order in which hashes were first seen. The result is truncated to
    ``limit`` after deduplication.
    """
    records: dict[str, CommitRecord] = {}
    for block in output.split(RECORD_START):
        if not block.strip():
            continue
        parsed = _parse_block(block)
        if parsed is None:
            logger.debug("Skipping malformed log block: %r", block[:80])
            continue
        record, files = parsed
        existing = records.get(record.hash)
        if existing is None:
            record.add_files(files)
            records[record.hash] = record
        else:
            existing.add_files(files)

    commits = list(records.values())
    if limit is not None:
        commits = commits[: max(limit, 0)]
    return commits


@dataclass(slots=True)
class HistoryResult:
    """Commits of one branch, newest first."""

    branch: str
    commits: list[CommitRecord] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.commits)

    def to_dict(self) -> dict[str, object]:
        return {
            "branch": self.branch,
            "commits": [commit.to_dict() for commit in self.commits],
            "total": self.total,
        }


class HistoryParser:
    """Fetch and parse commit history for a worktree."""

    operation = "history"

    def __init__(
        self,
        runner: CommandRunner | None = None,
        settings: GitweaveSettings | None = None,
    ) -> None:
        self.settings = settings or (runner.settings if runner else get_settings())
        self.runner = runner or CommandRunner(self.settings)

    def clamp_limit(self, limit: int | None) -> int:
        if limit is None:
            return min(self.settings.history_default_limit, self.settings.history_max_limit)
        return min(max(1, int(limit)), self.settings.history_max_limit)

    def fetch(
        self,
        worktree: PathLike,
        limit: int | None = None,
        ref: str | None = None,
        cancel: threading.Event | None = None,
    ) -> HistoryResult:
        """Return up to ``limit`` commits reachable from ``ref`` (HEAD by default).

        Over-fetches ``2 * limit`` entries to absorb merge commits repeated
        by ``-m``; a window dense with merges may still return fewer than
        ``limit`` commits.
        """
        if ref is not None:
            validate_branch_name(ref, label="ref")
        commit_limit = self.clamp_limit(limit)
        args = ["log"]
        if ref:
            args.append(ref)
        args.extend([f"--max-count={commit_limit * 2}", "-m", "--name-only", LOG_FORMAT])
        if ref:
            args.append("--")

        output = self.runner.invoke(args, worktree, cancel=cancel).stdout
        commits = parse_log_output(output, commit_limit)
        branch = ref or current_branch(self.runner, worktree, cancel=cancel)
        return HistoryResult(branch=branch, commits=commits)

    def run(
        self,
        worktree: PathLike,
        limit: int | None = None,
        ref: str | None = None,
        *,
        broadcaster: Broadcaster | None = None,
        cancel: threading.Event | None = None,
    ) -> OperationOutcome:
        """Outcome-returning wrapper around :meth:`fetch` with lifecycle events."""
        target = WorktreeRef.of(worktree)
        events = OperationEvents(broadcaster or NullBroadcaster(), self.operation, target)
        events.started(ref=ref, limit=limit)
        try:
            result = self.fetch(target, limit, ref, cancel=cancel)
        except GitweaveError as exc:
            events.failure(error=str(exc))
            return Failure(self.operation, exc)
        events.progress("parsed", total=result.total)
        events.success(branch=result.branch, total=result.total)
        return Success(
            self.operation,
            branch=result.branch,
            message=f"Loaded {result.total} commit(s)",
            details={"commits": result.commits, "total": result.total},
        )
