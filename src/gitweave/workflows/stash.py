"""Stash stack listing, push, apply/pop and drop."""

from __future__ import annotations

import logging
import re
import threading
from typing import Sequence

from ..events import Broadcaster
from ..exceptions import ExecutionError, GitweaveError
from ..git import PathLike, current_branch
from ..types import OperationOutcome, StashEntry, Success, WorktreeRef, validate_stash_index
from .base import Workflow

logger = logging.getLogger(__name__)

FIELD_SEPARATOR = "|||"
STASH_LIST_FORMAT = f"--format=%gd{FIELD_SEPARATOR}%s{FIELD_SEPARATOR}%aI"

_STASH_REF = re.compile(r"stash@\{(\d+)\}")
_STASH_BRANCH = re.compile(r"^(?:WIP on|On) ([^:]+):")


def parse_stash_list(output: str) -> list[StashEntry]:
    """Parse ``git stash list`` output produced with :data:`STASH_LIST_FORMAT`."""
    entries: list[StashEntry] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        parts = line.split(FIELD_SEPARATOR)
        if len(parts) < 3:
            continue
        ref_match = _STASH_REF.search(parts[0].strip())
        if not ref_match:
            continue
        message = parts[1].strip()
        branch_match = _STASH_BRANCH.match(message)
        entries.append(
            StashEntry(
                index=int(ref_match.group(1)),
                message=message,
                timestamp=parts[2].strip(),
                branch=branch_match.group(1) if branch_match else "",
            )
        )
    return entries


class StashWorkflow(Workflow):
    """Operate on the stash stack of a worktree."""

    operation = "stash"

    def list(
        self,
        worktree: PathLike,
        *,
        include_files: bool = True,
        broadcaster: Broadcaster | None = None,
        cancel: threading.Event | None = None,
    ) -> OperationOutcome:
        target = WorktreeRef.of(worktree)
        events = self._events(target, broadcaster)
        events.started(action="list")
        try:
            output = self.runner.invoke(["stash", "list", STASH_LIST_FORMAT], target, cancel=cancel)
            entries = parse_stash_list(output.stdout)
            if include_files:
                entries = [self._with_files(target, entry, cancel) for entry in entries]
        except GitweaveError as exc:
            return self._failure(events, exc, {"action": "list"})

        events.progress("listed", total=len(entries))
        events.success(action="list", total=len(entries))
        return Success(
            self.operation,
            message=f"{len(entries)} stash entr{'y' if len(entries) == 1 else 'ies'}",
            details={"action": "list", "stashes": entries, "total": len(entries)},
        )

    def _with_files(
        self, target: WorktreeRef, entry: StashEntry, cancel: threading.Event | None
    ) -> StashEntry:
        try:
            shown = self.runner.invoke(
                ["stash", "show", entry.ref, "--name-only"],
                target,
                cancel=cancel,
            )
        except ExecutionError as exc:
            logger.debug("Could not list files of %s: %s", entry.ref, exc)
            return entry
        files = [line.strip() for line in shown.stdout.splitlines() if line.strip()]
        return StashEntry(
            index=entry.index,
            message=entry.message,
            timestamp=entry.timestamp,
            branch=entry.branch,
            files=tuple(files),
        )

    def apply_or_pop(
        self,
        worktree: PathLike,
        index: int,
        *,
        pop: bool = False,
        broadcaster: Broadcaster | None = None,
        cancel: threading.Event | None = None,
    ) -> OperationOutcome:
        target = WorktreeRef.of(worktree)
        action = "pop" if pop else "apply"
        events = self._events(target, broadcaster)
        try:
            validate_stash_index(index)
        except GitweaveError as exc:
            return self._failure(events, exc, {"action": action, "stash_index": index})

        stash_ref = f"stash@{{{index}}}"
        details = {"action": action, "stash_index": index, "stash_ref": stash_ref}
        events.started(**details)
        verb = "popped" if pop else "applied"
        try:
            result = self.locked.invoke(["stash", action, stash_ref], target, cancel=cancel)
            output = result.combined_output
        except ExecutionError as exc:
            output = exc.combined_output
            events.progress("output", output=output)
            if not self.conflicts.classify_failure_output(output):
                logger.error("Stash %s of %s failed: %s", action, stash_ref, exc)
                return self._failure(events, exc, details)
        except GitweaveError as exc:
            return self._failure(events, exc, details)
        else:
            events.progress("output", output=output)

        # Some git versions exit 0 even when the apply left conflicts.
        if self.conflicts.classify_failure_output(output):
            return self._conflict_outcome(
                events,
                files=self.conflicts.collect_conflict_files(target, output),
                message=f"Stash {verb} with conflicts. Please resolve the conflicts.",
                details=details,
            )

        events.success(**details)
        return Success(
            self.operation,
            message=f"Stash {verb} successfully",
            details=details,
        )

    def push(
        self,
        worktree: PathLike,
        *,
        message: str | None = None,
        files: Sequence[str] | None = None,
        broadcaster: Broadcaster | None = None,
        cancel: threading.Event | None = None,
    ) -> OperationOutcome:
        target = WorktreeRef.of(worktree)
        events = self._events(target, broadcaster)
        events.started(action="push")
        try:
            status = self.runner.invoke(["status", "--porcelain"], target, cancel=cancel)
            if not status.stdout.strip():
                events.success(action="push", stashed=False)
                return Success(
                    self.operation,
                    message="No changes to stash",
                    details={"action": "push", "stashed": False},
                )

            args = ["stash", "push", "--include-untracked"]
            if message and message.strip():
                args.extend(["-m", message.strip()])
            if files:
                args.append("--")
                args.extend(files)
            self.locked.invoke(args, target, cancel=cancel)
            branch = current_branch(self.runner, target, cancel=cancel)
        except GitweaveError as exc:
            return self._failure(events, exc, {"action": "push"})

        events.success(action="push", stashed=True, branch=branch)
        return Success(
            self.operation,
            branch=branch,
            message=(message or "").strip() or f"WIP on {branch}",
            details={"action": "push", "stashed": True},
        )

    def drop(
        self,
        worktree: PathLike,
        index: int,
        *,
        broadcaster: Broadcaster | None = None,
        cancel: threading.Event | None = None,
    ) -> OperationOutcome:
        target = WorktreeRef.of(worktree)
        events = self._events(target, broadcaster)
        try:
            validate_stash_index(index)
        except GitweaveError as exc:
            return self._failure(events, exc, {"action": "drop", "stash_index": index})

        stash_ref = f"stash@{{{index}}}"
        details = {"action": "drop", "stash_index": index, "stash_ref": stash_ref}
        events.started(**details)
        try:
            self.runner.invoke(["stash", "drop", stash_ref], target, cancel=cancel)
        except GitweaveError as exc:
            return self._failure(events, exc, details)

        events.success(**details)
        return Success(
            self.operation,
            message=f"Stash {stash_ref} dropped successfully",
            details={**details, "dropped": True},
        )
