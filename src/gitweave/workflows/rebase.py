"""Rebase the current branch onto another ref."""

from __future__ import annotations

import logging
import threading

from ..events import Broadcaster
from ..exceptions import ExecutionError, GitweaveError
from ..git import PathLike, current_branch
from ..types import OperationOutcome, Success, WorktreeRef, validate_branch_name
from .base import Workflow

logger = logging.getLogger(__name__)

REBASE_CONFLICT_MARKERS = ("Resolve all conflicts", "fix conflicts")


class RebaseWorkflow(Workflow):
    """Run ``git rebase`` and leave conflicts in place for the caller."""

    operation = "rebase"

    def run(
        self,
        worktree: PathLike,
        onto: str,
        *,
        broadcaster: Broadcaster | None = None,
        cancel: threading.Event | None = None,
    ) -> OperationOutcome:
        target = WorktreeRef.of(worktree)
        events = self._events(target, broadcaster)
        try:
            validate_branch_name(onto, label="onto branch")
        except GitweaveError as exc:
            return self._failure(events, exc, {"onto": onto})

        events.started(onto=onto)
        try:
            branch = current_branch(self.runner, target, cancel=cancel)
        except GitweaveError as exc:
            return self._failure(events, exc, {"onto": onto})

        try:
            # "--" keeps git from reading the ref as an option.
            self.runner.invoke(["rebase", "--", onto], target, env={"LC_ALL": "C"}, cancel=cancel)
        except ExecutionError as exc:
            if self._is_conflict(target, exc):
                files = self.conflicts.collect_conflict_files(target, exc.combined_output)
                return self._conflict_outcome(
                    events,
                    files=files,
                    message=(
                        f"Rebase of '{branch}' onto '{onto}' stopped on conflicts. "
                        "Resolve them, then continue or abort the rebase."
                    ),
                    aborted=False,
                    branch=branch,
                    details={"onto": onto},
                )
            logger.info("Rebase of %s onto %s failed: %s", branch, onto, exc)
            return self._failure(events, exc, {"branch": branch, "onto": onto})
        except GitweaveError as exc:
            return self._failure(events, exc, {"branch": branch, "onto": onto})

        events.success(branch=branch, onto=onto)
        return Success(
            self.operation,
            branch=branch,
            message=f"Successfully rebased {branch} onto {onto}",
            details={"onto": onto},
        )

    def _is_conflict(self, target: WorktreeRef, exc: ExecutionError) -> bool:
        """Text signature, a rebase state dir or unmerged paths all mean conflict."""
        combined = exc.combined_output
        if self.conflicts.classify_failure_output(combined):
            return True
        if any(marker in combined for marker in REBASE_CONFLICT_MARKERS):
            return True
        if self.operations.rebase_in_progress(target):
            return True
        return self.conflicts.has_unmerged_paths(target)
