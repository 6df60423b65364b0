"""Continue or abort a stopped merge, rebase or cherry-pick."""

from __future__ import annotations

import logging
import threading

from ..events import Broadcaster
from ..exceptions import (
    ExecutionError,
    GitweaveError,
    NoOperationInProgressError,
    UnresolvedConflictError,
)
from ..git import PathLike
from ..types import InProgressOperation, OperationOutcome, Success, WorktreeRef
from .base import Workflow

logger = logging.getLogger(__name__)

CONTINUE_COMMANDS: dict[InProgressOperation, list[str]] = {
    InProgressOperation.MERGE: ["commit", "--no-edit"],
    InProgressOperation.REBASE: ["rebase", "--continue"],
    InProgressOperation.CHERRY_PICK: ["cherry-pick", "--continue"],
}

ABORT_COMMANDS: dict[InProgressOperation, list[str]] = {
    InProgressOperation.MERGE: ["merge", "--abort"],
    InProgressOperation.REBASE: ["rebase", "--abort"],
    InProgressOperation.CHERRY_PICK: ["cherry-pick", "--abort"],
}

# Keeps continuation commands from opening an editor.
NO_EDITOR_ENV = {"GIT_EDITOR": "true"}

NO_OPERATION_MESSAGE = "No merge, rebase, or cherry-pick in progress"


class ContinueAbortWorkflow(Workflow):
    """Finish or roll back whatever multi-step operation is stopped."""

    operation = "continue"

    def detect(self, worktree: PathLike) -> InProgressOperation:
        return self.operations.detect(WorktreeRef.of(worktree))

    def continue_operation(
        self,
        worktree: PathLike,
        *,
        broadcaster: Broadcaster | None = None,
        cancel: threading.Event | None = None,
    ) -> OperationOutcome:
        target = WorktreeRef.of(worktree)
        events = self._events(target, broadcaster, operation="continue")
        in_progress = self.operations.detect(target)
        if in_progress is InProgressOperation.NONE:
            return self._failure(events, NoOperationInProgressError(NO_OPERATION_MESSAGE))

        details = {"in_progress": in_progress.value}
        events.started(**details)
        if self.conflicts.has_unmerged_paths(target):
            return self._failure(
                events,
                UnresolvedConflictError(
                    "There are still unresolved conflicts. Please resolve all conflicts "
                    "before continuing."
                ),
                {**details, "has_unresolved_conflicts": True},
            )

        try:
            self.locked.invoke(["add", "-A"], target, cancel=cancel)
            events.progress("staged")
            self.locked.invoke(
                CONTINUE_COMMANDS[in_progress], target, env=NO_EDITOR_ENV, cancel=cancel
            )
        except ExecutionError as exc:
            combined = exc.combined_output
            if self.conflicts.classify_failure_output(combined):
                # Rebase continuation can stop again on the next commit.
                return self._conflict_outcome(
                    events,
                    files=self.conflicts.collect_conflict_files(target, combined),
                    message=f"{in_progress.value.capitalize()} stopped on new conflicts",
                    aborted=False,
                    details=details,
                )
            return self._failure(events, exc, details)
        except GitweaveError as exc:
            return self._failure(events, exc, details)

        events.success(**details)
        return Success(
            "continue",
            message=f"{in_progress.value.capitalize()} continued successfully",
            details=details,
        )

    def abort_operation(
        self,
        worktree: PathLike,
        *,
        broadcaster: Broadcaster | None = None,
        cancel: threading.Event | None = None,
    ) -> OperationOutcome:
        target = WorktreeRef.of(worktree)
        events = self._events(target, broadcaster, operation="abort")
        in_progress = self.operations.detect(target)
        if in_progress is InProgressOperation.NONE:
            return self._failure(events, NoOperationInProgressError(NO_OPERATION_MESSAGE))

        details = {"in_progress": in_progress.value}
        events.started(**details)
        try:
            self.locked.invoke(ABORT_COMMANDS[in_progress], target, cancel=cancel)
        except GitweaveError as exc:
            logger.error("Failed to abort %s in %s: %s", in_progress.value, target, exc)
            return self._failure(events, exc, details)

        events.success(**details)
        return Success(
            "abort",
            message=f"{in_progress.value.capitalize()} aborted successfully",
            details=details,
        )

