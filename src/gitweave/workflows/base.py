"""Shared wiring for git workflows."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

from ..config import GitweaveSettings, get_settings
from ..detection import ConflictDetector, OperationDetector
from ..events import Broadcaster, NullBroadcaster, OperationEvents
from ..exceptions import ConflictError, GitweaveError
from ..git import CommandRunner, LockRetryWrapper
from ..types import Conflict, Failure, OperationOutcome, WorktreeRef

logger = logging.getLogger(__name__)


class Workflow:
    """Base class holding the runner and detectors a workflow consults.

    Workflow instances carry no per-call state; a broadcaster may be set at
    construction or passed to each call.
    """

    operation = "workflow"

    def __init__(
        self,
        runner: CommandRunner | None = None,
        *,
        settings: GitweaveSettings | None = None,
        broadcaster: Broadcaster | None = None,
    ) -> None:
        self.settings = settings or (runner.settings if runner else get_settings())
        self.runner = runner or CommandRunner(self.settings)
        self.locked = LockRetryWrapper(self.runner)
        self.conflicts = ConflictDetector(self.runner)
        self.operations = OperationDetector(self.runner)
        self.broadcaster: Broadcaster = broadcaster or NullBroadcaster()

    def _events(
        self,
        worktree: WorktreeRef,
        broadcaster: Broadcaster | None = None,
        operation: str | None = None,
    ) -> OperationEvents:
        return OperationEvents(
            broadcaster or self.broadcaster, operation or self.operation, worktree
        )

    def _conflict_outcome(
        self,
        events: OperationEvents,
        *,
        files: Sequence[str],
        message: str,
        aborted: bool | None = None,
        source: str | None = None,
        branch: str | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> OperationOutcome:
        """Build a Conflict outcome and emit the matching terminal event.

        When git reported a conflict but no path can be listed, the outcome
        degrades to a Failure carrying :class:`ConflictError`.
        """
        data = dict(details or {})
        if branch is not None:
            data.setdefault("branch", branch)
        if not files:
            logger.warning(
                "%s reported conflicts but no conflicted files were found", events.operation
            )
            error = ConflictError(
                f"{message} (conflicted files could not be listed)", files=(), aborted=aborted
            )
            events.failure(error=str(error), has_conflicts=True, aborted=aborted)
            return Failure(events.operation, error, details={**data, "has_conflicts": True})

        # A rolled-back operation reports the abort phase; conflicts left in the tree report conflict.
        terminal = events.abort if aborted else events.conflict
        terminal(conflict_files=list(files), aborted=aborted, source=source, **data)
        return Conflict(
            events.operation,
            tuple(files),
            message=message,
            aborted=aborted,
            source=source,
            details=data,
        )

    def _failure(
        self,
        events: OperationEvents,
        error: GitweaveError,
        details: Mapping[str, Any] | None = None,
    ) -> Failure:
        events.failure(error=str(error), error_code=error.code, **dict(details or {}))
        return Failure(events.operation, error, details=dict(details or {}))
