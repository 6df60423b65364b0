"""Pull with optional stash/reapply of local changes."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any

from ..events import Broadcaster, OperationEvents
from ..exceptions import DetachedHeadError, ExecutionError, GitweaveError, NoUpstreamError
from ..git import PathLike, current_branch
from ..types import (
    OperationOutcome,
    Success,
    UpstreamStatus,
    WorktreeRef,
    validate_branch_name,
)
from .base import Workflow

logger = logging.getLogger(__name__)

STASH_MESSAGE_PREFIX = "gitweave-pull-stash"
MANUAL_RECOVERY_HINT = " Local changes remain stashed and need manual recovery (run: git stash pop)."


def parse_changed_files(status_output: str) -> list[str]:
    """Return the paths listed by ``git status --porcelain``."""
    files: list[str] = []
    for line in status_output.splitlines():
        if len(line) > 3 and line.strip():
            files.append(line[3:].strip())
    return files


@dataclass(slots=True)
class _PullState:
    remote: str
    branch: str | None = None
    upstream: UpstreamStatus | None = None
    local_changed_files: list[str] = field(default_factory=list)
    stashed: bool = False
    stash_pending: bool = False

    def details(self, **extra: Any) -> dict[str, Any]:
        data: dict[str, Any] = {
            "remote": self.remote,
            "has_local_changes": bool(self.local_changed_files),
            "stashed": self.stashed,
        }
        if self.upstream is not None:
            data["upstream"] = self.upstream.value
        data.update(extra)
        return data


class PullWorkflow(Workflow):
    """Fetch and pull the current branch of a worktree.

    States: branch resolved, fetched, local changes reported or stashed,
    upstream verified, pulled, and optionally stash reapplied. A stash is
    only created when the caller opts in with ``stash_if_needed``.
    """

    operation = "pull"

    def run(
        self,
        worktree: PathLike,
        remote: str | None = None,
        *,
        stash_if_needed: bool = False,
        broadcaster: Broadcaster | None = None,
        cancel: threading.Event | None = None,
    ) -> OperationOutcome:
        target = WorktreeRef.of(worktree)
        state = _PullState(remote=remote or self.settings.default_remote)
        events = self._events(target, broadcaster)
        try:
            validate_branch_name(state.remote, label="remote")
        except GitweaveError as exc:
            return self._failure(events, exc, state.details())

        events.started(remote=state.remote, stash_if_needed=stash_if_needed)
        try:
            return self._pull(target, state, stash_if_needed, events, cancel)
        except GitweaveError as exc:
            logger.warning("Pull in %s failed unexpectedly: %s", target, exc)
            details = state.details(branch=state.branch)
            if state.stash_pending:
                recovery_failed = self._release_stash(target, state)
                details["stash_recovery_failed"] = recovery_failed
                if recovery_failed:
                    details["warning"] = MANUAL_RECOVERY_HINT.strip()
            return self._failure(events, exc, details)

    # ------------------------------------------------------------------
    # State machine

    def _pull(
        self,
        target: WorktreeRef,
        state: _PullState,
        stash_if_needed: bool,
        events: OperationEvents,
        cancel: threading.Event | None,
    ) -> OperationOutcome:
        state.branch = current_branch(self.runner, target, cancel=cancel)
        if state.branch == "HEAD":
            return self._failure(
                events,
                DetachedHeadError(
                    "Cannot pull in detached HEAD state. Please checkout a branch first."
                ),
                state.details(),
            )
        events.progress("branch-resolved", branch=state.branch)

        try:
            self.runner.invoke(["fetch", state.remote], target, cancel=cancel)
        except ExecutionError as exc:
            logger.info("Fetch from %s failed in %s: %s", state.remote, target, exc)
            return self._failure(events, exc, state.details(branch=state.branch, step="fetch"))
        events.progress("fetched", remote=state.remote)

        status = self.runner.invoke(["status", "--porcelain"], target, cancel=cancel)
        state.local_changed_files = parse_changed_files(status.stdout)

        if state.local_changed_files and not stash_if_needed:
            events.success(branch=state.branch, pulled=False, has_local_changes=True)
            return Success(
                self.operation,
                branch=state.branch,
                message=(
                    "Local changes detected. Use stash_if_needed to automatically "
                    "stash and reapply changes."
                ),
                details=state.details(
                    pulled=False, local_changed_files=list(state.local_changed_files)
                ),
            )

        if state.local_changed_files:
            stash_message = f"{STASH_MESSAGE_PREFIX}: Pre-pull stash on {state.branch}"
            try:
                self.locked.invoke(
                    ["stash", "push", "--include-untracked", "-m", stash_message],
                    target,
                    cancel=cancel,
                )
            except ExecutionError as exc:
                return self._failure(events, exc, state.details(branch=state.branch, step="stash"))
            state.stashed = True
            state.stash_pending = True
            events.progress("stashed", files=list(state.local_changed_files))

        state.upstream = self.resolve_upstream(target, state.branch, state.remote, cancel=cancel)
        if state.upstream is UpstreamStatus.NONE:
            recovery_failed = self._release_stash(target, state)
            message = (
                f"Branch '{state.branch}' has no upstream branch on remote '{state.remote}'. "
                f"Push it first or set upstream with: "
                f"git branch --set-upstream-to={state.remote}/{state.branch}"
            )
            if recovery_failed:
                message += MANUAL_RECOVERY_HINT
            return self._failure(
                events,
                NoUpstreamError(message, stash_recovery_failed=recovery_failed),
                state.details(branch=state.branch, stash_recovery_failed=recovery_failed),
            )
        events.progress("upstream-verified", upstream=state.upstream.value)

        args = ["pull"]
        if state.upstream is UpstreamStatus.REMOTE:
            args.extend([state.remote, state.branch])
        try:
            pulled = self.runner.invoke(args, target, cancel=cancel)
        except ExecutionError as exc:
            return self._pull_failed(target, state, exc, events)

        output = pulled.combined_output
        already_up_to_date = "Already up to date" in output or "Already up-to-date" in output
        events.progress("pulled", already_up_to_date=already_up_to_date)

        if not state.stashed:
            events.success(branch=state.branch, pulled=not already_up_to_date)
            return Success(
                self.operation,
                branch=state.branch,
                message="Already up to date" if already_up_to_date else "Pulled latest changes",
                details=state.details(pulled=not already_up_to_date, stash_restored=False),
            )
        return self._reapply_stash(target, state, not already_up_to_date, events, cancel)

    def _pull_failed(
        self,
        target: WorktreeRef,
        state: _PullState,
        exc: ExecutionError,
        events: OperationEvents,
    ) -> OperationOutcome:
        combined = exc.combined_output
        if self.conflicts.classify_failure_output(combined):
            state.stash_pending = False
            files = self.conflicts.collect_conflict_files(target, combined)
            message = "Pull resulted in merge conflicts."
            if state.stashed:
                message += " Your local changes are still stashed."
            return self._conflict_outcome(
                events,
                files=files,
                message=message,
                source="pull",
                branch=state.branch,
                details=state.details(pulled=True, stash_restored=False),
            )

        recovery_failed = self._release_stash(target, state)
        details = state.details(branch=state.branch, stash_recovery_failed=recovery_failed)
        if recovery_failed:
            details["warning"] = MANUAL_RECOVERY_HINT.strip()
        if "no tracking information" in combined:
            message = (
                f"Branch '{state.branch}' has no upstream branch. Push it first or set "
                f"upstream with: git branch --set-upstream-to={state.remote}/{state.branch}"
            )
            if recovery_failed:
                message += MANUAL_RECOVERY_HINT
            return self._failure(
                events, NoUpstreamError(message, stash_recovery_failed=recovery_failed), details
            )
        return self._failure(events, exc, details)

    def _reapply_stash(
        self,
        target: WorktreeRef,
        state: _PullState,
        pulled: bool,
        events: OperationEvents,
        cancel: threading.Event | None,
    ) -> OperationOutcome:
        conflict_message = (
            "Pull succeeded but reapplying your stashed changes resulted in merge conflicts."
        )
        try:
            popped = self.locked.invoke(["stash", "pop"], target, cancel=cancel)
        except ExecutionError as exc:
            state.stash_pending = False
            combined = exc.combined_output
            if self.conflicts.classify_failure_output(combined):
                return self._conflict_outcome(
                    events,
                    files=self.conflicts.collect_conflict_files(target, combined),
                    message=conflict_message,
                    source="stash",
                    branch=state.branch,
                    details=state.details(pulled=pulled, stash_restored=True),
                )
            logger.warning("Failed to reapply stash after pull in %s: %s", target, exc)
            events.success(branch=state.branch, pulled=pulled, stash_restored=False)
            return Success(
                self.operation,
                branch=state.branch,
                message=(
                    "Pull succeeded but failed to reapply stashed changes. "
                    "Your changes are still in the stash list."
                ),
                details=state.details(
                    pulled=pulled,
                    stash_restored=False,
                    warning="Stash is still present and must be recovered manually.",
                ),
            )

        state.stash_pending = False
        if self.conflicts.classify_failure_output(popped.combined_output):
            return self._conflict_outcome(
                events,
                files=self.conflicts.collect_conflict_files(target, popped.combined_output),
                message=conflict_message,
                source="stash",
                branch=state.branch,
                details=state.details(pulled=pulled, stash_restored=True),
            )

        events.progress("stash-reapplied")
        events.success(branch=state.branch, pulled=pulled, stash_restored=True)
        return Success(
            self.operation,
            branch=state.branch,
            message="Pulled latest changes and restored your stashed changes.",
            details=state.details(pulled=pulled, stash_restored=True),
        )

    # ------------------------------------------------------------------
    # Helpers

    def resolve_upstream(
        self,
        worktree: PathLike,
        branch: str,
        remote: str,
        cancel: threading.Event | None = None,
    ) -> UpstreamStatus:
        tracking = self.runner.run(
            ["rev-parse", "--abbrev-ref", f"{branch}@{{upstream}}"],
            cwd=worktree,
            check=False,
            cancel=cancel,
        )
        if tracking.ok and tracking.stdout.strip():
            return UpstreamStatus.TRACKING
        remote_ref = self.runner.run(
            ["rev-parse", "--verify", "--quiet", f"{remote}/{branch}"],
            cwd=worktree,
            check=False,
            cancel=cancel,
        )
        if remote_ref.ok:
            return UpstreamStatus.REMOTE
        return UpstreamStatus.NONE

    def _release_stash(self, target: WorktreeRef, state: _PullState) -> bool:
        """Pop a still-pending stash after a failure; True means recovery failed."""
        if not state.stash_pending:
            return False
        state.stash_pending = False
        return not self._recover_stash(target)

    def _recover_stash(self, target: WorktreeRef) -> bool:
        try:
            self.locked.invoke(["stash", "pop"], target)
        except GitweaveError as exc:
            logger.error("Failed to reapply stash during error recovery in %s: %s", target, exc)
            return False
        return True
