"""Cherry-pick commits, aborting automatically on conflicts."""

from __future__ import annotations

import logging
import threading
from typing import Sequence

from ..events import Broadcaster, OperationEvents
from ..exceptions import ExecutionError, GitweaveError, ValidationError
from ..git import PathLike, current_branch
from ..types import OperationOutcome, Success, WorktreeRef, validate_commit_hash
from .base import Workflow

logger = logging.getLogger(__name__)


class CherryPickWorkflow(Workflow):
    """Apply commits onto the current branch.

    A conflicting cherry-pick is aborted at once: several commits left half
    applied are harder to recover than a clean tree.
    """

    operation = "cherry-pick"

    def verify_commits(
        self,
        worktree: PathLike,
        hashes: Sequence[str],
        *,
        events: OperationEvents | None = None,
        cancel: threading.Event | None = None,
    ) -> str | None:
        """Return the first hash that does not resolve to a commit, else None."""
        for commit in hashes:
            result = self.runner.run(
                ["rev-parse", "--verify", "--quiet", f"{commit}^{{commit}}"],
                cwd=worktree,
                check=False,
                cancel=cancel,
            )
            if not result.ok:
                if events is not None:
                    events.progress("verify-failed", hash=commit)
                return commit
        return None

    def run(
        self,
        worktree: PathLike,
        hashes: Sequence[str],
        *,
        no_commit: bool = False,
        broadcaster: Broadcaster | None = None,
        cancel: threading.Event | None = None,
    ) -> OperationOutcome:
        target = WorktreeRef.of(worktree)
        events = self._events(target, broadcaster)
        commits = list(hashes)
        try:
            if not commits:
                raise ValidationError("At least one commit hash is required")
            for commit in commits:
                validate_commit_hash(commit)
        except GitweaveError as exc:
            return self._failure(events, exc, {"commit_hashes": commits})

        events.started(commit_hashes=commits, no_commit=no_commit)
        try:
            invalid = self.verify_commits(target, commits, events=events, cancel=cancel)
            if invalid is not None:
                return self._failure(
                    events,
                    ValidationError(f"Commit {invalid} does not exist"),
                    {"commit_hashes": commits, "invalid_hash": invalid},
                )
            return self._cherry_pick(target, commits, no_commit, events, cancel)
        except GitweaveError as exc:
            return self._failure(events, exc, {"commit_hashes": commits})

    def _cherry_pick(
        self,
        target: WorktreeRef,
        commits: list[str],
        no_commit: bool,
        events: OperationEvents,
        cancel: threading.Event | None,
    ) -> OperationOutcome:
        args = ["cherry-pick"]
        if no_commit:
            args.append("--no-commit")
        args.extend(commits)

        try:
            self.runner.invoke(args, target, cancel=cancel)
        except ExecutionError as exc:
            combined = exc.combined_output
            if not self.conflicts.classify_failure_output(combined):
                return self._failure(events, exc, {"commit_hashes": commits})

            files = self.conflicts.collect_conflict_files(target, combined)
            aborted = self.abort(target)
            if not aborted:
                logger.error(
                    "Failed to abort cherry-pick after conflict; repository may be in a "
                    "dirty state: %s",
                    target,
                )
            message = (
                "Cherry-pick aborted due to conflicts; no changes were applied."
                if aborted
                else "Cherry-pick failed due to conflicts and the abort also failed; "
                "repository may be in a dirty state."
            )
            return self._conflict_outcome(
                events,
                files=files,
                message=message,
                aborted=aborted,
                details={"commit_hashes": commits, "needs_manual_attention": not aborted},
            )

        branch = current_branch(self.runner, target, cancel=cancel)
        if no_commit:
            message = (
                f"Staged changes from {len(commits)} commit(s); "
                "no commit created due to --no-commit"
            )
        else:
            message = f"Successfully cherry-picked {len(commits)} commit(s)"
        events.success(branch=branch, commit_hashes=commits)
        return Success(
            self.operation,
            branch=branch,
            message=message,
            details={"commit_hashes": commits, "cherry_picked": not no_commit},
        )

    def abort(self, worktree: PathLike) -> bool:
        """Run ``cherry-pick --abort``; False when the abort itself fails."""
        try:
            self.runner.invoke(["cherry-pick", "--abort"], worktree)
        except GitweaveError as exc:
            logger.warning("Failed to abort cherry-pick in %s: %s", worktree, exc)
            return False
        return True
