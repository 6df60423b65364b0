"""Merge a worktree branch into a target branch."""

from __future__ import annotations

import logging
import threading

from ..events import Broadcaster, OperationEvents
from ..exceptions import ExecutionError, GitweaveError, ValidationError
from ..git import PathLike
from ..types import OperationOutcome, Success, WorktreeRef, validate_branch_name
from .base import Workflow

logger = logging.getLogger(__name__)

PROTECTED_BRANCHES = frozenset({"main", "master"})


class MergeWorkflow(Workflow):
    """Merge ``branch`` into ``target`` from the project checkout."""

    operation = "merge"

    def run(
        self,
        project: PathLike,
        branch: str,
        *,
        worktree: PathLike | None = None,
        target: str | None = None,
        squash: bool = False,
        message: str | None = None,
        delete_worktree_and_branch: bool = False,
        broadcaster: Broadcaster | None = None,
        cancel: threading.Event | None = None,
    ) -> OperationOutcome:
        repo = WorktreeRef.of(project)
        merge_to = target or self.settings.default_target_branch
        events = self._events(repo, broadcaster)
        details = {"merged_branch": branch, "target_branch": merge_to}
        try:
            validate_branch_name(branch, label="source branch")
            validate_branch_name(merge_to, label="target branch")
            if delete_worktree_and_branch and worktree is None:
                raise ValidationError("worktree path is required to delete the worktree")
        except GitweaveError as exc:
            return self._failure(events, exc, details)

        events.started(**details, squash=squash)
        try:
            missing = self._missing_ref(repo, branch, merge_to, cancel)
            if missing is not None:
                return self._failure(events, missing, details)
            return self._merge(
                repo, branch, merge_to, worktree, squash, message,
                delete_worktree_and_branch, events, cancel,
            )
        except GitweaveError as exc:
            return self._failure(events, exc, details)

    def _missing_ref(
        self,
        repo: WorktreeRef,
        branch: str,
        merge_to: str,
        cancel: threading.Event | None,
    ) -> ValidationError | None:
        for ref, label in ((branch, "Branch"), (merge_to, "Target branch")):
            result = self.runner.run(
                ["rev-parse", "--verify", "--quiet", ref], cwd=repo, check=False, cancel=cancel
            )
            if not result.ok:
                return ValidationError(f'{label} "{ref}" does not exist')
        return None

    def _merge(
        self,
        repo: WorktreeRef,
        branch: str,
        merge_to: str,
        worktree: PathLike | None,
        squash: bool,
        message: str | None,
        delete_worktree_and_branch: bool,
        events: OperationEvents,
        cancel: threading.Event | None,
    ) -> OperationOutcome:
        details = {"merged_branch": branch, "target_branch": merge_to}
        if squash:
            args = ["merge", "--squash", branch]
        else:
            args = ["merge", branch, "-m", message or f"Merge {branch} into {merge_to}"]

        try:
            self.locked.invoke(args, repo, cancel=cancel)
        except ExecutionError as exc:
            combined = exc.combined_output
            if self.conflicts.classify_failure_output(combined):
                return self._conflict_outcome(
                    events,
                    files=self.conflicts.collect_conflict_files(repo, combined),
                    message=(
                        f'Merge CONFLICT: Automatic merge of "{branch}" into "{merge_to}" '
                        "failed. Please resolve conflicts manually."
                    ),
                    details=details,
                )
            return self._failure(events, exc, details)
        events.progress("merged", squash=squash)

        if squash:
            self.locked.invoke(
                ["commit", "-m", message or f"Merge {branch} (squash)"], repo, cancel=cancel
            )
            events.progress("squash-committed")

        if delete_worktree_and_branch and worktree is not None:
            details["deleted"] = self._cleanup(repo, branch, WorktreeRef.of(worktree))

        events.success(**details)
        return Success(
            self.operation,
            branch=merge_to,
            message=f"Merged {branch} into {merge_to}",
            details=details,
        )

    def _cleanup(self, repo: WorktreeRef, branch: str, worktree: WorktreeRef) -> dict[str, bool]:
        worktree_deleted = False
        branch_deleted = False
        try:
            self.runner.invoke(["worktree", "remove", "--force", str(worktree.path)], repo)
            worktree_deleted = True
        except ExecutionError:
            try:
                self.runner.invoke(["worktree", "prune"], repo)
                worktree_deleted = True
            except ExecutionError as exc:
                logger.warning("Failed to remove worktree %s: %s", worktree, exc)

        if branch not in PROTECTED_BRANCHES:
            try:
                self.runner.invoke(["branch", "-D", branch], repo)
                branch_deleted = True
            except ExecutionError as exc:
                logger.warning("Failed to delete branch %s: %s", branch, exc)
        return {"worktree_deleted": worktree_deleted, "branch_deleted": branch_deleted}
