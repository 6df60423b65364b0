"""Custom exceptions for git workflow operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence


class GitweaveError(RuntimeError):
    """Base exception for git workflow failures."""

    code = "gitweave_error"

    def to_payload(self) -> dict[str, Any]:
        """Return a JSON-serialisable description of the error."""
        return {"code": self.code, "message": str(self)}


class ValidationError(GitweaveError):
    """Raised when a branch, hash or index is rejected before running git."""

    code = "validation_error"


class DetachedHeadError(GitweaveError):
    """Raised when an operation needs a branch but HEAD is detached."""

    code = "detached_head"


class NoUpstreamError(GitweaveError):
    """Raised when a branch has neither a tracking ref nor a remote branch."""

    code = "no_upstream"

    def __init__(self, message: str, *, stash_recovery_failed: bool = False) -> None:
        super().__init__(message)
        self.stash_recovery_failed = stash_recovery_failed

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["stash_recovery_failed"] = self.stash_recovery_failed
        return payload


class NoOperationInProgressError(GitweaveError):
    """Raised when continue/abort finds no merge, rebase or cherry-pick."""

    code = "no_operation_in_progress"


class UnresolvedConflictError(GitweaveError):
    """Raised when continuing while unmerged paths remain."""

    code = "unresolved_conflicts"


class AbortedError(GitweaveError):
    """Raised when a git invocation is cancelled cooperatively."""

    code = "aborted"


@dataclass(eq=False)
class ConflictError(GitweaveError):
    """Raised when git stops on overlapping changes."""

    message: str
    files: Sequence[str] = field(default_factory=tuple)
    aborted: bool | None = None

    code = "conflict"

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["conflict_files"] = list(self.files)
        if self.aborted is not None:
            payload["aborted"] = self.aborted
        return payload


@dataclass(eq=False)
class ExecutionError(GitweaveError):
    """Raised when an underlying git command exits non-zero."""

    argv: Sequence[str]
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 1

    code = "execution_error"

    def __post_init__(self) -> None:
        super().__init__(str(self))

    @property
    def combined_output(self) -> str:
        """Return stdout and stderr joined for signature scanning."""
        return f"{self.stdout}\n{self.stderr}"

    @property
    def details(self) -> str:
        return self.stderr.strip() or self.stdout.strip()

    def __str__(self) -> str:
        details = self.details
        if details:
            return details
        return f"git command failed with code {self.exit_code} ({' '.join(self.argv)})"

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["exit_code"] = self.exit_code
        payload["argv"] = list(self.argv)
        return payload
