"""Typed structures shared by git workflows."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar, Mapping, Sequence, Union

from .exceptions import GitweaveError, ValidationError

MAX_BRANCH_NAME_LENGTH = 250

_BRANCH_PATTERN = re.compile(r"^[A-Za-z0-9._/-]+$")
_COMMIT_PATTERN = re.compile(r"^[A-Fa-f0-9]+$")


def is_valid_branch_name(name: str) -> bool:
    """Return True when ``name`` is safe to pass to git as a ref."""
    if not isinstance(name, str) or not name:
        return False
    if "\0" in name or ".." in name:
        return False
    if name.startswith("-"):
        return False
    if len(name) >= MAX_BRANCH_NAME_LENGTH:
        return False
    return _BRANCH_PATTERN.fullmatch(name) is not None


def is_valid_commit_hash(value: str) -> bool:
    """Return True when ``value`` looks like a (possibly abbreviated) commit hash."""
    if not isinstance(value, str):
        return False
    return _COMMIT_PATTERN.fullmatch(value) is not None


def validate_branch_name(name: str, *, label: str = "branch") -> str:
    """Return ``name`` unchanged or raise :class:`ValidationError`."""
    if not is_valid_branch_name(name):
        raise ValidationError(f"Invalid {label} name: {name!r}")
    return name


def validate_commit_hash(value: str) -> str:
    """Return ``value`` unchanged or raise :class:`ValidationError`."""
    if not is_valid_commit_hash(value):
        raise ValidationError(f"Invalid commit hash: {value!r}")
    return value


def validate_stash_index(index: object) -> int:
    """Ensure a stash index is a non-negative integer."""
    if isinstance(index, bool) or not isinstance(index, int) or index < 0:
        raise ValidationError(f"Stash index must be a non-negative integer, got {index!r}")
    return index


@dataclass(frozen=True, slots=True)
class WorktreeRef:
    """Absolute path to a worktree; its git dir is resolved per call."""

    path: Path

    @classmethod
    def of(cls, path: str | Path | "WorktreeRef") -> "WorktreeRef":
        if isinstance(path, WorktreeRef):
            return path
        return cls(path=Path(path).expanduser().resolve())

    def __str__(self) -> str:
        return str(self.path)


class InProgressOperation(str, Enum):
    """Multi-step operation currently stopped in a worktree."""

    MERGE = "merge"
    REBASE = "rebase"
    CHERRY_PICK = "cherry-pick"
    NONE = "none"


class UpstreamStatus(str, Enum):
    """How a branch can be pulled."""

    TRACKING = "tracking"
    REMOTE = "remote"
    NONE = "none"


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Captured output of a git invocation."""

    argv: Sequence[str]
    stdout: str
    stderr: str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def combined_output(self) -> str:
        return f"{self.stdout}\n{self.stderr}"


@dataclass(frozen=True, slots=True)
class StashEntry:
    """One entry of the stash stack."""

    index: int
    message: str
    timestamp: str
    branch: str = ""
    files: Sequence[str] = ()

    @property
    def ref(self) -> str:
        return f"stash@{{{self.index}}}"

    def to_dict(self) -> dict[str, object]:
        return {
            "index": self.index,
            "ref": self.ref,
            "message": self.message,
            "branch": self.branch,
            "timestamp": self.timestamp,
            "files": list(self.files),
        }


@dataclass(slots=True)
class CommitRecord:
    """Commit metadata plus the files it touched."""

    hash: str
    short_hash: str
    author: str
    author_email: str
    date: str
    subject: str
    body: str = ""
    files: list[str] = field(default_factory=list)

    def add_files(self, paths: Sequence[str]) -> None:
        """Merge ``paths`` into the file list preserving first-seen order."""
        seen = set(self.files)
        for path in paths:
            if path not in seen:
                seen.add(path)
                self.files.append(path)

    def to_dict(self) -> dict[str, object]:
        return {
            "hash": self.hash,
            "short_hash": self.short_hash,
            "author": self.author,
            "author_email": self.author_email,
            "date": self.date,
            "subject": self.subject,
            "body": self.body,
            "files": list(self.files),
        }


# ----------------------------------------------------------------------
# Operation outcomes


def _jsonable(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


@dataclass(frozen=True, slots=True)
class Success:
    """Operation completed; ``details`` carries workflow-specific fields."""

    operation: str
    branch: str | None = None
    message: str = ""
    details: Mapping[str, Any] = field(default_factory=dict)

    kind: ClassVar[str] = "success"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "operation": self.operation,
            "success": True,
            "has_conflicts": False,
            "branch": self.branch,
            "message": self.message,
        }
        data.update(_jsonable(self.details))
        return data


@dataclass(frozen=True, slots=True)
class Conflict:
    """Operation stopped on conflicts; ``files`` is never empty."""

    operation: str
    files: tuple[str, ...]
    message: str = ""
    aborted: bool | None = None
    source: str | None = None
    details: Mapping[str, Any] = field(default_factory=dict)

    kind: ClassVar[str] = "conflict"

    def __post_init__(self) -> None:
        if not self.files:
            raise ValueError("Conflict outcome requires at least one conflicted file")
        object.__setattr__(self, "files", tuple(self.files))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "operation": self.operation,
            "success": False,
            "has_conflicts": True,
            "conflict_files": list(self.files),
            "message": self.message,
        }
        if self.aborted is not None:
            data["aborted"] = self.aborted
        if self.source is not None:
            data["conflict_source"] = self.source
        data.update(_jsonable(self.details))
        return data


@dataclass(frozen=True, slots=True)
class Failure:
    """Operation failed; the error is returned rather than raised."""

    operation: str
    error: GitweaveError
    details: Mapping[str, Any] = field(default_factory=dict)

    kind: ClassVar[str] = "failure"

    @property
    def message(self) -> str:
        return str(self.error)

    def to_dict(self) -> dict[str, Any]:
        payload = dict(self.error.to_payload())
        data: dict[str, Any] = {
            "operation": self.operation,
            "success": False,
            "has_conflicts": False,
            "error": payload.pop("message"),
            "error_code": payload.pop("code"),
        }
        data.update(_jsonable(payload))
        data.update(_jsonable(self.details))
        return data


OperationOutcome = Union[Success, Conflict, Failure]
