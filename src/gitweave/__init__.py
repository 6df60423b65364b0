"""
Git workflow orchestration for automated coding agents.

This package drives pull, rebase, cherry-pick, merge, stash and conflict
resolution through the installed ``git`` executable and reports each call as
a structured outcome.
"""

from .config import GitweaveSettings, get_settings
from .detection import ConflictDetector, OperationDetector
from .events import Broadcaster, EventBus, NullBroadcaster, OperationEvents, WorkflowEvent
from .git import CommandRunner, LockRetryWrapper, cancel_after
from .history import HistoryParser, HistoryResult, parse_log_output
from .types import (
    CommandResult,
    CommitRecord,
    Conflict,
    Failure,
    InProgressOperation,
    OperationOutcome,
    StashEntry,
    Success,
    UpstreamStatus,
    WorktreeRef,
)
from .exceptions import (
    GitweaveError,
    AbortedError,
    ConflictError,
    DetachedHeadError,
    ExecutionError,
    NoOperationInProgressError,
    NoUpstreamError,
    UnresolvedConflictError,
    ValidationError,
)
from .workflows import (
    CherryPickWorkflow,
    ContinueAbortWorkflow,
    MergeWorkflow,
    PullWorkflow,
    RebaseWorkflow,
    StashWorkflow,
)

__all__ = [
    "GitweaveSettings",
    "get_settings",
    "CommandRunner",
    "LockRetryWrapper",
    "cancel_after",
    "ConflictDetector",
    "OperationDetector",
    "Broadcaster",
    "EventBus",
    "NullBroadcaster",
    "OperationEvents",
    "WorkflowEvent",
    "HistoryParser",
    "HistoryResult",
    "parse_log_output",
    "CommandResult",
    "CommitRecord",
    "StashEntry",
    "WorktreeRef",
    "InProgressOperation",
    "UpstreamStatus",
    "OperationOutcome",
    "Success",
    "Conflict",
    "Failure",
    "GitweaveError",
    "AbortedError",
    "ConflictError",
    "DetachedHeadError",
    "ExecutionError",
    "NoOperationInProgressError",
    "NoUpstreamError",
    "UnresolvedConflictError",
    "ValidationError",
    "PullWorkflow",
    "RebaseWorkflow",
    "CherryPickWorkflow",
    "MergeWorkflow",
    "StashWorkflow",
    "ContinueAbortWorkflow",
]
