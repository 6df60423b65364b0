"""Multi-step git workflows returning :data:`~gitweave.types.OperationOutcome`."""

from .base import Workflow
from .cherry_pick import CherryPickWorkflow
from .merge import MergeWorkflow
from .pull import PullWorkflow
from .rebase import RebaseWorkflow
from .resolution import ContinueAbortWorkflow
from .stash import StashWorkflow

__all__ = [
    "Workflow",
    "PullWorkflow",
    "RebaseWorkflow",
    "CherryPickWorkflow",
    "MergeWorkflow",
    "StashWorkflow",
    "ContinueAbortWorkflow",
]
