from __future__ import annotations

import json
import logging
import pathlib
import threading
from contextlib import nullcontext
from typing import Callable, ContextManager, List, Optional

import typer

from gitweave.git import cancel_after
from gitweave.history import HistoryParser
from gitweave.types import Conflict, Failure, OperationOutcome, WorktreeRef
from gitweave.workflows import (
    CherryPickWorkflow,
    ContinueAbortWorkflow,
    MergeWorkflow,
    PullWorkflow,
    RebaseWorkflow,
    StashWorkflow,
)

app = typer.Typer(no_args_is_help=True, help="Run git workflows and print JSON outcomes")
stash_app = typer.Typer(help="Stash stack commands")

EXIT_FAILURE = 1
EXIT_CONFLICT = 2


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log git invocations."),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Cancel the running git command after this many seconds."
    ),
) -> None:
    """Git workflow automation for agent worktrees."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {"timeout": timeout}


def _deadline(ctx: typer.Context) -> ContextManager[Optional[threading.Event]]:
    timeout = (ctx.obj or {}).get("timeout")
    if timeout is None:
        return nullcontext(None)
    return cancel_after(timeout)


def _emit(outcome: OperationOutcome) -> None:
    typer.echo(json.dumps(outcome.to_dict(), ensure_ascii=False, indent=2))
    if isinstance(outcome, Conflict):
        raise typer.Exit(EXIT_CONFLICT)
    if isinstance(outcome, Failure):
        raise typer.Exit(EXIT_FAILURE)


def _execute(ctx: typer.Context, call: Callable[[Optional[threading.Event]], OperationOutcome]) -> None:
    with _deadline(ctx) as cancel:
        outcome = call(cancel)
    _emit(outcome)


@app.command("pull")
def pull(
    ctx: typer.Context,
    worktree: pathlib.Path = typer.Argument(pathlib.Path("."), help="Worktree to pull in."),
    remote: Optional[str] = typer.Option(None, "--remote", help="Remote to fetch from."),
    stash_if_needed: bool = typer.Option(
        False, "--stash-if-needed", help="Stash local changes and reapply them after pulling."
    ),
) -> None:
    """Fetch and pull the current branch."""
    workflow = PullWorkflow()
    _execute(
        ctx,
        lambda cancel: workflow.run(
            worktree, remote, stash_if_needed=stash_if_needed, cancel=cancel
        ),
    )


@app.command("rebase")
def rebase(
    ctx: typer.Context,
    onto: str = typer.Argument(..., help="Branch to rebase onto."),
    worktree: pathlib.Path = typer.Option(pathlib.Path("."), "--worktree", "-C"),
) -> None:
    """Rebase the current branch; conflicts are left for continue/abort."""
    workflow = RebaseWorkflow()
    _execute(ctx, lambda cancel: workflow.run(worktree, onto, cancel=cancel))


@app.command("cherry-pick")
def cherry_pick(
    ctx: typer.Context,
    hashes: List[str] = typer.Argument(..., help="Commits to apply, in order."),
    worktree: pathlib.Path = typer.Option(pathlib.Path("."), "--worktree", "-C"),
    no_commit: bool = typer.Option(False, "--no-commit", help="Stage changes without committing."),
) -> None:
    """Cherry-pick commits, aborting automatically on conflicts."""
    workflow = CherryPickWorkflow()
    _execute(ctx, lambda cancel: workflow.run(worktree, hashes, no_commit=no_commit, cancel=cancel))


@app.command("merge")
def merge(
    ctx: typer.Context,
    branch: str = typer.Argument(..., help="Branch to merge."),
    project: pathlib.Path = typer.Option(
        pathlib.Path("."), "--project", "-C", help="Checkout that holds the target branch."
    ),
    target: Optional[str] = typer.Option(None, "--target", help="Branch to merge into."),
    squash: bool = typer.Option(False, "--squash"),
    message: Optional[str] = typer.Option(None, "--message", "-m"),
    worktree: Optional[pathlib.Path] = typer.Option(
        None, "--worktree", help="Worktree of the merged branch."
    ),
    delete_worktree_and_branch: bool = typer.Option(
        False,
        "--delete-worktree-and-branch",
        help="Remove the worktree and delete the branch after a successful merge.",
    ),
) -> None:
    """Merge a branch into the target branch."""
    workflow = MergeWorkflow()
    _execute(
        ctx,
        lambda cancel: workflow.run(
            project,
            branch,
            worktree=worktree,
            target=target,
            squash=squash,
            message=message,
            delete_worktree_and_branch=delete_worktree_and_branch,
            cancel=cancel,
        ),
    )


@stash_app.command("list")
def stash_list(
    ctx: typer.Context,
    worktree: pathlib.Path = typer.Argument(pathlib.Path(".")),
    no_files: bool = typer.Option(False, "--no-files", help="Skip per-entry file lists."),
) -> None:
    """List stash entries."""
    workflow = StashWorkflow()
    _execute(ctx, lambda cancel: workflow.list(worktree, include_files=not no_files, cancel=cancel))


@stash_app.command("apply")
def stash_apply(
    ctx: typer.Context,
    index: int = typer.Argument(0, help="Stash index (stash@{N})."),
    worktree: pathlib.Path = typer.Option(pathlib.Path("."), "--worktree", "-C"),
    pop: bool = typer.Option(False, "--pop", help="Drop the entry once applied."),
) -> None:
    """Apply (or pop) a stash entry."""
    workflow = StashWorkflow()
    _execute(ctx, lambda cancel: workflow.apply_or_pop(worktree, index, pop=pop, cancel=cancel))


@stash_app.command("push")
def stash_push(
    ctx: typer.Context,
    worktree: pathlib.Path = typer.Argument(pathlib.Path(".")),
    message: Optional[str] = typer.Option(None, "--message", "-m"),
    files: Optional[List[str]] = typer.Option(None, "--file", help="Limit the stash to these paths."),
) -> None:
    """Stash local changes, including untracked files."""
    workflow = StashWorkflow()
    _execute(ctx, lambda cancel: workflow.push(worktree, message=message, files=files, cancel=cancel))


@stash_app.command("drop")
def stash_drop(
    ctx: typer.Context,
    index: int = typer.Argument(..., help="Stash index (stash@{N})."),
    worktree: pathlib.Path = typer.Option(pathlib.Path("."), "--worktree", "-C"),
) -> None:
    """Drop a stash entry."""
    workflow = StashWorkflow()
    _execute(ctx, lambda cancel: workflow.drop(worktree, index, cancel=cancel))


@app.command("continue")
def continue_operation(
    ctx: typer.Context,
    worktree: pathlib.Path = typer.Argument(pathlib.Path(".")),
) -> None:
    """Stage everything and continue the stopped merge, rebase or cherry-pick."""
    workflow = ContinueAbortWorkflow()
    _execute(ctx, lambda cancel: workflow.continue_operation(worktree, cancel=cancel))


@app.command("abort")
def abort_operation(
    ctx: typer.Context,
    worktree: pathlib.Path = typer.Argument(pathlib.Path(".")),
) -> None:
    """Abort the stopped merge, rebase or cherry-pick."""
    workflow = ContinueAbortWorkflow()
    _execute(ctx, lambda cancel: workflow.abort_operation(worktree, cancel=cancel))


@app.command("log")
def log(
    ctx: typer.Context,
    worktree: pathlib.Path = typer.Argument(pathlib.Path(".")),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", min=1),
    ref: Optional[str] = typer.Option(None, "--ref", help="Branch to read instead of HEAD."),
) -> None:
    """Print recent commits with the files each touched."""
    parser = HistoryParser()
    _execute(ctx, lambda cancel: parser.run(worktree, limit, ref, cancel=cancel))


@app.command("detect")
def detect(worktree: pathlib.Path = typer.Argument(pathlib.Path("."))) -> None:
    """Report which multi-step operation, if any, is in progress."""
    target = WorktreeRef.of(worktree)
    in_progress = ContinueAbortWorkflow().detect(target)
    typer.echo(
        json.dumps({"worktree_path": str(target), "in_progress": in_progress.value}, indent=2)
    )


app.add_typer(stash_app, name="stash")


if __name__ == "__main__":
    app()
