"""Low-level git invocation helpers."""

from __future__ import annotations

import logging
import os
import subprocess
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Mapping, Sequence

from .config import GitweaveSettings, get_settings
from .exceptions import AbortedError, ExecutionError, GitweaveError
from .types import CommandResult, WorktreeRef

logger = logging.getLogger(__name__)

PathLike = str | Path | WorktreeRef


def _cwd(value: PathLike) -> Path:
    return value.path if isinstance(value, WorktreeRef) else Path(value)


class CommandRunner:
    """Run git with an argv list; never through a shell."""

    def __init__(self, settings: GitweaveSettings | None = None) -> None:
        self.settings = settings or get_settings()

    def invoke(
        self,
        args: Sequence[str],
        cwd: PathLike,
        env: Mapping[str, str] | None = None,
        cancel: threading.Event | None = None,
    ) -> CommandResult:
        """
        Execute ``git <args>`` inside ``cwd``.

        Args:
            args: Arguments that follow the git executable.
            cwd: Worktree to run in.
            env: Environment overrides merged over the current environment.
            cancel: Optional event; once set the child is terminated.

        Returns:
            CommandResult with decoded stdout/stderr.

        Raises:
            ExecutionError: git exited non-zero or could not be started.
            AbortedError: ``cancel`` fired before git completed.
        """
        command = [self.settings.git_binary, *args]
        if cancel is not None and cancel.is_set():
            raise AbortedError(f"git {' '.join(args[:1])} cancelled before start")

        merged_env = os.environ.copy()
        merged_env["GIT_TERMINAL_PROMPT"] = "0"
        if self.settings.force_c_locale:
            merged_env["LC_ALL"] = "C"
        if env:
            merged_env.update(env)

        logger.debug("Running %s in %s", " ".join(command), _cwd(cwd))
        try:
            proc = subprocess.Popen(
                command,
                cwd=str(_cwd(cwd)),
                env=merged_env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            if exc.filename not in (None, command[0]):
                raise
            raise ExecutionError(
                command, stderr=f"git executable not found: {command[0]}", exit_code=127
            ) from exc

        stdout_bytes, stderr_bytes = self._communicate(proc, command, cancel)
        result = CommandResult(
            argv=command,
            stdout=(stdout_bytes or b"").decode("utf-8", errors="replace"),
            stderr=(stderr_bytes or b"").decode("utf-8", errors="replace"),
            exit_code=proc.returncode if proc.returncode is not None else 1,
        )
        if not result.ok:
            raise ExecutionError(
                command, stdout=result.stdout, stderr=result.stderr, exit_code=result.exit_code
            )
        return result

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: PathLike,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        cancel: threading.Event | None = None,
    ) -> CommandResult:
        """Like :meth:`invoke`, but returns failed results when ``check`` is False."""
        try:
            return self.invoke(args, cwd, env=env, cancel=cancel)
        except ExecutionError as exc:
            if check:
                raise
            return CommandResult(
                argv=exc.argv, stdout=exc.stdout, stderr=exc.stderr, exit_code=exc.exit_code
            )

    def _communicate(
        self,
        proc: subprocess.Popen[bytes],
        command: Sequence[str],
        cancel: threading.Event | None,
    ) -> tuple[bytes, bytes]:
        if cancel is None:
            return proc.communicate()
        while True:
            try:
                return proc.communicate(timeout=self.settings.cancel_poll_interval)
            except subprocess.TimeoutExpired:
                if not cancel.is_set():
                    continue
            self._terminate(proc)
            logger.info("Cancelled %s (pid %s)", " ".join(command), proc.pid)
            raise AbortedError(f"git {command[1] if len(command) > 1 else ''} aborted".strip())

    def _terminate(self, proc: subprocess.Popen[bytes]) -> None:
        proc.terminate()
        try:
            proc.communicate(timeout=self.settings.terminate_grace_period)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.communicate()


@contextmanager
def cancel_after(seconds: float, event: threading.Event | None = None) -> Iterator[threading.Event]:
    """Yield an event that is set once ``seconds`` elapse.

    Pass the event as ``cancel`` to turn a deadline into cooperative
    cancellation; the timer is stopped when the block exits.
    """
    signal = event or threading.Event()
    timer = threading.Timer(seconds, signal.set)
    timer.daemon = True
    timer.start()
    try:
        yield signal
    finally:
        timer.cancel()


def resolve_git_dir(runner: CommandRunner, worktree: PathLike) -> Path:
    """Return the metadata directory of ``worktree``.

    ``rev-parse --git-dir`` may answer relative to the worktree; linked
    worktrees resolve to ``<main>/.git/worktrees/<name>``. Never cached.
    """
    base = _cwd(worktree)
    raw = runner.invoke(["rev-parse", "--git-dir"], base).stdout.strip()
    if not raw:
        raise ExecutionError(["rev-parse", "--git-dir"], stderr="empty git dir", exit_code=1)
    git_dir = Path(raw)
    if not git_dir.is_absolute():
        git_dir = base / git_dir
    return git_dir.resolve()


def current_branch(
    runner: CommandRunner, worktree: PathLike, cancel: threading.Event | None = None
) -> str:
    """Return ``rev-parse --abbrev-ref HEAD`` output; ``HEAD`` means detached."""
    return runner.invoke(["rev-parse", "--abbrev-ref", "HEAD"], worktree, cancel=cancel).stdout.strip()


# ----------------------------------------------------------------------
# Index lock recovery


def is_index_lock_error(message: str) -> bool:
    """Return True when git failed because ``index.lock`` is held."""
    lower = (message or "").lower()
    return (
        "could not write index" in lower
        or ("unable to create" in lower and "index.lock" in lower)
        or "index.lock" in lower
    )


def remove_stale_index_lock(runner: CommandRunner, worktree: PathLike) -> bool:
    """Delete ``<git-dir>/index.lock``; return True only if a file was removed."""
    try:
        git_dir = resolve_git_dir(runner, worktree)
    except GitweaveError as exc:
        logger.warning("Could not resolve git dir for %s: %s", _cwd(worktree), exc)
        return False

    lock_file = git_dir / "index.lock"
    if not lock_file.exists():
        return False
    try:
        lock_file.unlink()
    except FileNotFoundError:
        return False
    except OSError as exc:
        logger.warning("Failed to remove stale index.lock %s: %s", lock_file, exc)
        return False
    logger.info("Removed stale index.lock file %s", lock_file)
    return True


class LockRetryWrapper:
    """Retry index-mutating git calls once after clearing a stale lock."""

    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    def invoke(
        self,
        args: Sequence[str],
        cwd: PathLike,
        env: Mapping[str, str] | None = None,
        cancel: threading.Event | None = None,
    ) -> CommandResult:
        try:
            return self.runner.invoke(args, cwd, env=env, cancel=cancel)
        except ExecutionError as exc:
            if not is_index_lock_error(exc.stderr or str(exc)):
                raise
            logger.info(
                "git %s hit an index lock in %s; cleaning up and retrying",
                " ".join(args),
                _cwd(cwd),
            )
            if not remove_stale_index_lock(self.runner, cwd):
                raise
            original = exc
        try:
            return self.runner.invoke(args, cwd, env=env, cancel=cancel)
        except ExecutionError as retry_exc:
            logger.info("git %s failed again after lock cleanup: %s", " ".join(args), retry_exc)
            raise original from retry_exc
