"""Pytest configuration helpers."""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Mapping, Sequence

import pytest

from gitweave.config import GitweaveSettings, get_settings
from gitweave.git import CommandRunner, PathLike
from gitweave.types import CommandResult


@pytest.fixture(autouse=True)
def isolated_git_env(tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Keep user and system git config out of the tests and pin an identity."""
    global_config = tmp_path_factory.mktemp("gitconfig") / "config"
    global_config.write_text("", encoding="utf-8")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(global_config))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    for role in ("AUTHOR", "COMMITTER"):
        monkeypatch.setenv(f"GIT_{role}_NAME", "Gitweave Tests")
        monkeypatch.setenv(f"GIT_{role}_EMAIL", "tests@gitweave.invalid")
    for name in list(GitweaveSettings.model_fields):
        monkeypatch.delenv(f"GITWEAVE_{name.upper()}", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> GitweaveSettings:
    return GitweaveSettings(_env_file=None, cancel_poll_interval=0.05, terminate_grace_period=1.0)


@pytest.fixture
def runner(settings: GitweaveSettings) -> CommandRunner:
    return CommandRunner(settings)


def _git(cwd: Path, *args: str, check: bool = True) -> str:
    result = subprocess.run(["git", *args], cwd=cwd, capture_output=True, text=True)
    if check and result.returncode != 0:
        raise AssertionError(f"git {' '.join(args)} failed: {result.stderr or result.stdout}")
    return result.stdout


@pytest.fixture
def git() -> Callable[..., str]:
    """Run git for test setup; raises AssertionError when git fails."""
    return _git


def _configure(repo: Path) -> None:
    _git(repo, "config", "pull.rebase", "false")
    _git(repo, "config", "commit.gpgsign", "false")


def _commit(repo: Path, name: str, content: str, message: str | None = None) -> str:
    target = repo / name
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")
    _git(repo, "add", "--", name)
    _git(repo, "commit", "-q", "-m", message or f"Update {name}")
    return _git(repo, "rev-parse", "HEAD").strip()


@pytest.fixture
def commit() -> Callable[..., str]:
    """Write ``name`` with ``content`` and commit it; returns the new hash."""
    return _commit


@pytest.fixture
def make_repo(tmp_path: Path) -> Callable[[str], Path]:
    """Create a repository on ``main`` with one commit of README.md."""
    if shutil.which("git") is None:
        pytest.skip("git executable not available")

    def factory(name: str = "repo") -> Path:
        repo = tmp_path / name
        repo.mkdir(parents=True)
        _git(repo, "init", "-q")
        _git(repo, "symbolic-ref", "HEAD", "refs/heads/main")
        _configure(repo)
        _commit(repo, "README.md", "base\n", "Initial commit")
        return repo

    return factory


@pytest.fixture
def repo(make_repo: Callable[[str], Path]) -> Path:
    return make_repo("repo")


@dataclass
class RemoteSetup:
    origin: Path
    other: Path
    local: Path


@pytest.fixture
def remote_setup(tmp_path: Path, make_repo: Callable[[str], Path]) -> RemoteSetup:
    """A bare origin, a clone pushing upstream changes and the clone under test."""
    origin = tmp_path / "origin.git"
    _git(tmp_path, "init", "-q", "--bare", str(origin))
    _git(origin, "symbolic-ref", "HEAD", "refs/heads/main")

    other = make_repo("other")
    _git(other, "remote", "add", "origin", str(origin))
    _git(other, "push", "-q", "-u", "origin", "main")

    local = tmp_path / "local"
    _git(tmp_path, "clone", "-q", str(origin), str(local))
    _configure(local)
    return RemoteSetup(origin=origin, other=other, local=local)


class RecordingBroadcaster:
    """Broadcaster double that keeps every emitted event."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, name: str, payload: dict[str, Any]) -> None:
        self.events.append((name, payload))

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def terminal(self) -> list[str]:
        return [
            name
            for name in self.names
            if name.rsplit(":", 1)[1] in {"success", "conflict", "abort", "failure"}
        ]


@pytest.fixture
def recorder() -> RecordingBroadcaster:
    return RecordingBroadcaster()


class ScriptedRunner(CommandRunner):
    """CommandRunner answering from a queue of results or exceptions."""

    def __init__(self, responses: Iterable[CommandResult | Exception], settings: GitweaveSettings) -> None:
        super().__init__(settings)
        self.responses = list(responses)
        self.calls: list[list[str]] = []

    def invoke(
        self,
        args: Sequence[str],
        cwd: PathLike,
        env: Mapping[str, str] | None = None,
        cancel: Any = None,
    ) -> CommandResult:
        self.calls.append(list(args))
        if not self.responses:
            raise AssertionError(f"unexpected git call: {list(args)}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def scripted_runner(settings: GitweaveSettings) -> Callable[..., ScriptedRunner]:
    def factory(*responses: CommandResult | Exception) -> ScriptedRunner:
        return ScriptedRunner(responses, settings)

    return factory


def ok(stdout: str = "", argv: Sequence[str] = ("git",)) -> CommandResult:
    return CommandResult(argv=list(argv), stdout=stdout, stderr="", exit_code=0)


@pytest.fixture
def git_result() -> Callable[..., CommandResult]:
    """Build a successful CommandResult with the given stdout."""
    return ok
