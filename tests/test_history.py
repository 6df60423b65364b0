from __future__ import annotations

from pathlib import Path

import pytest

from gitweave.config import GitweaveSettings
from gitweave.exceptions import ExecutionError
from gitweave.history import LOG_FORMAT, HistoryParser, parse_log_output
from gitweave.types import Failure, Success


def block(
    commit_hash: str,
    subject: str,
    files: list[str],
    body: str = "",
    author: str = "Ada Lovelace",
    email: str = "ada@example.com",
    date: str = "2024-05-01T10:00:00+00:00",
) -> str:
    """Render one record the way ``git log`` prints :data:`LOG_FORMAT`."""
    body_text = f"{body}\n" if body else ""
    meta = "\n".join([commit_hash, commit_hash[:7], author, email, date, subject])
    file_text = "".join(f"{name}\n" for name in files)
    return f"\x00\n{meta}\n{body_text}\x01\n\n{file_text}"


def test_parse_three_independent_commits() -> None:
    output = "".join(
        [
            block("c" * 40, "Third", ["c.txt"], body="Longer\n\nexplanation"),
            block("b" * 40, "Second", ["b.txt", "shared.txt"]),
            block("a" * 40, "First", ["a.txt"]),
        ]
    )

    commits = parse_log_output(output)

    assert [commit.hash for commit in commits] == ["c" * 40, "b" * 40, "a" * 40]
    third = commits[0]
    assert third.short_hash == "ccccccc"
    assert third.author == "Ada Lovelace"
    assert third.author_email == "ada@example.com"
    assert third.date == "2024-05-01T10:00:00+00:00"
    assert third.subject == "Third"
    assert third.body == "Longer\n\nexplanation"
    assert third.files == ["c.txt"]
    assert commits[1].files == ["b.txt", "shared.txt"]
    assert commits[2].body == ""


def test_merge_commit_occurrences_fold_into_one_record() -> None:
    """``-m`` prints a merge once per parent; files are unioned."""
    merge = "d" * 40
    output = "".join(
        [
            block(merge, "Merge feature", ["feature.txt", "both.txt"]),
            block(merge, "Merge feature", ["main.txt", "both.txt"]),
            block("a" * 40, "Base", ["base.txt"]),
        ]
    )

    commits = parse_log_output(output)

    assert len(commits) == 2
    assert commits[0].hash == merge
    assert commits[0].files == ["feature.txt", "both.txt", "main.txt"]


def test_parse_empty_output() -> None:
    assert parse_log_output("") == []
    assert parse_log_output("\n\n") == []


def test_parse_tolerates_leading_blank_lines() -> None:
    output = block("e" * 40, "Subject", ["e.txt"]).replace("\x00\n", "\x00\n\n\n", 1)
    commits = parse_log_output(output)
    assert len(commits) == 1
    assert commits[0].hash == "e" * 40
    assert commits[0].subject == "Subject"


def test_parse_skips_truncated_blocks() -> None:
    output = "\x00\nfff\nonly-two-fields\x01\n" + block("a" * 40, "Ok", [])
    commits = parse_log_output(output)
    assert [commit.subject for commit in commits] == ["Ok"]


def test_parse_applies_limit_after_dedup() -> None:
    merge = "d" * 40
    output = block(merge, "Merge", ["x"]) + block(merge, "Merge", ["y"]) + block("a" * 40, "Base", [])
    assert [commit.subject for commit in parse_log_output(output, limit=1)] == ["Merge"]


@pytest.mark.parametrize(("requested", "expected"), [(None, 20), (0, 1), (-5, 1), (7, 7), (1000, 100)])
def test_clamp_limit(settings, requested: int | None, expected: int) -> None:
    assert HistoryParser(settings=settings).clamp_limit(requested) == expected


def test_default_limit_is_capped_by_max_limit() -> None:
    settings = GitweaveSettings(_env_file=None, history_default_limit=50, history_max_limit=10)
    assert HistoryParser(settings=settings).clamp_limit(None) == 10


def test_fetch_over_fetches_twice_the_limit(scripted_runner, git_result) -> None:
    runner = scripted_runner(git_result(block("a" * 40, "Only", ["a.txt"])))
    result = HistoryParser(runner).fetch("/repo", limit=5, ref="main")

    assert runner.calls == [
        ["log", "main", "--max-count=10", "-m", "--name-only", LOG_FORMAT, "--"]
    ]
    assert result.branch == "main"
    assert result.total == 1


def test_history_against_real_repository(repo: Path, commit, git) -> None:
    commit(repo, "one.txt", "1\n", "Add one")
    git(repo, "checkout", "-q", "-b", "feature")
    commit(repo, "feature.txt", "f\n", "Add feature")
    git(repo, "checkout", "-q", "main")
    commit(repo, "main.txt", "m\n", "Add main")
    git(repo, "merge", "-q", "--no-ff", "-m", "Merge feature", "feature")

    result = HistoryParser().fetch(repo, limit=3)

    assert result.branch == "main"
    assert [commit.subject for commit in result.commits] == ["Merge feature", "Add main", "Add feature"]
    merge = result.commits[0]
    assert sorted(merge.files) == ["feature.txt", "main.txt"]
    assert len({commit.hash for commit in result.commits}) == 3


def test_history_run_wraps_result_in_outcome(repo: Path, recorder) -> None:
    outcome = HistoryParser().run(repo, limit=1, broadcaster=recorder)

    assert isinstance(outcome, Success)
    assert outcome.details["total"] == 1
    assert outcome.to_dict()["commits"][0]["subject"] == "Initial commit"
    assert recorder.names == ["history:started", "history:progress", "history:success"]


def test_history_run_reports_failure(scripted_runner) -> None:
    runner = scripted_runner(ExecutionError(["git", "log"], stderr="fatal: bad revision", exit_code=128))
    outcome = HistoryParser(runner).run("/repo", ref="missing")

    assert isinstance(outcome, Failure)
    assert outcome.to_dict()["error"] == "fatal: bad revision"
