from __future__ import annotations

from pathlib import Path

import pytest

from gitweave.exceptions import ConflictError, ExecutionError, NoUpstreamError, ValidationError
from gitweave.types import (
    MAX_BRANCH_NAME_LENGTH,
    CommitRecord,
    Conflict,
    Failure,
    StashEntry,
    Success,
    WorktreeRef,
    is_valid_branch_name,
    is_valid_commit_hash,
    validate_branch_name,
    validate_commit_hash,
    validate_stash_index,
)


@pytest.mark.parametrize(
    "name",
    ["main", "feature/login-form", "release-1.2.3", "wt/run_42/task", "A.b_c-D", "x" * 249],
)
def test_branch_allowlist_accepts(name: str) -> None:
    """Names built only from the allowlist are accepted unchanged."""
    assert is_valid_branch_name(name)
    assert validate_branch_name(name) == name


@pytest.mark.parametrize(
    "name",
    [
        "",
        "has space",
        "-force",
        "--upload-pack=evil",
        "nul\0byte",
        "a..b",
        "semi;colon",
        "dollar$(id)",
        "x" * MAX_BRANCH_NAME_LENGTH,
    ],
)
def test_branch_validation_rejects(name: str) -> None:
    """Spaces, leading dashes, NUL bytes, traversal and overlong names never reach git."""
    assert not is_valid_branch_name(name)
    with pytest.raises(ValidationError):
        validate_branch_name(name)


def test_branch_validation_error_names_label() -> None:
    with pytest.raises(ValidationError, match="onto branch"):
        validate_branch_name("bad name", label="onto branch")


@pytest.mark.parametrize("value", ["a1b2c3", "DEADBEEF", "0" * 40])
def test_commit_hash_accepts_hex(value: str) -> None:
    assert is_valid_commit_hash(value)
    assert validate_commit_hash(value) == value


@pytest.mark.parametrize("value", ["", "xyz", "abc def", "-abc", "HEAD~1"])
def test_commit_hash_rejects_non_hex(value: str) -> None:
    assert not is_valid_commit_hash(value)
    with pytest.raises(ValidationError):
        validate_commit_hash(value)


@pytest.mark.parametrize("index", [-1, True, "0", 1.5])
def test_stash_index_must_be_non_negative_int(index: object) -> None:
    with pytest.raises(ValidationError):
        validate_stash_index(index)


def test_worktree_ref_resolves_relative_paths(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    ref = WorktreeRef.of("nested")
    assert ref.path == (tmp_path / "nested").resolve()
    assert WorktreeRef.of(ref) is ref
    assert str(ref) == str(ref.path)


def test_commit_record_add_files_keeps_first_seen_order() -> None:
    record = CommitRecord("a" * 40, "aaaaaaa", "Ada", "ada@example.com", "2024-01-01", "msg")
    record.add_files(["b.txt", "a.txt"])
    record.add_files(["a.txt", "c.txt", "b.txt"])
    assert record.files == ["b.txt", "a.txt", "c.txt"]


def test_conflict_requires_files() -> None:
    """A conflict without files cannot be represented."""
    with pytest.raises(ValueError):
        Conflict("merge", ())


def test_success_to_dict_merges_details() -> None:
    entry = StashEntry(index=0, message="WIP on main: abc", timestamp="2024-01-01T00:00:00Z", branch="main")
    outcome = Success("stash", message="1 stash entry", details={"stashes": [entry], "total": 1})

    data = outcome.to_dict()

    assert data["success"] is True
    assert data["has_conflicts"] is False
    assert data["total"] == 1
    assert data["stashes"][0]["ref"] == "stash@{0}"
    assert data["stashes"][0]["files"] == []
    assert Success.kind == "success"


def test_conflict_to_dict_reports_files_and_abort_state() -> None:
    outcome = Conflict(
        "cherry-pick",
        ["README.md"],
        message="aborted",
        aborted=True,
        details={"commit_hashes": ["abc"]},
    )

    data = outcome.to_dict()

    assert outcome.files == ("README.md",)
    assert data["success"] is False
    assert data["has_conflicts"] is True
    assert data["conflict_files"] == ["README.md"]
    assert data["aborted"] is True
    assert "conflict_source" not in data
    assert data["commit_hashes"] == ["abc"]


def test_failure_to_dict_carries_error_code() -> None:
    outcome = Failure("pull", NoUpstreamError("no upstream"), details={"remote": "origin"})

    data = outcome.to_dict()

    assert outcome.message == "no upstream"
    assert data == {
        "operation": "pull",
        "success": False,
        "has_conflicts": False,
        "error": "no upstream",
        "error_code": "no_upstream",
        "stash_recovery_failed": False,
        "remote": "origin",
    }


def test_failure_to_dict_includes_execution_fields() -> None:
    error = ExecutionError(["git", "fetch", "origin"], stderr="fatal: unreachable", exit_code=128)

    data = Failure("pull", error, details={"step": "fetch"}).to_dict()

    assert data["error"] == "fatal: unreachable"
    assert data["error_code"] == "execution_error"
    assert data["exit_code"] == 128
    assert data["argv"] == ["git", "fetch", "origin"]
    assert data["step"] == "fetch"


def test_conflict_error_payload() -> None:
    error = ConflictError("stopped", files=["a.txt"], aborted=False)
    assert str(error) == "stopped"
    assert error.to_payload() == {
        "code": "conflict",
        "message": "stopped",
        "conflict_files": ["a.txt"],
        "aborted": False,
    }
