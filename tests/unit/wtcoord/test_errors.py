from __future__ import annotations

from wtcoord.errors import (
    AlreadyClaimedError,
    ClaimError,
    CoordinationError,
    ErrorCategory,
    GitError,
    LockTimeoutError,
    MergeError,
    PushRaceError,
    RebaseConflictError,
    TaskStoreError,
    WorktreeError,
    WorktreeNotFoundError,
)


def test_hierarchy() -> None:
    assert issubclass(AlreadyClaimedError, ClaimError)
    assert issubclass(WorktreeNotFoundError, WorktreeError)
    assert issubclass(RebaseConflictError, MergeError)
    assert issubclass(PushRaceError, MergeError)
    for cls in (ClaimError, WorktreeError, MergeError, TaskStoreError, GitError, LockTimeoutError):
        assert issubclass(cls, CoordinationError)


def test_categories_and_retryability() -> None:
    assert LockTimeoutError("/x.lock", 5).category == ErrorCategory.LOCK
    assert LockTimeoutError("/x.lock", 5).retryable
    assert AlreadyClaimedError("t-1", "w2").category == ErrorCategory.CLAIM
    assert not AlreadyClaimedError("t-1", "w2").retryable
    assert PushRaceError("w1/t-1", 5).retryable
    assert not RebaseConflictError("w1/t-1", "/wt", ["a.py"]).retryable


def test_details_carry_context() -> None:
    err = RebaseConflictError("w1/t-1", "/wt/w1/t-1", ["a.py", "b.py"])
    assert err.branch == "w1/t-1"
    assert err.details == {"path": "/wt/w1/t-1", "files": ["a.py", "b.py"]}
    assert "a.py, b.py" in str(err)


def test_git_error_message() -> None:
    err = GitError(["push", "origin", "main"], 1, "rejected\n")
    assert str(err) == "git push origin main failed (1): rejected"
    assert err.category == ErrorCategory.GIT


def test_repr_names_class_and_category() -> None:
    text = repr(WorktreeError("gone"))
    assert text.startswith("WorktreeError('gone'")
    assert "WORKTREE" in text
