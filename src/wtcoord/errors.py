"""wtcoord error hierarchy."""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCategory(StrEnum):
    """Category of error for classification and handling."""

    LOCK = "lock"
    CLAIM = "claim"
    WORKTREE = "worktree"
    GUARD = "guard"
    MERGE = "merge"
    TASK_STORE = "task_store"
    GIT = "git"
    CONFIGURATION = "configuration"
    INTERNAL = "internal"


class CoordinationError(Exception):
    """Base error for all coordination failures."""

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory = ErrorCategory.INTERNAL,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.category = category
        self.retryable = retryable
        self.details: dict[str, Any] = details or {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self)!r}, category={self.category!r})"


class LockTimeoutError(CoordinationError):
    """Lock could not be acquired within the allotted time."""

    def __init__(self, lock_path: str, timeout: float) -> None:
        super().__init__(
            f"Timed out after {timeout}s waiting for lock {lock_path}",
            category=ErrorCategory.LOCK,
            retryable=True,
            details={"lock_path": lock_path, "timeout": timeout},
        )
        self.lock_path = lock_path
        self.timeout = timeout


# ---------------------------------------------------------------------------
# Claims
# ---------------------------------------------------------------------------


class ClaimError(CoordinationError):
    """Task could not be claimed. Pick a different task."""

    def __init__(self, message: str, *, task_id: str, retryable: bool = False, **kwargs: Any) -> None:
        super().__init__(message, category=ErrorCategory.CLAIM, retryable=retryable, **kwargs)
        self.task_id = task_id


class AlreadyClaimedError(ClaimError):
    """Task is in progress under another worker."""

    def __init__(self, task_id: str, assignee: str) -> None:
        super().__init__(
            f"Task {task_id} is already in_progress, assigned to: {assignee}",
            task_id=task_id,
            details={"assignee": assignee},
        )
        self.assignee = assignee


class AlreadyClosedError(ClaimError):
    """Task is already closed."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} is already closed", task_id=task_id)


class ClaimWriteError(ClaimError):
    """The task store rejected the claim write after verification passed."""

    def __init__(self, task_id: str, reason: str) -> None:
        super().__init__(
            f"Could not mark task {task_id} in_progress: {reason}",
            task_id=task_id,
            retryable=True,
        )


# ---------------------------------------------------------------------------
# Worktrees
# ---------------------------------------------------------------------------


class WorktreeError(CoordinationError):
    """Sandbox precondition failed; the operator has to act."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(message, category=ErrorCategory.WORKTREE, retryable=False, **kwargs)


class WorktreeNotFoundError(WorktreeError):
    def __init__(self, worker_id: str, task_id: str, path: str) -> None:
        super().__init__(
            f"Worktree not found at {path}. Did you run 'start {worker_id} {task_id}'?",
            details={"worker_id": worker_id, "task_id": task_id, "path": path},
        )


class BranchMismatchError(WorktreeError):
    def __init__(self, path: str, expected: str, actual: str) -> None:
        super().__init__(
            f"Worktree {path} is on branch '{actual}', expected '{expected}'",
            details={"expected": expected, "actual": actual},
        )


class DirtyWorktreeError(WorktreeError):
    """Uncommitted changes in the sandbox."""

    def __init__(self, path: str, dirty: list[str]) -> None:
        listing = "\n".join(f"  {line}" for line in dirty)
        super().__init__(
            f"Uncommitted changes in {path}. Commit them first:\n{listing}",
            details={"path": path, "dirty": dirty},
        )
        self.dirty = dirty


class NoCommitsError(WorktreeError):
    """Branch has nothing to integrate."""

    def __init__(self, branch: str) -> None:
        super().__init__(
            f"No commits on {branch} beyond the mainline. Did you forget to commit?",
            details={"branch": branch},
        )


class GuardError(CoordinationError):
    """Caller is not inside the expected sandbox."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(message, category=ErrorCategory.GUARD, retryable=False, **kwargs)


# ---------------------------------------------------------------------------
# Merge queue
# ---------------------------------------------------------------------------


class MergeError(CoordinationError):
    """Integration into the mainline failed. The worker branch is preserved."""

    def __init__(self, message: str, *, branch: str, retryable: bool = False, **kwargs: Any) -> None:
        super().__init__(message, category=ErrorCategory.MERGE, retryable=retryable, **kwargs)
        self.branch = branch


class RebaseConflictError(MergeError):
    def __init__(self, branch: str, path: str, files: list[str]) -> None:
        listing = ", ".join(files) if files else "(unknown files)"
        super().__init__(
            f"Rebase of {branch} conflicts in {listing}. Resolve in {path}, "
            "commit, and run finish again. The rebase was aborted.",
            branch=branch,
            details={"path": path, "files": files},
        )
        self.files = files


class MergeConflictError(MergeError):
    def __init__(self, branch: str, stderr: str) -> None:
        super().__init__(
            f"Merging {branch} into the mainline failed after rebase: {stderr.strip()}",
            branch=branch,
        )


class PushRaceError(MergeError):
    """Mainline push was rejected because another push landed first."""

    def __init__(self, branch: str, attempts: int, stderr: str = "") -> None:
        super().__init__(
            f"Failed to push mainline with {branch} merged after {attempts} attempt(s). "
            f"Your changes are still on branch {branch}.",
            branch=branch,
            retryable=True,
            details={"attempts": attempts, "stderr": stderr.strip()},
        )
        self.attempts = attempts


# ---------------------------------------------------------------------------
# External collaborators
# ---------------------------------------------------------------------------


class TaskStoreError(CoordinationError):
    """The task-store CLI failed or returned something unreadable."""

    def __init__(self, message: str, *, command: list[str] | None = None, retryable: bool = True) -> None:
        super().__init__(
            message,
            category=ErrorCategory.TASK_STORE,
            retryable=retryable,
            details={"command": command or []},
        )


class GitError(CoordinationError):
    """A git command exited non-zero."""

    def __init__(self, args: list[str], returncode: int, stderr: str) -> None:
        super().__init__(
            f"git {' '.join(args)} failed ({returncode}): {stderr.strip()}",
            category=ErrorCategory.GIT,
            details={"args": args, "returncode": returncode},
        )
        self.args_list = args
        self.returncode = returncode
        self.stderr = stderr


class ConfigurationError(CoordinationError):
    """Invalid or missing configuration."""

    def __init__(self, message: str) -> None:
        super().__init__(message, category=ErrorCategory.CONFIGURATION, retryable=False)
