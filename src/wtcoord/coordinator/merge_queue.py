"""Serialized integration of finished worktree branches into the mainline.

Flow for one branch:

1. In the sandbox: fetch the mainline, remember its sha as the baseline and
   rebase onto it. A conflict aborts the rebase and is reported; semantic
   conflicts need a human, so there is no automatic retry.
2. Force-push the rebased branch (it is private to its worker).
3. Under the merge-queue lock, in the main checkout: fast-forward the
   mainline and warn when the branch and the mainline both touched the same
   files since the baseline.
4. ``merge --no-ff`` and push the mainline.
5. A rejected push means someone else pushed first. Undo the merge commit,
   ``pull --rebase`` and try again after an exponential backoff with jitter.
6. After ``max_attempts`` failures give up. The branch and its commits are
   never deleted on failure.
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt

from wtcoord.coordinator.backoff import BackoffWait
from wtcoord.errors import MergeConflictError, MergeError, PushRaceError, RebaseConflictError
from wtcoord.log import get_logger
from wtcoord.protocol.locks import locked_file
from wtcoord.protocol.models import WorktreeEntry
from wtcoord.workspace.git import changed_files, rev_parse, run_git

logger = get_logger(__name__)


def merge_message(entry: WorktreeEntry) -> str:
    return f"Merge {entry.task_id}\n\nWorked-by: {entry.worker_id}\nBranch: {entry.branch}"


@dataclass(slots=True)
class MergeResult:
    task_id: str
    branch: str
    merge_commit: str
    attempts: int
    overlapping_files: list[str] = field(default_factory=list)


@dataclass
class MergeQueue:
    repo: Path
    lock_path: Path
    lock_timeout: float = 120.0
    main_branch: str = "main"
    remote: str = "origin"
    max_attempts: int = 5
    base_delay: float = 1.0
    poll_interval: float = 0.1
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    rng: Callable[[], float] = field(default=random.random, repr=False)

    @property
    def upstream(self) -> str:
        return f"{self.remote}/{self.main_branch}"

    def integrate(self, entry: WorktreeEntry) -> MergeResult:
        baseline = self.rebase(entry)
        run_git(entry.path, "push", "-f", self.remote, entry.branch)

        with locked_file(self.lock_path, self.lock_timeout, self.poll_interval):
            self._refresh_mainline(entry)
            overlap = self.overlapping_files(entry, baseline)
            if overlap:
                logger.warning(
                    "merge_overlap",
                    branch=entry.branch,
                    files=overlap,
                    hint="rebase resolved textual conflicts; review for semantic ones",
                )

            attempts = 0
            last_stderr = ""

            def attempt() -> str:
                nonlocal attempts, last_stderr
                attempts += 1
                try:
                    return self._merge_and_push(entry, attempts)
                except PushRaceError as exc:
                    last_stderr = str(exc.details.get("stderr", ""))
                    raise

            retrying = Retrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=BackoffWait(self.base_delay, self.rng),
                retry=retry_if_exception_type(PushRaceError),
                sleep=self.sleep,
                before_sleep=lambda rs: logger.info(
                    "merge_push_retry",
                    branch=entry.branch,
                    attempt=rs.attempt_number,
                    of=self.max_attempts,
                    delay=round(rs.next_action.sleep, 3) if rs.next_action else None,
                ),
                reraise=True,
            )
            try:
                merge_commit = retrying(attempt)
            except PushRaceError as exc:
                logger.error(
                    "merge_push_exhausted",
                    branch=entry.branch,
                    attempts=attempts,
                    manual=f"git merge {entry.branch} --no-ff && git push {self.remote} {self.main_branch}",
                )
                raise PushRaceError(entry.branch, attempts, last_stderr) from exc

        logger.info("merged", branch=entry.branch, commit=merge_commit, attempts=attempts)
        return MergeResult(
            task_id=entry.task_id,
            branch=entry.branch,
            merge_commit=merge_commit,
            attempts=attempts,
            overlapping_files=overlap,
        )

    # ------------------------------------------------------------------

    def rebase(self, entry: WorktreeEntry) -> str:
        """Rebase the sandbox branch onto the fresh mainline; returns the baseline sha."""
        run_git(entry.path, "fetch", self.remote, self.main_branch)
        baseline = rev_parse(entry.path, self.upstream)
        proc = run_git(entry.path, "rebase", self.upstream, check=False)
        if proc.returncode != 0:
            conflicted = run_git(entry.path, "diff", "--name-only", "--diff-filter=U", check=False)
            files = [line for line in conflicted.stdout.splitlines() if line.strip()]
            run_git(entry.path, "rebase", "--abort", check=False)
            raise RebaseConflictError(entry.branch, str(entry.path), files)
        return baseline

    def overlapping_files(self, entry: WorktreeEntry, baseline: str) -> list[str]:
        ours = changed_files(self.repo, baseline, entry.branch)
        theirs = changed_files(self.repo, baseline, self.main_branch)
        return sorted(ours & theirs)

    def _refresh_mainline(self, entry: WorktreeEntry) -> None:
        dirty = run_git(self.repo, "status", "--porcelain", "--untracked-files=no").stdout.strip()
        if dirty:
            raise MergeError(
                f"Main checkout {self.repo} has uncommitted changes; commit or stash them first.",
                branch=entry.branch,
                details={"dirty": dirty.splitlines()},
            )
        run_git(self.repo, "checkout", self.main_branch)
        run_git(self.repo, "pull", "--ff-only", self.remote, self.main_branch)

    def _merge_and_push(self, entry: WorktreeEntry, attempt: int) -> str:
        logger.info("merge_attempt", branch=entry.branch, attempt=attempt, of=self.max_attempts)
        merged = run_git(self.repo, "merge", "--no-ff", "-m", merge_message(entry), entry.branch, check=False)
        if merged.returncode != 0:
            run_git(self.repo, "merge", "--abort", check=False)
            raise MergeConflictError(entry.branch, merged.stderr or merged.stdout)
        merge_commit = rev_parse(self.repo, "HEAD")

        pushed = run_git(self.repo, "push", self.remote, self.main_branch, check=False)
        if pushed.returncode != 0:
            logger.warning("merge_push_rejected", branch=entry.branch, attempt=attempt)
            run_git(self.repo, "reset", "--hard", "HEAD~1")
            run_git(self.repo, "pull", "--rebase", self.remote, self.main_branch)
            raise PushRaceError(entry.branch, attempt, pushed.stderr)
        return merge_commit
