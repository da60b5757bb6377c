"""Worktree lifecycle: one isolated checkout and branch per (worker, task).

State per pair: absent -> building -> ready -> (finishing) -> absent.
Sandboxes live at ``<worktrees_root>/<worker>/<task>`` on branch
``<worker>/<task>``, based on ``<remote>/<main_branch>``.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from wtcoord.config.schema import InstallConfig
from wtcoord.errors import (
    BranchMismatchError,
    DirtyWorktreeError,
    GuardError,
    NoCommitsError,
    WorktreeError,
    WorktreeNotFoundError,
)
from wtcoord.protocol.models import WorktreeEntry
from wtcoord.workspace.git import (
    branch_exists,
    delete_branch,
    delete_remote_branch,
    git_lines,
    git_output,
    prune_worktrees,
    run_git,
    status_porcelain,
)
from wtcoord.workspace.registry import build_registry, is_registered

log = logging.getLogger(__name__)


@dataclass(slots=True)
class CleanupPlan:
    worker_id: str
    worktrees: list[Path] = field(default_factory=list)
    local_branches: list[str] = field(default_factory=list)
    remote_branches: list[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (self.worktrees or self.local_branches or self.remote_branches)


@dataclass(slots=True)
class WorktreeManager:
    repo: Path
    worktrees_root: Path
    main_branch: str = "main"
    remote: str = "origin"
    install: InstallConfig = field(default_factory=InstallConfig)

    @property
    def upstream(self) -> str:
        return f"{self.remote}/{self.main_branch}"

    def path_for(self, worker_id: str, task_id: str) -> Path:
        return self.worktrees_root / worker_id / task_id

    def entry_for(self, worker_id: str, task_id: str) -> WorktreeEntry:
        return WorktreeEntry(worker_id=worker_id, task_id=task_id, path=self.path_for(worker_id, task_id))

    def fetch_mainline(self) -> None:
        run_git(self.repo, "fetch", self.remote, self.main_branch)

    # ------------------------------------------------------------------
    # start
    # ------------------------------------------------------------------

    def ensure(self, worker_id: str, task_id: str) -> tuple[WorktreeEntry, bool]:
        """Resume, rebuild or create the sandbox. Returns ``(entry, created)``."""
        entry = self.entry_for(worker_id, task_id)

        if entry.path.exists():
            if is_registered(self.repo, entry.path):
                log.info("Resuming existing worktree at %s", entry.path)
                return entry, False
            log.warning("Found orphaned worktree directory %s (possibly from a crash); removing", entry.path)
            shutil.rmtree(entry.path)
            prune_worktrees(self.repo)
            delete_branch(self.repo, entry.branch)

        entry.path.parent.mkdir(parents=True, exist_ok=True)
        prune_worktrees(self.repo)

        if branch_exists(self.repo, entry.branch):
            log.warning("Branch %s already exists; creating worktree from it", entry.branch)
            run_git(self.repo, "worktree", "add", str(entry.path), entry.branch)
        else:
            log.info("Creating worktree %s on branch %s from %s", entry.path, entry.branch, self.upstream)
            run_git(self.repo, "worktree", "add", "-b", entry.branch, str(entry.path), self.upstream)
        return entry, True

    def cache_dir_for(self, worker_id: str) -> Path:
        return Path(self.install.cache_root).expanduser() / worker_id

    def install_dependencies(self, entry: WorktreeEntry) -> bool:
        """Install into a per-worker cache so workers never share one. False when skipped."""
        cfg = self.install
        if not cfg.command:
            return False
        if cfg.when_exists and not (entry.path / cfg.when_exists).exists():
            return False
        if cfg.skip_if_exists and (entry.path / cfg.skip_if_exists).exists():
            return False

        cache_dir = self.cache_dir_for(entry.worker_id)
        cmd = [part.replace("{cache_dir}", str(cache_dir)) for part in cfg.command]
        log.info("Installing dependencies in %s (cache %s)", entry.path, cache_dir)
        try:
            cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise WorktreeError(f"Could not create install cache {cache_dir}: {exc}") from exc
        try:
            subprocess.run(cmd, cwd=entry.path, check=True, capture_output=True, text=True)
        except FileNotFoundError as exc:
            raise WorktreeError(f"Install command not found: {cmd[0]}") from exc
        except OSError as exc:
            raise WorktreeError(f"Could not run install command {cmd[0]}: {exc}") from exc
        except subprocess.CalledProcessError as exc:
            raise WorktreeError(
                f"Dependency install failed in {entry.path}: {(exc.stderr or '').strip()[:500]}"
            ) from exc
        return True

    def discard(self, entry: WorktreeEntry) -> None:
        """Drop a freshly built sandbox whose claim did not go through."""
        log.info("Discarding worktree %s", entry.path)
        self._remove_worktree(entry.path)
        delete_branch(self.repo, entry.branch)
        self._remove_if_empty(entry.path.parent)

    # ------------------------------------------------------------------
    # finish
    # ------------------------------------------------------------------

    def check_ready_to_finish(self, entry: WorktreeEntry) -> int:
        """Validate finish preconditions; returns the number of commits to integrate."""
        if not entry.path.is_dir():
            raise WorktreeNotFoundError(entry.worker_id, entry.task_id, str(entry.path))

        branch = git_output(entry.path, "branch", "--show-current")
        if branch != entry.branch:
            raise BranchMismatchError(str(entry.path), entry.branch, branch)

        dirty = status_porcelain(entry.path)
        if dirty:
            raise DirtyWorktreeError(str(entry.path), dirty)

        ahead = int(git_output(entry.path, "rev-list", "--count", f"{self.upstream}..HEAD") or "0")
        if ahead == 0:
            raise NoCommitsError(entry.branch)
        log.info("Branch %s has %d commit(s) to merge", entry.branch, ahead)
        return ahead

    def teardown(self, entry: WorktreeEntry) -> None:
        """Remove sandbox directory, local branch and remote branch after a merge."""
        self._remove_worktree(entry.path)
        delete_branch(self.repo, entry.branch)
        delete_remote_branch(self.repo, self.remote, entry.branch)
        self._remove_if_empty(entry.path.parent)

    # ------------------------------------------------------------------
    # cleanup / listing
    # ------------------------------------------------------------------

    def plan_cleanup(self, worker_id: str) -> CleanupPlan:
        plan = CleanupPlan(worker_id=worker_id)
        worker_dir = self.worktrees_root / worker_id
        if worker_dir.is_dir():
            plan.worktrees = sorted(p for p in worker_dir.iterdir() if p.is_dir())
        plan.local_branches = git_lines(
            self.repo, "branch", "--list", f"{worker_id}/*", "--format=%(refname:short)"
        )
        prefix = f"{self.remote}/"
        plan.remote_branches = [
            ref.removeprefix(prefix)
            for ref in git_lines(
                self.repo, "branch", "-r", "--list", f"{prefix}{worker_id}/*", "--format=%(refname:short)"
            )
        ]
        return plan

    def cleanup(self, worker_id: str, plan: CleanupPlan | None = None) -> CleanupPlan:
        """Remove every sandbox and branch of ``worker_id``. Destructive; confirm first."""
        plan = plan or self.plan_cleanup(worker_id)
        for path in plan.worktrees:
            log.info("Removing worktree %s", path)
            self._remove_worktree(path)
        self._remove_if_empty(self.worktrees_root / worker_id)
        for branch in plan.local_branches:
            delete_branch(self.repo, branch)
        for branch in plan.remote_branches:
            delete_remote_branch(self.repo, self.remote, branch)
        prune_worktrees(self.repo)
        return plan

    def list_entries(self) -> list[WorktreeEntry]:
        """Registered sandboxes under the worktrees root."""
        root = self.worktrees_root.resolve()
        entries: list[WorktreeEntry] = []
        for item in build_registry(self.repo).entries:
            path = Path(item.path).resolve()
            try:
                parts = path.relative_to(root).parts
            except ValueError:
                continue
            if len(parts) != 2:
                continue
            entries.append(
                WorktreeEntry(
                    worker_id=parts[0],
                    task_id=parts[1],
                    path=path,
                    branch=item.branch,
                    commit=item.commit,
                    last_seen=item.last_seen,
                )
            )
        return entries

    # ------------------------------------------------------------------
    # guard
    # ------------------------------------------------------------------

    def verify_context(
        self,
        cwd: Path,
        worker_id: str | None = None,
        task_id: str | None = None,
    ) -> WorktreeEntry:
        """Refuse to proceed unless ``cwd`` is inside the expected sandbox."""
        here = Path(cwd).resolve()
        if here == self.repo.resolve():
            raise GuardError(
                f"{here} is the main repository, not a worktree. "
                "Run 'start <worker> <task>' and work in the directory it prints."
            )
        try:
            parts = here.relative_to(self.worktrees_root.resolve()).parts
        except ValueError:
            parts = ()
        if len(parts) < 2:
            raise GuardError(
                f"{here} does not match the worktree layout {self.worktrees_root}/<worker>/<task>"
            )
        found_worker, found_task = parts[0], parts[1]
        if (worker_id and found_worker != worker_id) or (task_id and found_task != task_id):
            expected = f"{worker_id or '*'}/{task_id or '*'}"
            raise GuardError(
                f"Current worktree belongs to {found_worker}/{found_task}, expected {expected}"
            )

        entry = self.entry_for(found_worker, found_task)
        proc = run_git(here, "branch", "--show-current", check=False)
        branch = proc.stdout.strip()
        if branch != entry.branch:
            log.warning("Branch mismatch: expected '%s', got '%s'", entry.branch, branch)
        return entry

    # ------------------------------------------------------------------

    def _remove_worktree(self, path: Path) -> None:
        proc = run_git(self.repo, "worktree", "remove", "--force", str(path), check=False)
        if proc.returncode != 0:
            log.warning("git worktree remove %s failed: %s", path, proc.stderr.strip())
            if path.exists():
                shutil.rmtree(path)
            prune_worktrees(self.repo)

    @staticmethod
    def _remove_if_empty(directory: Path) -> None:
        if directory.is_dir() and not any(directory.iterdir()):
            directory.rmdir()
