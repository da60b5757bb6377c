"""Thin wrapper around the git CLI."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from wtcoord.errors import GitError

log = logging.getLogger(__name__)


def run_git(cwd: Path, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
    """Run ``git <args>`` in ``cwd``.

    With ``check`` a non-zero exit raises ``GitError`` carrying stderr;
    without it the completed process is returned for the caller to inspect.
    """
    log.debug("git %s (cwd=%s)", " ".join(args), cwd)
    proc = subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=False,
    )
    if check and proc.returncode != 0:
        raise GitError(list(args), proc.returncode, proc.stderr)
    return proc


def git_output(cwd: Path, *args: str) -> str:
    return run_git(cwd, *args).stdout.strip()


def git_lines(cwd: Path, *args: str) -> list[str]:
    return [line for line in run_git(cwd, *args).stdout.splitlines() if line.strip()]


def resolve_main_repo(cwd: Path) -> Path:
    """Return the main checkout that owns ``cwd`` (itself, or a worktree's parent repo)."""
    common = Path(git_output(cwd, "rev-parse", "--git-common-dir"))
    if not common.is_absolute():
        common = (cwd / common).resolve()
    if common.name == ".git":
        return common.parent
    return common


def current_branch(cwd: Path) -> str:
    return git_output(cwd, "branch", "--show-current")


def rev_parse(cwd: Path, ref: str) -> str:
    return git_output(cwd, "rev-parse", ref)


def branch_exists(repo: Path, branch: str) -> bool:
    return run_git(repo, "show-ref", "--verify", "--quiet", f"refs/heads/{branch}", check=False).returncode == 0


def delete_branch(repo: Path, branch: str) -> bool:
    """Force-delete a local branch; False when it did not exist."""
    proc = run_git(repo, "branch", "-D", branch, check=False)
    if proc.returncode != 0:
        log.debug("git branch -D %s: %s", branch, proc.stderr.strip())
        return False
    return True


def delete_remote_branch(repo: Path, remote: str, branch: str) -> bool:
    proc = run_git(repo, "push", remote, "--delete", branch, check=False)
    if proc.returncode != 0:
        log.debug("git push %s --delete %s: %s", remote, branch, proc.stderr.strip())
        return False
    return True


def prune_worktrees(repo: Path) -> None:
    """Run ``git worktree prune`` to clean up stale bookkeeping entries."""
    proc = run_git(repo, "worktree", "prune", check=False)
    if proc.returncode != 0:
        log.warning("git worktree prune failed: %s", proc.stderr.strip())


def status_porcelain(cwd: Path) -> list[str]:
    return [line for line in run_git(cwd, "status", "--porcelain").stdout.splitlines() if line.strip()]


def changed_files(cwd: Path, base: str, head: str) -> set[str]:
    return set(git_lines(cwd, "diff", "--name-only", f"{base}..{head}"))
