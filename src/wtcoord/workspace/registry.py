"""Worktree registry: ``git worktree list --porcelain`` mirrored to JSON.

The registry is what "registered as a valid sandbox" means elsewhere: a
directory under the worktrees root that git does not list is an orphan.
"""

from __future__ import annotations

import re
import time
from collections import defaultdict
from pathlib import Path

from wtcoord.protocol.io import read_json, write_json_atomic
from wtcoord.protocol.models import RegistryEntry, WorktreeRegistry
from wtcoord.workspace.git import run_git

_CANONICAL_RE = re.compile(r"worktrees/([^/]+)/([^/]+)/?$")


def parse_porcelain(text: str, now: float | None = None) -> list[RegistryEntry]:
    seen = time.time() if now is None else now
    entries: list[RegistryEntry] = []
    current: RegistryEntry | None = None
    for line in text.splitlines():
        if line.startswith("worktree "):
            if current is not None:
                entries.append(current)
            current = RegistryEntry(path=line[len("worktree "):].strip(), last_seen=seen)
        elif current is None:
            continue
        elif line.startswith("branch "):
            branch = line[len("branch "):].strip()
            current.branch = branch.removeprefix("refs/heads/")
        elif line.startswith("HEAD "):
            current.commit = line[len("HEAD "):].strip()
    if current is not None:
        entries.append(current)
    for entry in entries:
        entry.id = canonical_id(entry.path)
    return entries


def canonical_id(path: str) -> str | None:
    """``<worker>/<task>`` for paths shaped like ``.../worktrees/<worker>/<task>``."""
    match = _CANONICAL_RE.search(path.replace("\\", "/"))
    return f"{match.group(1)}/{match.group(2)}" if match else None


def build_registry(repo: Path, now: float | None = None) -> WorktreeRegistry:
    stamp = time.time() if now is None else now
    porcelain = run_git(repo, "worktree", "list", "--porcelain").stdout
    return WorktreeRegistry(entries=parse_porcelain(porcelain, stamp), generated_at=stamp)


def registered_paths(repo: Path) -> set[Path]:
    return {Path(e.path).resolve() for e in build_registry(repo).entries}


def is_registered(repo: Path, path: Path) -> bool:
    return Path(path).resolve() in registered_paths(repo)


def write_registry(path: Path, registry: WorktreeRegistry) -> None:
    write_json_atomic(path, registry.to_dict())


def read_registry(path: Path) -> WorktreeRegistry | None:
    raw = read_json(path, None)
    if not isinstance(raw, dict):
        return None
    return WorktreeRegistry.from_dict(raw)


def filter_stale_entries(entries: list[RegistryEntry], stale_after: float, now: float | None = None) -> list[RegistryEntry]:
    cutoff = (time.time() if now is None else now) - stale_after
    return [e for e in entries if e.last_seen >= cutoff]


def sync_registry(repo: Path, registry_path: Path, stale_after: float = 300.0) -> WorktreeRegistry:
    fresh = build_registry(repo)
    fresh.entries = filter_stale_entries(fresh.entries, stale_after, fresh.generated_at)
    write_registry(registry_path, fresh)
    return fresh


def _is_sandbox_path(path: str) -> bool:
    return "worktrees/" in path.replace("\\", "/")


def audit_registry(registry: WorktreeRegistry, persisted: WorktreeRegistry | None = None) -> list[str]:
    """Consistency problems among sandbox entries; the main checkout is ignored.

    ``registry`` is the fresh view from git. ``persisted`` is what an earlier
    sync wrote to disk; its recorded ids are checked against their paths.
    """
    issues: list[str] = []
    if persisted is not None:
        for entry in persisted.entries:
            derived = canonical_id(entry.path)
            if _is_sandbox_path(entry.path) and entry.id and derived and entry.id != derived:
                issues.append(f"Id mismatch: entry.id={entry.id} pathId={derived}")

    by_id: dict[str, list[str]] = defaultdict(list)
    for entry in registry.entries:
        if not _is_sandbox_path(entry.path):
            continue
        derived = canonical_id(entry.path)
        if derived is None:
            issues.append(f"Missing canonical id for path {entry.path}")
            continue
        if entry.branch and entry.branch != derived:
            issues.append(f"Branch mismatch: {entry.branch} != {derived}")
        by_id[derived].append(entry.path)
    for wt_id, paths in by_id.items():
        if len(paths) > 1:
            issues.append(f"Duplicate worktrees for {wt_id}: {', '.join(paths)}")
    return issues
