"""Filesystem protocol types for wtcoord."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Literal

TaskStatus = Literal["open", "in_progress", "closed"]

REGISTRY_SCHEMA_VERSION = 1


def make_worktree_id(worker_id: str, task_id: str) -> str:
    """Canonical id of a sandbox; also its branch name."""
    return f"{worker_id}/{task_id}"


def heartbeat_key(worker_id: str, task_id: str) -> str:
    return f"{worker_id}-{task_id}"


@dataclass(slots=True)
class WorktreeEntry:
    worker_id: str
    task_id: str
    path: Path
    branch: str = ""
    commit: str | None = None
    last_seen: float = 0.0

    def __post_init__(self) -> None:
        self.path = Path(self.path)
        if not self.branch:
            self.branch = make_worktree_id(self.worker_id, self.task_id)

    @property
    def id(self) -> str:
        return make_worktree_id(self.worker_id, self.task_id)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["path"] = str(self.path)
        data["id"] = self.id
        return data


@dataclass(slots=True)
class TaskClaim:
    task_id: str
    status: TaskStatus = "open"
    assignee: str | None = None

    @classmethod
    def from_store(cls, task_id: str, raw: dict[str, Any]) -> "TaskClaim":
        """Build from the task store's JSON. Unknown statuses count as open."""
        status = str(raw.get("status") or "open")
        if status not in ("in_progress", "closed"):
            status = "open"
        assignee = raw.get("assignee") or None
        return cls(task_id=task_id, status=status, assignee=str(assignee) if assignee else None)  # type: ignore[arg-type]


@dataclass(slots=True)
class LockFile:
    path: str
    holder_pid: int
    acquired_at: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class Heartbeat:
    worker_id: str
    task_id: str
    timestamp: int

    @property
    def key(self) -> str:
        return heartbeat_key(self.worker_id, self.task_id)


@dataclass(slots=True)
class HeartbeatStatus:
    key: str
    age_seconds: float
    stale: bool


@dataclass(slots=True)
class RegistryEntry:
    """One row of ``git worktree list --porcelain``."""

    path: str
    branch: str = ""
    commit: str | None = None
    id: str | None = None
    last_seen: float = 0.0


@dataclass(slots=True)
class WorktreeRegistry:
    entries: list[RegistryEntry] = field(default_factory=list)
    schema_version: int = REGISTRY_SCHEMA_VERSION
    generated_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "WorktreeRegistry":
        entries: list[RegistryEntry] = []
        for item in raw.get("entries", []):
            if not isinstance(item, dict) or "path" not in item:
                continue
            entries.append(
                RegistryEntry(
                    path=str(item["path"]),
                    branch=str(item.get("branch") or ""),
                    commit=str(item["commit"]) if item.get("commit") else None,
                    id=str(item["id"]) if item.get("id") else None,
                    last_seen=float(item.get("last_seen", 0.0)),
                )
            )
        return cls(
            entries=entries,
            schema_version=int(raw.get("schema_version", REGISTRY_SCHEMA_VERSION)),
            generated_at=float(raw.get("generated_at", 0.0)),
        )


def default_store_layout(store_dir: Path) -> dict[str, Path]:
    return {
        "root": store_dir,
        "locks": store_dir / "locks",
        "heartbeats": store_dir / "heartbeats",
        "claim_lock": store_dir / "locks" / "claims.lock",
        "merge_lock": store_dir / "locks" / "merge-queue.lock",
        "registry_lock": store_dir / "locks" / "worktrees.lock",
        "registry": store_dir / "worktrees.json",
    }
