"""Configuration schema for .wtcoord.yaml files."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(slots=True)
class RepoConfig:
    main_branch: str = "main"
    remote: str = "origin"
    worktrees_dir: str = "../worktrees"  # relative to the main checkout


@dataclass(slots=True)
class StoreConfig:
    dir: str = ".beads"  # shared store: locks/, heartbeats/, worktrees.json


@dataclass(slots=True)
class TaskStoreConfig:
    command: list[str] = field(default_factory=lambda: ["npx", "bd"])
    timeout_seconds: float = 30.0
    write_attempts: int = 3
    write_retry_delay_seconds: float = 0.5
    close_reason: str = "Implemented and merged"


@dataclass(slots=True)
class LockConfig:
    claim_timeout_seconds: float = 5.0
    merge_timeout_seconds: float = 120.0
    registry_timeout_seconds: float = 5.0
    poll_interval_seconds: float = 0.1


@dataclass(slots=True)
class HeartbeatConfig:
    enabled: bool = True
    interval_seconds: float = 30.0
    stale_after_seconds: float = 120.0


@dataclass(slots=True)
class MergeConfig:
    max_attempts: int = 5
    base_delay_seconds: float = 1.0


@dataclass(slots=True)
class InstallConfig:
    command: list[str] = field(default_factory=list)  # empty = skip; "{cache_dir}" is substituted
    when_exists: str = "package.json"
    skip_if_exists: str = "node_modules"
    cache_root: str = "~/.cache/wtcoord"


@dataclass(slots=True)
class GuardConfig:
    enforce: bool = True
    registry_stale_after_seconds: float = 300.0


@dataclass(slots=True)
class CoordYamlConfig:
    version: int = 1
    repo: RepoConfig = field(default_factory=RepoConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    task_store: TaskStoreConfig = field(default_factory=TaskStoreConfig)
    locks: LockConfig = field(default_factory=LockConfig)
    heartbeat: HeartbeatConfig = field(default_factory=HeartbeatConfig)
    merge: MergeConfig = field(default_factory=MergeConfig)
    install: InstallConfig = field(default_factory=InstallConfig)
    guard: GuardConfig = field(default_factory=GuardConfig)
