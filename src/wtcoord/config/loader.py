"""YAML config loader for wtcoord."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from wtcoord.config.schema import (
    CoordYamlConfig,
    GuardConfig,
    HeartbeatConfig,
    InstallConfig,
    LockConfig,
    MergeConfig,
    RepoConfig,
    StoreConfig,
    TaskStoreConfig,
)
from wtcoord.errors import ConfigurationError

DEFAULT_CONFIG_NAME = ".wtcoord.yaml"


def load_coord_yaml(path: str | Path) -> CoordYamlConfig:
    p = Path(path)
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) if p.exists() else {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {p}: {exc}") from exc
    if not isinstance(raw, dict):
        raw = {}

    repo = RepoConfig(**_pick(_section(raw, "repo"), RepoConfig))
    store = StoreConfig(**_pick(_section(raw, "store"), StoreConfig))
    task_store = TaskStoreConfig(**_pick(_section(raw, "task_store"), TaskStoreConfig))
    locks = LockConfig(**_pick(_section(raw, "locks"), LockConfig))
    heartbeat = HeartbeatConfig(**_pick(_section(raw, "heartbeat"), HeartbeatConfig))
    merge = MergeConfig(**_pick(_section(raw, "merge"), MergeConfig))
    install = InstallConfig(**_pick(_section(raw, "install"), InstallConfig))
    guard = GuardConfig(**_pick(_section(raw, "guard"), GuardConfig))

    if isinstance(task_store.command, str):
        task_store.command = task_store.command.split()
    if isinstance(install.command, str):
        install.command = install.command.split()
    if not task_store.command:
        raise ConfigurationError("task_store.command must name the task-store CLI")
    if merge.max_attempts < 1:
        raise ConfigurationError("merge.max_attempts must be at least 1")

    return CoordYamlConfig(
        version=int(raw.get("version", 1)),
        repo=repo,
        store=store,
        task_store=task_store,
        locks=locks,
        heartbeat=heartbeat,
        merge=merge,
        install=install,
        guard=guard,
    )


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name, {})
    return value if isinstance(value, dict) else {}


def _pick(raw: dict[str, Any], model_type: type[Any]) -> dict[str, Any]:
    allowed = set(model_type.__dataclass_fields__.keys())
    return {k: v for k, v in raw.items() if k in allowed}
