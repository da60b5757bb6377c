"""Tests for wtcoord.workspace.registry."""

from __future__ import annotations

from pathlib import Path

from wtcoord.protocol.models import RegistryEntry, WorktreeRegistry
from wtcoord.workspace.registry import (
    audit_registry,
    canonical_id,
    filter_stale_entries,
    parse_porcelain,
    read_registry,
    write_registry,
)

PORCELAIN = """worktree /src/app
HEAD 1111111111111111111111111111111111111111
branch refs/heads/main

worktree /src/worktrees/w1/t-1
HEAD 2222222222222222222222222222222222222222
branch refs/heads/w1/t-1

worktree /src/worktrees/w2/t-2
HEAD 3333333333333333333333333333333333333333
detached
"""


def test_parse_porcelain_extracts_entries() -> None:
    entries = parse_porcelain(PORCELAIN, now=10.0)
    assert [e.path for e in entries] == ["/src/app", "/src/worktrees/w1/t-1", "/src/worktrees/w2/t-2"]
    assert entries[0].branch == "main"
    assert entries[0].id is None
    assert entries[1].branch == "w1/t-1"
    assert entries[1].id == "w1/t-1"
    assert entries[1].commit == "2" * 40
    assert entries[2].branch == ""
    assert all(e.last_seen == 10.0 for e in entries)


def test_canonical_id() -> None:
    assert canonical_id("/x/worktrees/w1/t-1") == "w1/t-1"
    assert canonical_id("/x/worktrees/w1/t-1/") == "w1/t-1"
    assert canonical_id("C:\\x\\worktrees\\w1\\t-1") == "w1/t-1"
    assert canonical_id("/x/worktrees/w1") is None
    assert canonical_id("/x/app") is None


def test_audit_clean_registry_has_no_issues() -> None:
    registry = WorktreeRegistry(entries=parse_porcelain(PORCELAIN, now=0))
    registry.entries[2].branch = "w2/t-2"
    assert audit_registry(registry) == []


def test_audit_reports_mismatches_and_duplicates() -> None:
    registry = WorktreeRegistry(
        entries=[
            RegistryEntry(path="/src/app", branch="main"),
            RegistryEntry(path="/a/worktrees/w1/t-1", branch="w1/other", id="w1/t-1"),
            RegistryEntry(path="/b/worktrees/w1/t-1", branch="w1/t-1", id="w1/t-1"),
            RegistryEntry(path="/c/worktrees/loose", branch="loose"),
        ]
    )
    persisted = WorktreeRegistry(entries=[RegistryEntry(path="/b/worktrees/w1/t-1", id="w9/t-9")])
    issues = audit_registry(registry, persisted)
    assert "Branch mismatch: w1/other != w1/t-1" in issues
    assert "Id mismatch: entry.id=w9/t-9 pathId=w1/t-1" in issues
    assert "Missing canonical id for path /c/worktrees/loose" in issues
    assert any(i.startswith("Duplicate worktrees for w1/t-1") for i in issues)
    assert not any("/src/app" in i for i in issues)


def test_filter_stale_entries() -> None:
    entries = [RegistryEntry(path="a", last_seen=100.0), RegistryEntry(path="b", last_seen=500.0)]
    assert [e.path for e in filter_stale_entries(entries, 300.0, now=600.0)] == ["b"]


def test_write_then_read_registry(tmp_path: Path) -> None:
    path = tmp_path / "worktrees.json"
    registry = WorktreeRegistry(entries=parse_porcelain(PORCELAIN, now=5.0), generated_at=5.0)
    write_registry(path, registry)
    loaded = read_registry(path)
    assert loaded is not None
    assert loaded.generated_at == 5.0
    assert [e.id for e in loaded.entries] == [None, "w1/t-1", "w2/t-2"]


def test_read_registry_missing_or_corrupt(tmp_path: Path) -> None:
    path = tmp_path / "worktrees.json"
    assert read_registry(path) is None
    path.write_text("[1, 2]")
    assert read_registry(path) is None


def test_audit_checks_recorded_ids_from_previous_sync(tmp_path: Path) -> None:
    path = tmp_path / "worktrees.json"
    fresh = WorktreeRegistry(entries=parse_porcelain(PORCELAIN, now=0))
    stored = WorktreeRegistry(entries=parse_porcelain(PORCELAIN, now=0))
    stored.entries[1].id = "w7/t-7"
    write_registry(path, stored)

    issues = audit_registry(fresh, read_registry(path))

    assert issues == ["Id mismatch: entry.id=w7/t-7 pathId=w1/t-1"]
    assert audit_registry(fresh, fresh) == []
