"""Global test fixtures for wtcoord."""

from __future__ import annotations

import shutil
from pathlib import Path

import pytest

from tests.helpers.fake_store import FakeTaskStore


@pytest.fixture
def tmp_workdir(tmp_path: Path) -> Path:
    """Provide a temporary working directory for file operation tests."""
    return tmp_path


@pytest.fixture
def fake_store() -> FakeTaskStore:
    return FakeTaskStore()


@pytest.fixture
def git_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate git from the user's configuration and give it an identity."""
    if shutil.which("git") is None:
        pytest.skip("git not installed")
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    for role in ("AUTHOR", "COMMITTER"):
        monkeypatch.setenv(f"GIT_{role}_NAME", "Test Worker")
        monkeypatch.setenv(f"GIT_{role}_EMAIL", "worker@example.com")
    return tmp_path
