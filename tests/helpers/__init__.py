"""Shared test helpers for the wtcoord test suite."""

from __future__ import annotations

from tests.helpers.coordinator import build_coordinator
from tests.helpers.fake_store import FakeTaskStore
from tests.helpers.git_repos import commit_file, git, log_subjects, make_clone, make_origin

__all__ = ["FakeTaskStore", "build_coordinator", "commit_file", "git", "log_subjects", "make_clone", "make_origin"]
