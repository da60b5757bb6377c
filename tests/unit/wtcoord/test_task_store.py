"""Tests for the task-store CLI adapter."""

from __future__ import annotations

import json
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from wtcoord.adapters.task_store import TaskStoreCLI
from wtcoord.errors import TaskStoreError


def _completed(stdout: str = "", returncode: int = 0, stderr: str = "") -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


@patch("wtcoord.adapters.task_store.subprocess.run")
def test_show_parses_single_object(mock_run: MagicMock) -> None:
    mock_run.return_value = _completed(json.dumps({"id": "t-1", "status": "in_progress", "assignee": "w2"}))
    claim = TaskStoreCLI(command=["bd"], cwd="/repo").show("t-1")
    assert (claim.status, claim.assignee) == ("in_progress", "w2")
    mock_run.assert_called_once_with(
        ["bd", "show", "t-1", "--json"],
        cwd="/repo",
        capture_output=True,
        text=True,
        timeout=30.0,
        check=False,
    )


@patch("wtcoord.adapters.task_store.subprocess.run")
def test_show_accepts_list_form(mock_run: MagicMock) -> None:
    mock_run.return_value = _completed(json.dumps([{"id": "t-1", "status": "closed"}]))
    assert TaskStoreCLI(command=["bd"]).show("t-1").status == "closed"


@patch("wtcoord.adapters.task_store.subprocess.run")
def test_show_treats_unknown_status_as_open(mock_run: MagicMock) -> None:
    mock_run.return_value = _completed(json.dumps({"id": "t-1", "status": "blocked"}))
    assert TaskStoreCLI(command=["bd"]).show("t-1").status == "open"


@patch("wtcoord.adapters.task_store.subprocess.run")
def test_show_with_empty_output_is_not_retryable(mock_run: MagicMock) -> None:
    mock_run.return_value = _completed("")
    with pytest.raises(TaskStoreError) as exc_info:
        TaskStoreCLI(command=["bd"]).show("t-1")
    assert not exc_info.value.retryable


@patch("wtcoord.adapters.task_store.subprocess.run")
def test_mark_in_progress_sets_assignee_and_actor(mock_run: MagicMock) -> None:
    mock_run.return_value = _completed()
    TaskStoreCLI(command=["npx", "bd"]).mark_in_progress("t-1", "w1")
    assert mock_run.call_args.args[0] == [
        "npx", "bd", "update", "t-1", "--status", "in_progress", "--assignee", "w1", "--actor", "w1",
    ]


@patch("wtcoord.adapters.task_store.subprocess.run")
def test_close_passes_reason(mock_run: MagicMock) -> None:
    mock_run.return_value = _completed()
    TaskStoreCLI(command=["bd"]).close("t-1", "Implemented and merged", "w1")
    assert mock_run.call_args.args[0] == ["bd", "close", "t-1", "--reason", "Implemented and merged", "--actor", "w1"]


@patch("wtcoord.adapters.task_store.subprocess.run")
def test_nonzero_exit_is_retryable_store_error(mock_run: MagicMock) -> None:
    mock_run.return_value = _completed(returncode=1, stderr="database is locked")
    with pytest.raises(TaskStoreError) as exc_info:
        TaskStoreCLI(command=["bd"]).mark_in_progress("t-1", "w1")
    assert exc_info.value.retryable
    assert "database is locked" in str(exc_info.value)


@patch("wtcoord.adapters.task_store.subprocess.run", side_effect=FileNotFoundError("bd"))
def test_missing_binary_is_not_retryable(mock_run: MagicMock) -> None:
    with pytest.raises(TaskStoreError) as exc_info:
        TaskStoreCLI(command=["bd"]).show("t-1")
    assert not exc_info.value.retryable


@patch("wtcoord.adapters.task_store.subprocess.run", side_effect=subprocess.TimeoutExpired("bd", 30))
def test_timeout_is_store_error(mock_run: MagicMock) -> None:
    with pytest.raises(TaskStoreError, match="timed out"):
        TaskStoreCLI(command=["bd"]).list_in_progress()


@patch("wtcoord.adapters.task_store.subprocess.run")
def test_unparseable_json_raises(mock_run: MagicMock) -> None:
    mock_run.return_value = _completed("not json")
    with pytest.raises(TaskStoreError, match="Unparseable"):
        TaskStoreCLI(command=["bd"]).list_in_progress()


@patch("wtcoord.adapters.task_store.subprocess.run")
def test_list_in_progress_filters_non_objects(mock_run: MagicMock) -> None:
    mock_run.return_value = _completed(json.dumps([{"id": "t-1"}, "junk", {"id": "t-2"}]))
    assert [t["id"] for t in TaskStoreCLI(command=["bd"]).list_in_progress()] == ["t-1", "t-2"]
