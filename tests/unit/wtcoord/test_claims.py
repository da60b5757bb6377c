"""Tests for the two-phase claim protocol."""

from __future__ import annotations

from pathlib import Path

import pytest

from tests.helpers.fake_store import FakeTaskStore
from wtcoord.coordinator.claims import ClaimCoordinator, check_claimable
from wtcoord.errors import AlreadyClaimedError, AlreadyClosedError, ClaimWriteError, TaskStoreError
from wtcoord.protocol.models import TaskClaim


def _claims(tmp_path: Path, store: FakeTaskStore, **kwargs) -> ClaimCoordinator:
    return ClaimCoordinator(
        store=store,
        lock_path=tmp_path / "locks" / "claims.lock",
        lock_timeout=1,
        write_retry_delay=0,
        sleep=lambda _s: None,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# check_claimable
# ---------------------------------------------------------------------------


def test_open_task_is_claimable() -> None:
    check_claimable(TaskClaim("t-1"), "w1")


def test_own_in_progress_task_is_claimable_again() -> None:
    check_claimable(TaskClaim("t-1", "in_progress", "w1"), "w1")


def test_in_progress_without_assignee_is_claimable() -> None:
    check_claimable(TaskClaim("t-1", "in_progress", None), "w1")


def test_task_held_by_other_worker_is_rejected() -> None:
    with pytest.raises(AlreadyClaimedError) as exc_info:
        check_claimable(TaskClaim("t-1", "in_progress", "w2"), "w1")
    assert exc_info.value.assignee == "w2"
    assert "w2" in str(exc_info.value)


def test_closed_task_is_rejected() -> None:
    with pytest.raises(AlreadyClosedError):
        check_claimable(TaskClaim("t-1", "closed", "w1"), "w1")


# ---------------------------------------------------------------------------
# claim
# ---------------------------------------------------------------------------


def test_claim_runs_prepare_then_writes(tmp_path: Path, fake_store: FakeTaskStore) -> None:
    fake_store.add("t-1")
    order: list[str] = []

    def prepare() -> str:
        order.append("prepare")
        return "sandbox"

    result = _claims(tmp_path, fake_store).claim("t-1", "w1", prepare, lambda _p: order.append("rollback"))

    assert result == "sandbox"
    assert order == ["prepare"]
    assert fake_store.tasks["t-1"]["status"] == "in_progress"
    assert fake_store.tasks["t-1"]["assignee"] == "w1"
    assert [c[0] for c in fake_store.calls] == ["show", "show", "update"]


def test_precheck_failure_skips_prepare(tmp_path: Path, fake_store: FakeTaskStore) -> None:
    fake_store.add("t-1", status="in_progress", assignee="w2")
    prepared: list[str] = []
    with pytest.raises(AlreadyClaimedError):
        _claims(tmp_path, fake_store).claim("t-1", "w1", lambda: prepared.append("x"), lambda _p: None)
    assert prepared == []
    assert fake_store.tasks["t-1"]["assignee"] == "w2"


def test_claim_lost_between_phases_rolls_back(tmp_path: Path, fake_store: FakeTaskStore) -> None:
    fake_store.add("t-1")

    def steal(show_count: int) -> None:
        if show_count == 1:
            fake_store.tasks["t-1"].update(status="in_progress", assignee="w2")

    fake_store.after_show = steal
    rolled_back: list[str] = []

    with pytest.raises(AlreadyClaimedError):
        _claims(tmp_path, fake_store).claim("t-1", "w1", lambda: "sandbox", rolled_back.append)

    assert rolled_back == ["sandbox"]
    assert fake_store.tasks["t-1"]["assignee"] == "w2"
    assert not any(c[0] == "update" for c in fake_store.calls)


def test_transient_write_failure_is_retried_under_lock(tmp_path: Path, fake_store: FakeTaskStore) -> None:
    fake_store.add("t-1")
    fake_store.fail_writes = 2
    claims = _claims(tmp_path, fake_store, write_attempts=3)
    claims.claim("t-1", "w1", lambda: None, lambda _p: None)
    assert [c[0] for c in fake_store.calls].count("update") == 3
    assert fake_store.tasks["t-1"]["status"] == "in_progress"


def test_exhausted_write_retries_roll_back(tmp_path: Path, fake_store: FakeTaskStore) -> None:
    fake_store.add("t-1")
    fake_store.fail_writes = 5
    rolled_back: list[str] = []
    with pytest.raises(ClaimWriteError) as exc_info:
        _claims(tmp_path, fake_store, write_attempts=2).claim("t-1", "w1", lambda: "sb", rolled_back.append)
    assert exc_info.value.retryable
    assert rolled_back == ["sb"]
    assert fake_store.tasks["t-1"]["status"] == "open"


def test_lock_is_released_after_commit(tmp_path: Path, fake_store: FakeTaskStore) -> None:
    fake_store.add("t-1")
    claims = _claims(tmp_path, fake_store)
    claims.commit("t-1", "w1")
    assert not claims.lock_path.exists()


def test_unknown_task_propagates_store_error(tmp_path: Path, fake_store: FakeTaskStore) -> None:
    with pytest.raises(TaskStoreError):
        _claims(tmp_path, fake_store).precheck("missing", "w1")


def test_unexpected_error_during_commit_still_rolls_back(tmp_path: Path, fake_store: FakeTaskStore) -> None:
    fake_store.add("t-1")

    def fail_locked_read(show_count: int) -> None:
        if show_count == 2:
            raise OSError("task store database unreadable")

    fake_store.after_show = fail_locked_read
    rolled_back: list[str] = []

    with pytest.raises(OSError):
        _claims(tmp_path, fake_store).claim("t-1", "w1", lambda: "sandbox", rolled_back.append)

    assert rolled_back == ["sandbox"]
    assert fake_store.tasks["t-1"]["status"] == "open"


def test_interrupt_during_commit_rolls_back(tmp_path: Path, fake_store: FakeTaskStore) -> None:
    fake_store.add("t-1")

    def interrupt(show_count: int) -> None:
        if show_count == 2:
            raise KeyboardInterrupt

    fake_store.after_show = interrupt
    rolled_back: list[str] = []

    with pytest.raises(KeyboardInterrupt):
        _claims(tmp_path, fake_store).claim("t-1", "w1", lambda: "sandbox", rolled_back.append)
    assert rolled_back == ["sandbox"]
