"""Two-phase task claiming against the shared task store.

Claiming is optimistic concurrency control done by hand:

1. ``precheck`` reads the task without any lock. It is cheap and rejects
   obviously taken work before a slow sandbox build.
2. The caller builds its sandbox. Meanwhile another worker may claim the
   same task.
3. ``commit`` takes the claim lock, reads the task again, verifies it again
   and writes ``in_progress`` + assignee before releasing the lock. The
   verify/write pair is therefore linearised across all coordinators that
   share the lock directory.

If anything fails after step 1, the sandbox built in step 2 is rolled back
and the error propagates. The caller should pick another task rather than
retry this one.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeVar

from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_fixed

from wtcoord.adapters.task_store import TaskStore
from wtcoord.errors import (
    AlreadyClaimedError,
    AlreadyClosedError,
    ClaimWriteError,
    TaskStoreError,
)
from wtcoord.log import get_logger
from wtcoord.protocol.locks import locked_file
from wtcoord.protocol.models import TaskClaim

logger = get_logger(__name__)

P = TypeVar("P")


def check_claimable(claim: TaskClaim, worker_id: str) -> None:
    """Raise unless ``worker_id`` may take (or keep) ``claim``."""
    if claim.status == "closed":
        raise AlreadyClosedError(claim.task_id)
    if claim.status == "in_progress" and claim.assignee and claim.assignee != worker_id:
        raise AlreadyClaimedError(claim.task_id, claim.assignee)


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, TaskStoreError) and exc.retryable


@dataclass
class ClaimCoordinator:
    store: TaskStore
    lock_path: Path
    lock_timeout: float = 5.0
    write_attempts: int = 3
    write_retry_delay: float = 0.5
    poll_interval: float = 0.1
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def precheck(self, task_id: str, worker_id: str) -> TaskClaim:
        """Phase one: unsynchronised read + verify."""
        claim = self.store.show(task_id)
        check_claimable(claim, worker_id)
        return claim

    def commit(self, task_id: str, worker_id: str) -> TaskClaim:
        """Phase two: verify again and write, both under the claim lock."""
        with locked_file(self.lock_path, self.lock_timeout, self.poll_interval):
            claim = self.store.show(task_id)
            check_claimable(claim, worker_id)
            self._write_claim(task_id, worker_id)
        logger.info("task_claimed", task=task_id, worker=worker_id)
        return TaskClaim(task_id=task_id, status="in_progress", assignee=worker_id)

    def _write_claim(self, task_id: str, worker_id: str) -> None:
        # Retried inside the held lock: releasing it between attempts would reopen the race.
        retrying = Retrying(
            stop=stop_after_attempt(max(self.write_attempts, 1)),
            wait=wait_fixed(self.write_retry_delay),
            retry=retry_if_exception(_is_transient),
            sleep=self.sleep,
            before_sleep=lambda rs: logger.warning(
                "claim_write_retry",
                task=task_id,
                worker=worker_id,
                attempt=rs.attempt_number,
                error=str(rs.outcome.exception()) if rs.outcome else "",
            ),
            reraise=True,
        )
        try:
            retrying(self.store.mark_in_progress, task_id, worker_id)
        except TaskStoreError as exc:
            raise ClaimWriteError(task_id, str(exc)) from exc

    def claim(
        self,
        task_id: str,
        worker_id: str,
        prepare: Callable[[], P],
        rollback: Callable[[P], None],
    ) -> P:
        """Precheck, run ``prepare``, then commit; ``rollback`` on any later failure."""
        self.precheck(task_id, worker_id)
        prepared = prepare()
        try:
            self.commit(task_id, worker_id)
        except BaseException as exc:
            logger.warning("claim_aborted", task=task_id, worker=worker_id, error=str(exc) or type(exc).__name__)
            rollback(prepared)
            raise
        return prepared
