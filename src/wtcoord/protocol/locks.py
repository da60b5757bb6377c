"""Advisory cross-process file locks using flock with a bounded wait.

A lock is a file under ``<store>/locks``. While held it carries a small JSON
``LockFile`` record naming the holder; on release the file is unlinked.
Because a releaser may unlink the path between a waiter's ``open`` and its
``flock``, an acquirer re-checks after locking that the inode it holds is the
one currently at the path and starts over otherwise.

The record is informational only. Neither its presence nor its absence proves
anything about contention; the flock is the only authority.
"""

from __future__ import annotations

import contextlib
import fcntl
import json
import os
import time
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import TypeVar

from wtcoord.errors import LockTimeoutError
from wtcoord.protocol.io import read_json
from wtcoord.protocol.models import LockFile

T = TypeVar("T")

DEFAULT_POLL_INTERVAL = 0.1


def _still_linked(path: Path, fd: int) -> bool:
    try:
        st = os.stat(path)
    except FileNotFoundError:
        return False
    held = os.fstat(fd)
    return (st.st_dev, st.st_ino) == (held.st_dev, held.st_ino)


def _write_holder(fd: int, path: Path) -> LockFile:
    record = LockFile(path=str(path), holder_pid=os.getpid(), acquired_at=time.time())
    os.ftruncate(fd, 0)
    os.lseek(fd, 0, os.SEEK_SET)
    os.write(fd, json.dumps(record.to_dict()).encode("utf-8"))
    return record


@contextlib.contextmanager
def locked_file(
    path: Path,
    timeout: float,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
) -> Iterator[LockFile]:
    """Hold an exclusive lock on ``path`` for the duration of the block.

    Raises:
        LockTimeoutError: the lock was not acquired within ``timeout`` seconds.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    deadline = time.monotonic() + max(timeout, 0.0)

    while True:
        fd = os.open(path, os.O_CREAT | os.O_RDWR, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            if time.monotonic() >= deadline:
                raise LockTimeoutError(str(path), timeout) from None
            time.sleep(poll_interval)
            continue
        except BaseException:
            os.close(fd)
            raise

        if _still_linked(path, fd):
            break
        # Released and unlinked under us; the next holder will use a new inode.
        fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)

    try:
        yield _write_holder(fd, path)
    finally:
        try:
            path.unlink(missing_ok=True)
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)


def with_lock(
    lock_path: Path,
    timeout: float,
    action: Callable[[], T],
    poll_interval: float = DEFAULT_POLL_INTERVAL,
) -> T:
    """Run ``action`` while holding ``lock_path``; release on every exit path."""
    with locked_file(lock_path, timeout, poll_interval):
        return action()


def read_lock_holder(path: Path) -> LockFile | None:
    """Best-effort read of who holds ``path``. Diagnostic only."""
    raw = read_json(Path(path), None)
    if not isinstance(raw, dict) or "holder_pid" not in raw:
        return None
    try:
        return LockFile(
            path=str(raw.get("path", path)),
            holder_pid=int(raw["holder_pid"]),
            acquired_at=float(raw.get("acquired_at", 0.0)),
        )
    except (TypeError, ValueError):
        return None
