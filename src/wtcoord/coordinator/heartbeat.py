"""Per-(worker, task) liveness heartbeats.

A detached process rewrites ``<dir>/<worker>-<task>.hb`` with the current
epoch seconds every interval. Anyone can compute the age of that file's
timestamp; an old one means the worker crashed or stalled. Heartbeats are
informational and never used as locks.
"""

from __future__ import annotations

import os
import signal
import subprocess
import sys
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from wtcoord.log import get_logger
from wtcoord.protocol.io import read_int, write_text_atomic
from wtcoord.protocol.models import Heartbeat, HeartbeatStatus, heartbeat_key

logger = get_logger(__name__)


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


@dataclass
class HeartbeatMonitor:
    heartbeats_dir: Path
    interval_seconds: float = 30.0
    stale_after_seconds: float = 120.0
    clock: Callable[[], float] = field(default=time.time, repr=False)

    def hb_path(self, worker_id: str, task_id: str) -> Path:
        return self.heartbeats_dir / f"{heartbeat_key(worker_id, task_id)}.hb"

    def pid_path(self, worker_id: str, task_id: str) -> Path:
        return self.heartbeats_dir / f"{heartbeat_key(worker_id, task_id)}.pid"

    def beat(self, worker_id: str, task_id: str) -> Heartbeat:
        hb = Heartbeat(worker_id=worker_id, task_id=task_id, timestamp=int(self.clock()))
        write_text_atomic(self.hb_path(worker_id, task_id), f"{hb.timestamp}\n")
        return hb

    def age(self, worker_id: str, task_id: str) -> float | None:
        ts = read_int(self.hb_path(worker_id, task_id))
        return None if ts is None else self.clock() - ts

    def running_pid(self, worker_id: str, task_id: str) -> int | None:
        pid = read_int(self.pid_path(worker_id, task_id))
        if pid is not None and _pid_alive(pid):
            return pid
        return None

    # ------------------------------------------------------------------

    def start(self, worker_id: str, task_id: str) -> int:
        """Spawn the detached heartbeat writer; returns its pid."""
        existing = self.running_pid(worker_id, task_id)
        if existing is not None:
            return existing

        # A leftover pid file from a dead writer would make the new one exit at once.
        self.pid_path(worker_id, task_id).unlink(missing_ok=True)
        self.beat(worker_id, task_id)
        cmd = [
            sys.executable,
            "-m",
            "wtcoord",
            "heartbeat",
            "run",
            worker_id,
            task_id,
            "--dir",
            str(self.heartbeats_dir),
            "--interval",
            str(self.interval_seconds),
        ]
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
            close_fds=True,
        )
        write_text_atomic(self.pid_path(worker_id, task_id), f"{proc.pid}\n")
        logger.info("heartbeat_started", worker=worker_id, task=task_id, pid=proc.pid)
        return proc.pid

    def run(
        self,
        worker_id: str,
        task_id: str,
        max_ticks: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> int:
        """Heartbeat loop. Exits once the pid file no longer names this process."""
        me = os.getpid()
        pid_file = self.pid_path(worker_id, task_id)
        if read_int(pid_file) is None:
            write_text_atomic(pid_file, f"{me}\n")
        ticks = 0
        while max_ticks is None or ticks < max_ticks:
            if read_int(pid_file) != me:
                break
            self.beat(worker_id, task_id)
            if read_int(pid_file) != me:
                # stop() ran during the write; do not leave a fresh-looking file behind.
                self.hb_path(worker_id, task_id).unlink(missing_ok=True)
                break
            ticks += 1
            sleep(self.interval_seconds)
        return ticks

    def stop(self, worker_id: str, task_id: str) -> None:
        """Stop the writer if any and remove its files. Safe to call repeatedly."""
        pid_file = self.pid_path(worker_id, task_id)
        pid = read_int(pid_file)
        pid_file.unlink(missing_ok=True)
        if pid is not None and pid != os.getpid() and _pid_alive(pid):
            try:
                os.kill(pid, signal.SIGTERM)
            except ProcessLookupError:
                pass
            logger.info("heartbeat_stopped", worker=worker_id, task=task_id, pid=pid)
        self.hb_path(worker_id, task_id).unlink(missing_ok=True)

    def stop_worker(self, worker_id: str, task_ids: list[str]) -> None:
        for task_id in task_ids:
            self.stop(worker_id, task_id)

    # ------------------------------------------------------------------

    def list_heartbeats(self) -> list[HeartbeatStatus]:
        """Lock-free snapshot of every heartbeat. Reads may be slightly stale."""
        if not self.heartbeats_dir.is_dir():
            return []
        now = self.clock()
        out: list[HeartbeatStatus] = []
        for path in sorted(self.heartbeats_dir.glob("*.hb")):
            ts = read_int(path)
            if ts is None:
                # Vanished or half-written between glob and read.
                logger.debug("heartbeat_unreadable", path=str(path))
                continue
            age = now - ts
            out.append(HeartbeatStatus(key=path.stem, age_seconds=age, stale=age > self.stale_after_seconds))
        return out
