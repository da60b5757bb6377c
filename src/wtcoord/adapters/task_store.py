"""Adapter for the external task-store CLI (``bd``).

Only four commands are used: ``show``, ``update``, ``close`` and ``list``.
Everything else about the tracker's data model stays on its side.
"""

from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass, field
from typing import Any, Protocol

from wtcoord.errors import TaskStoreError
from wtcoord.protocol.models import TaskClaim


class TaskStore(Protocol):
    def show(self, task_id: str) -> TaskClaim: ...

    def mark_in_progress(self, task_id: str, worker_id: str) -> None: ...

    def close(self, task_id: str, reason: str, actor: str) -> None: ...

    def list_in_progress(self) -> list[dict[str, Any]]: ...


@dataclass(slots=True)
class TaskStoreCLI:
    """Runs the task-store binary as a subprocess and parses its JSON."""

    command: list[str] = field(default_factory=lambda: ["npx", "bd"])
    cwd: str = "."
    timeout: float = 30.0

    def _run(self, args: list[str]) -> str:
        cmd = [*self.command, *args]
        try:
            proc = subprocess.run(
                cmd,
                cwd=self.cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            raise TaskStoreError(
                f"'{cmd[0]}' not found. Install the task-store CLI or set task_store.command.",
                command=cmd,
                retryable=False,
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise TaskStoreError(f"{' '.join(cmd)} timed out after {self.timeout}s", command=cmd) from exc
        if proc.returncode != 0:
            raise TaskStoreError(
                f"{' '.join(cmd)} exited {proc.returncode}: {proc.stderr.strip()[:500]}",
                command=cmd,
            )
        return proc.stdout

    def _run_json(self, args: list[str]) -> Any:
        out = self._run(args)
        try:
            return json.loads(out) if out.strip() else None
        except json.JSONDecodeError as exc:
            raise TaskStoreError(f"Unparseable JSON from task store: {out[:200]!r}", command=args) from exc

    def show(self, task_id: str) -> TaskClaim:
        data = self._run_json(["show", task_id, "--json"])
        # bd returns a single object or a one-element list depending on version.
        if isinstance(data, list):
            data = next((x for x in data if isinstance(x, dict)), None)
        if not isinstance(data, dict):
            raise TaskStoreError(f"Task store returned no record for {task_id}", retryable=False)
        return TaskClaim.from_store(task_id, data)

    def mark_in_progress(self, task_id: str, worker_id: str) -> None:
        self._run(
            [
                "update",
                task_id,
                "--status",
                "in_progress",
                "--assignee",
                worker_id,
                "--actor",
                worker_id,
            ]
        )

    def close(self, task_id: str, reason: str, actor: str) -> None:
        self._run(["close", task_id, "--reason", reason, "--actor", actor])

    def list_in_progress(self) -> list[dict[str, Any]]:
        data = self._run_json(["list", "--status", "in_progress", "--json"])
        if not isinstance(data, list):
            return []
        return [x for x in data if isinstance(x, dict)]
