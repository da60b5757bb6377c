"""Start/finish flows wiring claims, worktrees, heartbeats and the merge queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from wtcoord.adapters.task_store import TaskStore, TaskStoreCLI
from wtcoord.config.schema import CoordYamlConfig
from wtcoord.coordinator.claims import ClaimCoordinator
from wtcoord.coordinator.heartbeat import HeartbeatMonitor
from wtcoord.coordinator.merge_queue import MergeQueue, MergeResult
from wtcoord.errors import CoordinationError, GuardError, TaskStoreError
from wtcoord.log import bind_task_context, clear_task_context, get_logger
from wtcoord.protocol.locks import locked_file
from wtcoord.protocol.models import HeartbeatStatus, WorktreeEntry, WorktreeRegistry, default_store_layout
from wtcoord.workspace.registry import audit_registry, read_registry, sync_registry
from wtcoord.workspace.worktree import CleanupPlan, WorktreeManager

logger = get_logger(__name__)


@dataclass(slots=True)
class StatusReport:
    worktrees: list[WorktreeEntry] = field(default_factory=list)
    heartbeats: list[HeartbeatStatus] = field(default_factory=list)
    in_progress: list[dict[str, Any]] = field(default_factory=list)
    store_error: str | None = None


@dataclass
class TaskCoordinator:
    worktrees: WorktreeManager
    claims: ClaimCoordinator
    heartbeats: HeartbeatMonitor
    merge_queue: MergeQueue
    store: TaskStore
    registry_path: Path
    registry_lock: Path
    registry_lock_timeout: float = 5.0
    lock_poll_interval: float = 0.1
    registry_stale_after: float = 300.0
    close_reason: str = "Implemented and merged"
    heartbeat_enabled: bool = True
    enforce_guard: bool = True

    @classmethod
    def from_config(cls, cfg: CoordYamlConfig, repo: Path) -> "TaskCoordinator":
        store_dir = (repo / cfg.store.dir).resolve()
        layout = default_store_layout(store_dir)
        store = TaskStoreCLI(
            command=list(cfg.task_store.command),
            cwd=str(repo),
            timeout=cfg.task_store.timeout_seconds,
        )
        return cls(
            worktrees=WorktreeManager(
                repo=repo,
                worktrees_root=(repo / cfg.repo.worktrees_dir).resolve(),
                main_branch=cfg.repo.main_branch,
                remote=cfg.repo.remote,
                install=cfg.install,
            ),
            claims=ClaimCoordinator(
                store=store,
                lock_path=layout["claim_lock"],
                lock_timeout=cfg.locks.claim_timeout_seconds,
                write_attempts=cfg.task_store.write_attempts,
                write_retry_delay=cfg.task_store.write_retry_delay_seconds,
                poll_interval=cfg.locks.poll_interval_seconds,
            ),
            heartbeats=HeartbeatMonitor(
                heartbeats_dir=layout["heartbeats"],
                interval_seconds=cfg.heartbeat.interval_seconds,
                stale_after_seconds=cfg.heartbeat.stale_after_seconds,
            ),
            merge_queue=MergeQueue(
                repo=repo,
                lock_path=layout["merge_lock"],
                lock_timeout=cfg.locks.merge_timeout_seconds,
                main_branch=cfg.repo.main_branch,
                remote=cfg.repo.remote,
                max_attempts=cfg.merge.max_attempts,
                base_delay=cfg.merge.base_delay_seconds,
                poll_interval=cfg.locks.poll_interval_seconds,
            ),
            store=store,
            registry_path=layout["registry"],
            registry_lock=layout["registry_lock"],
            registry_lock_timeout=cfg.locks.registry_timeout_seconds,
            lock_poll_interval=cfg.locks.poll_interval_seconds,
            registry_stale_after=cfg.guard.registry_stale_after_seconds,
            close_reason=cfg.task_store.close_reason,
            heartbeat_enabled=cfg.heartbeat.enabled,
            enforce_guard=cfg.guard.enforce,
        )

    # ------------------------------------------------------------------
    # start
    # ------------------------------------------------------------------

    def start(self, worker_id: str, task_id: str) -> WorktreeEntry:
        """Claim ``task_id`` for ``worker_id`` and return a ready sandbox."""
        bind_task_context(worker_id, task_id)
        try:
            entry, created = self.claims.claim(
                task_id,
                worker_id,
                prepare=lambda: self._prepare_sandbox(worker_id, task_id),
                rollback=self._rollback_sandbox,
            )
            # The claim is committed from here on; failures below must not read as a failed start.
            if self.heartbeat_enabled:
                try:
                    self.heartbeats.start(worker_id, task_id)
                except OSError as exc:
                    logger.warning("heartbeat_start_failed", error=str(exc))
            self._sync_registry_quietly()
            logger.info("worktree_ready", path=str(entry.path), branch=entry.branch, resumed=not created)
            return entry
        finally:
            clear_task_context()

    def _prepare_sandbox(self, worker_id: str, task_id: str) -> tuple[WorktreeEntry, bool]:
        self.worktrees.fetch_mainline()
        entry, created = self.worktrees.ensure(worker_id, task_id)
        try:
            self.worktrees.install_dependencies(entry)
        except BaseException:
            self._rollback_sandbox((entry, created))
            raise
        return entry, created

    def _rollback_sandbox(self, prepared: tuple[WorktreeEntry, bool]) -> None:
        entry, created = prepared
        # A resumed sandbox may already hold the worker's commits; only discard what this call built.
        if created:
            self.worktrees.discard(entry)

    # ------------------------------------------------------------------
    # finish
    # ------------------------------------------------------------------

    def finish(self, worker_id: str, task_id: str, cwd: Path | None = None) -> MergeResult:
        """Integrate the sandbox branch, then tear the sandbox down and close the task."""
        bind_task_context(worker_id, task_id)
        try:
            entry = self.worktrees.entry_for(worker_id, task_id)
            if self.enforce_guard:
                if cwd is None:
                    raise GuardError("finish requires the caller's working directory")
                self.worktrees.verify_context(cwd, worker_id, task_id)
            self.worktrees.check_ready_to_finish(entry)

            result = self.merge_queue.integrate(entry)

            self.worktrees.teardown(entry)
            self.heartbeats.stop(worker_id, task_id)
            try:
                self.store.close(task_id, self.close_reason, worker_id)
            except TaskStoreError as exc:
                logger.warning("task_close_failed", error=str(exc), hint=f"close {task_id} manually")
            self._sync_registry_quietly()
            return result
        finally:
            clear_task_context()

    # ------------------------------------------------------------------
    # cleanup / views
    # ------------------------------------------------------------------

    def plan_cleanup(self, worker_id: str) -> CleanupPlan:
        return self.worktrees.plan_cleanup(worker_id)

    def cleanup(self, worker_id: str, plan: CleanupPlan | None = None) -> CleanupPlan:
        plan = plan or self.worktrees.plan_cleanup(worker_id)
        self.heartbeats.stop_worker(worker_id, [p.name for p in plan.worktrees])
        done = self.worktrees.cleanup(worker_id, plan)
        self._sync_registry_quietly()
        logger.info("worker_cleaned_up", worker=worker_id, worktrees=len(done.worktrees))
        return done

    def list_worktrees(self) -> list[WorktreeEntry]:
        return self.worktrees.list_entries()

    def status(self) -> StatusReport:
        report = StatusReport(
            worktrees=self.worktrees.list_entries(),
            heartbeats=self.heartbeats.list_heartbeats(),
        )
        try:
            report.in_progress = self.store.list_in_progress()
        except TaskStoreError as exc:
            report.store_error = str(exc)
        return report

    def sync_registry(self) -> WorktreeRegistry:
        with locked_file(self.registry_lock, self.registry_lock_timeout, self.lock_poll_interval):
            return sync_registry(self.worktrees.repo, self.registry_path, self.registry_stale_after)

    def _sync_registry_quietly(self) -> None:
        # The registry is a mirror of git; the next sync or guard run repairs it.
        try:
            self.sync_registry()
        except CoordinationError as exc:
            logger.warning("registry_sync_failed", error=str(exc), hint="run 'wtcoord guard' later")

    def audit(self) -> list[str]:
        """Audit git's worktrees plus the ids recorded by the previous sync."""
        persisted = read_registry(self.registry_path)
        return audit_registry(self.sync_registry(), persisted)
