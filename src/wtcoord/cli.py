"""CLI entrypoint for wtcoord."""

from __future__ import annotations

import functools
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

import click

from wtcoord.config.loader import DEFAULT_CONFIG_NAME, load_coord_yaml
from wtcoord.coordinator.heartbeat import HeartbeatMonitor
from wtcoord.coordinator.orchestrator import TaskCoordinator
from wtcoord.errors import CoordinationError
from wtcoord.log import setup_logging
from wtcoord.protocol.locks import read_lock_holder
from wtcoord.workspace.git import resolve_main_repo

F = TypeVar("F", bound=Callable[..., Any])

_RULE = "━" * 56


def _handle_errors(fn: F) -> F:
    """Turn coordination failures into exit code 1 with a readable message."""

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except CoordinationError as exc:
            raise click.ClickException(str(exc)) from exc

    return wrapper  # type: ignore[return-value]


def _coordinator(ctx: click.Context) -> TaskCoordinator:
    obj = ctx.ensure_object(dict)
    if "coordinator" not in obj:
        repo = resolve_main_repo(Path.cwd())
        config_path = obj.get("config_path") or repo / DEFAULT_CONFIG_NAME
        obj["coordinator"] = TaskCoordinator.from_config(load_coord_yaml(config_path), repo)
    return obj["coordinator"]


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help=f"Config file (default: <main repo>/{DEFAULT_CONFIG_NAME})",
)
@click.option("--debug", is_flag=True, help="Verbose logging")
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON lines")
@click.pass_context
def main(ctx: click.Context, config_path: Path | None, debug: bool, json_logs: bool) -> None:
    """Multi-agent task workflow over git worktrees.

    Each worker gets its own worktree and branch per task, claims the task in
    the shared task store, and merges back through a serialized queue.
    """
    setup_logging(debug=debug, json_output=json_logs)
    ctx.ensure_object(dict)["config_path"] = config_path


@main.command("start")
@click.argument("worker")
@click.argument("task_id")
@click.pass_context
@_handle_errors
def start_command(ctx: click.Context, worker: str, task_id: str) -> None:
    """Claim TASK_ID for WORKER and create (or resume) its worktree."""
    entry = _coordinator(ctx).start(worker, task_id)
    click.echo(f"Worktree ready for {task_id} on branch {entry.branch}")
    click.echo(_RULE)
    click.echo("cd to your worktree to work on this task:")
    click.echo("")
    click.echo(f"  cd {entry.path}")
    click.echo(_RULE)
    click.echo("When done, commit and run:")
    click.echo(f"  wtcoord finish {worker} {task_id}")


@main.command("finish")
@click.argument("worker")
@click.argument("task_id")
@click.pass_context
@_handle_errors
def finish_command(ctx: click.Context, worker: str, task_id: str) -> None:
    """Rebase, merge and push WORKER's branch for TASK_ID, then clean up."""
    result = _coordinator(ctx).finish(worker, task_id, cwd=Path.cwd())
    click.echo(f"Merged {result.branch} as {result.merge_commit[:12]} (attempts: {result.attempts})")
    if result.overlapping_files:
        click.echo(f"Note: mainline also changed {', '.join(result.overlapping_files)}; review the merge.")
    click.echo(f"Task {task_id} complete; worktree and branch removed.")


@main.command("status")
@click.pass_context
@_handle_errors
def status_command(ctx: click.Context) -> None:
    """Show worktrees, heartbeats, the merge-queue holder and in-progress tasks."""
    coord = _coordinator(ctx)
    report = coord.status()

    click.echo(_RULE)
    click.echo("Worktrees:")
    click.echo(_RULE)
    if not report.worktrees:
        click.echo("  (none)")
    for entry in report.worktrees:
        click.echo(f"  {entry.id:<40} {entry.branch or '(detached)'}  {entry.path}")

    click.echo("")
    click.echo("Heartbeats:")
    if not report.heartbeats:
        click.echo("  (none)")
    for hb in report.heartbeats:
        flag = "STALE" if hb.stale else "ok"
        click.echo(f"  {hb.key:<40} {hb.age_seconds:>8.0f}s  {flag}")

    holder = read_lock_holder(coord.merge_queue.lock_path)
    if holder is not None:
        held_for = time.time() - holder.acquired_at
        click.echo("")
        click.echo(f"Merge queue held by pid {holder.holder_pid} for {held_for:.0f}s")

    click.echo("")
    click.echo("In-progress tasks:")
    if report.store_error:
        click.echo(f"  (task store unavailable: {report.store_error})")
    elif not report.in_progress:
        click.echo("  (none)")
    for task in report.in_progress:
        click.echo(f"  {task.get('id', '?'):<24} {task.get('assignee') or '-':<16} {task.get('title', '')}")


@main.command("list")
@click.pass_context
@_handle_errors
def list_command(ctx: click.Context) -> None:
    """List active worktrees."""
    for entry in _coordinator(ctx).list_worktrees():
        click.echo(f"{entry.id}\t{entry.branch}\t{entry.path}")


@main.command("cleanup")
@click.argument("worker")
@click.option("--yes", "assume_yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
@_handle_errors
def cleanup_command(ctx: click.Context, worker: str, assume_yes: bool) -> None:
    """Remove all worktrees and branches (local and remote) of WORKER."""
    coord = _coordinator(ctx)
    plan = coord.plan_cleanup(worker)
    click.echo(f"This will remove all worktrees and branches for worker '{worker}'")
    click.echo("Worktrees to remove:")
    for path in plan.worktrees or ["(none found)"]:
        click.echo(f"  {path}")
    click.echo("Branches to delete (local):")
    for branch in plan.local_branches or ["(none found)"]:
        click.echo(f"  {branch}")
    click.echo("Branches to delete (remote):")
    for branch in plan.remote_branches or ["(none found)"]:
        click.echo(f"  {branch}")

    if plan.empty:
        click.echo("Nothing to clean up.")
        return
    if not assume_yes and not click.confirm("Continue?", default=False):
        click.echo("Cancelled")
        return
    coord.cleanup(worker, plan)
    click.echo(f"Cleanup complete for worker {worker}")


@main.command("verify")
@click.argument("task_id", required=False)
@click.pass_context
@_handle_errors
def verify_command(ctx: click.Context, task_id: str | None) -> None:
    """Check that the current directory is a worktree (optionally for TASK_ID)."""
    entry = _coordinator(ctx).worktrees.verify_context(Path.cwd(), task_id=task_id)
    click.echo(f"You are in a worktree. Worker: {entry.worker_id}  Task: {entry.task_id}")
    click.echo("You can safely make changes in this directory.")


@main.command("guard")
@click.pass_context
@_handle_errors
def guard_command(ctx: click.Context) -> None:
    """Sync the worktree registry and check it for inconsistencies."""
    issues = _coordinator(ctx).audit()
    if issues:
        for msg in issues:
            click.echo(msg, err=True)
        ctx.exit(1)
    click.echo("worktree-guard: ok")


@main.group("heartbeat")
def heartbeat_group() -> None:
    """Worker liveness heartbeats."""


@heartbeat_group.command("run")
@click.argument("worker")
@click.argument("task_id")
@click.option("--dir", "hb_dir", required=True, type=click.Path(file_okay=False, path_type=Path))
@click.option("--interval", type=float, default=30.0, show_default=True)
def heartbeat_run_command(worker: str, task_id: str, hb_dir: Path, interval: float) -> None:
    """Write heartbeats until stopped (spawned by 'start')."""
    HeartbeatMonitor(heartbeats_dir=hb_dir, interval_seconds=interval).run(worker, task_id)


@heartbeat_group.command("list")
@click.pass_context
@_handle_errors
def heartbeat_list_command(ctx: click.Context) -> None:
    """Print heartbeat ages; stale ones are flagged."""
    for hb in _coordinator(ctx).heartbeats.list_heartbeats():
        click.echo(f"{hb.key}\t{hb.age_seconds:.0f}\t{'stale' if hb.stale else 'ok'}")


@heartbeat_group.command("stop")
@click.argument("worker")
@click.argument("task_id")
@click.pass_context
@_handle_errors
def heartbeat_stop_command(ctx: click.Context, worker: str, task_id: str) -> None:
    """Stop the heartbeat writer for WORKER/TASK_ID."""
    _coordinator(ctx).heartbeats.stop(worker, task_id)


if __name__ == "__main__":
    main()
