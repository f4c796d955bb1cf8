"""
CLI: ``rollout lock`` - inspect and manage the deploy lock of a target.

Usage::

    rollout lock status
    rollout lock acquire -m "db maintenance"
    rollout lock release
    rollout lock release --force          # someone else's lock
"""

from __future__ import annotations

import typer

from rollout.cli.utils import console, echo_json, get_config, handle_errors
from rollout.deploy.config import RolloutConfig
from rollout.deploy.loader import load_topology
from rollout.deploy.lock import DeployLock

app = typer.Typer(no_args_is_help=True)


def _lock(config: RolloutConfig) -> DeployLock:
    topology = load_topology(config)
    return DeployLock(config.lock_dir, topology.target, ttl_seconds=config.lock_ttl_seconds)


@app.command("status")
def lock_status(
    ctx: typer.Context,
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Show who holds the deploy lock."""
    config = get_config(ctx)
    with handle_errors():
        lock = _lock(config)
    record = lock.status()
    if json_out:
        echo_json({"target": lock.target, "locked": record is not None, "lock": record})
        return
    if record is None:
        console.print(f"[green]{lock.target} is not locked[/]")
        return
    stale = " [dim](stale)[/dim]" if lock.is_stale(record) else ""
    console.print(f"[yellow]{lock.target} is locked[/]{stale}")
    for key in ("holder", "acquired_at", "run_id", "message"):
        if record.get(key):
            console.print(f"  [cyan]{key}[/cyan]: {record[key]}")


@app.command("acquire")
def lock_acquire(
    ctx: typer.Context,
    message: str = typer.Option("", "--message", "-m", help="Why the target is locked."),
) -> None:
    """Take the deploy lock manually (e.g. during maintenance)."""
    config = get_config(ctx)
    with handle_errors():
        lock = _lock(config)
        lock.acquire(message=message, run_id=config.run_id)
    console.print(f"[green]✓ Locked {lock.target}[/]")


@app.command("release")
def lock_release(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", help="Release a lock held by someone else."),
) -> None:
    """Release the deploy lock."""
    config = get_config(ctx)
    with handle_errors():
        lock = _lock(config)
        released = lock.release(force=force)
    if released:
        console.print(f"[green]✓ Released {lock.target}[/]")
    else:
        console.print(f"[dim]{lock.target} was not locked[/dim]")
