"""
CLI utility helpers: configuration from the Typer context, error mapping and
output formatting.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from rollout.core.errors import RolloutError
from rollout.deploy.config import RolloutConfig
from rollout.deploy.operations import ServiceOperations
from rollout.deploy.results import (
    OverallStatus,
    RolloutResult,
    ServiceAction,
    ServiceDetails,
)

console = Console()
err_console = Console(stderr=True)

STATUS_STYLE = {
    OverallStatus.PASSED: "green",
    OverallStatus.FAILED: "red",
    OverallStatus.PARTIAL: "yellow",
    OverallStatus.ERROR: "red bold",
    OverallStatus.SKIPPED: "dim",
}

ACTION_STYLE = {
    ServiceAction.STARTED: "green",
    ServiceAction.UNCHANGED: "dim",
    ServiceAction.FAILED: "red",
    ServiceAction.SKIPPED: "yellow",
    ServiceAction.REMOVED: "cyan",
}


# ── Context helpers ──────────────────────────────────────────────────────


def get_config(ctx: typer.Context) -> RolloutConfig:
    """The ``RolloutConfig`` built by the root callback."""
    if isinstance(ctx.obj, RolloutConfig):
        return ctx.obj
    return RolloutConfig.from_env()


def get_operations(config: RolloutConfig) -> ServiceOperations:
    return ServiceOperations.from_config(config)


@contextmanager
def handle_errors() -> Iterator[None]:
    """Map ``RolloutError`` to a red error line and exit code 1."""
    try:
        yield
    except RolloutError as e:
        err_console.print(f"[bold red]Error[/bold red] ({type(e).__name__}): {e.message}")
        raise typer.Exit(code=1) from e


def echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


# ── Output formatters ────────────────────────────────────────────────────


def print_result(result: RolloutResult, *, title: str = "Rollout") -> None:
    """Pretty-print a ``RolloutResult``."""
    for warning in result.warnings:
        console.print(f"[yellow]⚠ {warning}[/]")

    if result.accessories:
        table = Table(title="Accessories")
        table.add_column("Accessory", style="bold")
        table.add_column("Host")
        table.add_column("Action")
        table.add_column("Ready after")
        for acc in result.accessories:
            style = ACTION_STYLE.get(acc.action, "white")
            table.add_row(
                acc.name,
                acc.host,
                f"[{style}]{acc.action.value}[/{style}]",
                str(acc.ready_after_attempts) if acc.ready_after_attempts else "—",
            )
        console.print(table)

    table = Table(title=f"{title}: {result.target} ({result.run_id})")
    table.add_column("Service", style="bold")
    table.add_column("Action")
    table.add_column("Hosts")
    table.add_column("URL")
    table.add_column("Error", max_width=50)
    for svc in result.services:
        style = ACTION_STYLE.get(svc.action, "white")
        table.add_row(
            svc.name,
            f"[{style}]{svc.action.value}[/{style}]",
            ", ".join(svc.hosts) or "—",
            svc.url or "—",
            svc.error or "",
        )
    console.print(table)

    style = STATUS_STYLE.get(result.overall_status, "white")
    console.print(f"\n[{style}]{result.overall_status.value}[/{style}] {result.summary}")
    if result.failed_service:
        err_console.print(f"[red]✗ {result.failed_service} failed: {result.error}[/]")


def print_details(details: ServiceDetails) -> None:
    """Pretty-print a ``ServiceDetails`` report."""
    route = details.url or "(no route)"
    registered = "[green]registered[/]" if details.route_registered else "[yellow]not registered[/]"
    console.print(f"[bold]{details.service}[/] on {details.target}: {route} {registered}")

    table = Table()
    table.add_column("Container", style="bold")
    table.add_column("Host")
    table.add_column("Status")
    table.add_column("Health")
    table.add_column("Image")
    table.add_column("Started")
    for row in [*details.containers, *details.accessories]:
        style = "green" if row.status == "running" else "red"
        table.add_row(
            row.name,
            row.host,
            f"[{style}]{row.status}[/{style}]",
            row.health or "—",
            row.image or "—",
            row.started_at or "—",
        )
    console.print(table)
