"""
CLI: service-scoped rollout commands.

Usage::

    rollout init                          # example config/ + secrets template
    rollout validate                      # routes, accessories, secrets
    rollout deploy                        # every service, in order
    rollout deploy -s api                 # api and the accessories it needs
    rollout setup -s api                  # network + registry + accessories + api
    rollout remove -s api --accessories   # tear down api (and unshared accessories)
    rollout details -s api                # container state per host
    rollout logs -s api -n 200 --follow   # container logs
    rollout exec -s api -- bin/migrate    # run a command in each api container
    rollout routes                        # the shared ingress table
"""

from __future__ import annotations

from pathlib import Path

import typer

from rollout.cli.utils import (
    console,
    echo_json,
    err_console,
    get_config,
    get_operations,
    handle_errors,
    print_details,
    print_result,
)
from rollout.deploy.results import RolloutResult

SERVICE_HELP = "Service descriptor to operate on (default: every service)."


def _finish(result: RolloutResult, json_out: bool, title: str) -> None:
    if json_out:
        typer.echo(result.model_dump_json(indent=2))
    else:
        print_result(result, title=title)
    if result.error:
        raise typer.Exit(code=1)


# ── Scaffolding / validation ─────────────────────────────────────────────


def init(
    ctx: typer.Context,
    path: Path = typer.Argument(Path("."), help="Project directory."),
    domain: str = typer.Option("app.example.com", "--domain", help="Public host name."),
    server: str = typer.Option("203.0.113.10", "--server", help="Target host."),
    force: bool = typer.Option(False, "--force", help="Overwrite existing files."),
) -> None:
    """Write example descriptors and a secrets template."""
    from rollout.deploy.scaffold import scaffold

    config = get_config(ctx)
    written = scaffold(path, target=config.target, domain=domain, server=server, force=force)
    if not written:
        console.print("[yellow]Nothing written; files exist (use --force to overwrite).[/]")
        return
    for file in written:
        console.print(f"[green]✓[/] {file}")


def validate(
    ctx: typer.Context,
    service: str | None = typer.Option(None, "--service", "-s", help=SERVICE_HELP),
) -> None:
    """Check descriptors, routes, accessory references and secrets."""
    config = get_config(ctx)
    with handle_errors():
        ops = get_operations(config)
        ops.validate(service)
    scope = ops.scope(service)
    console.print(
        f"[green]✓ {scope.target}:[/] {len(scope.services)} service(s), "
        f"{len(scope.accessories)} accessory(ies), configuration valid"
    )


# ── Deploy-type commands ─────────────────────────────────────────────────


def deploy(
    ctx: typer.Context,
    service: str | None = typer.Option(None, "--service", "-s", help=SERVICE_HELP),
    message: str = typer.Option("", "--message", "-m", help="Recorded in the deploy lock."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Roll out services in order, starting accessories as needed."""
    config = get_config(ctx)
    with handle_errors():
        result = get_operations(config).deploy(service, message=message)
    _finish(result, json_out, "Deploy")


def setup(
    ctx: typer.Context,
    service: str | None = typer.Option(None, "--service", "-s", help=SERVICE_HELP),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Initialize target hosts, boot accessories, then deploy."""
    config = get_config(ctx)
    with handle_errors():
        result = get_operations(config).setup(service)
    _finish(result, json_out, "Setup")


def remove(
    ctx: typer.Context,
    service: str | None = typer.Option(None, "--service", "-s", help=SERVICE_HELP),
    accessories: bool = typer.Option(
        False, "--accessories", help="Also remove accessories no other service uses."
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Tear down service containers and their routes."""
    config = get_config(ctx)
    what = service or "every service"
    if not yes:
        typer.confirm(f"Remove {what}?", abort=True)
    with handle_errors():
        result = get_operations(config).remove(service, accessories=accessories)
    _finish(result, json_out, "Remove")


# ── Inspection ───────────────────────────────────────────────────────────


def details(
    ctx: typer.Context,
    service: str = typer.Option(..., "--service", "-s", help="Service name."),
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Show container state per host, the route and accessory state."""
    config = get_config(ctx)
    with handle_errors():
        report = get_operations(config).details(service)
    if json_out:
        echo_json({**report.model_dump(mode="json"), "healthy": report.healthy})
    else:
        print_details(report)
    if not report.healthy:
        raise typer.Exit(code=1)


def logs(
    ctx: typer.Context,
    service: str = typer.Option(..., "--service", "-s", help="Service name."),
    host: str | None = typer.Option(None, "--host", help="Only this host."),
    tail: int = typer.Option(100, "--tail", "-n", help="Number of lines."),
    follow: bool = typer.Option(False, "--follow", "-f", help="Stream new lines."),
) -> None:
    """Show container logs of a service."""
    config = get_config(ctx)
    with handle_errors():
        ops = get_operations(config)
        multi = host is None and len(ops.topology.service(service).servers) > 1
        try:
            for line_host, line in ops.logs(service, host=host, tail=tail, follow=follow):
                typer.echo(f"{line_host} | {line}" if multi else line)
        except KeyboardInterrupt:
            pass


def exec_command(
    ctx: typer.Context,
    command: list[str] = typer.Argument(..., help="Command to run (after --)."),
    service: str = typer.Option(..., "--service", "-s", help="Service name."),
    host: str | None = typer.Option(None, "--host", help="Only this host."),
) -> None:
    """Run a command in the service container on each host."""
    config = get_config(ctx)
    with handle_errors():
        results = get_operations(config).exec(service, command, host=host)

    failed = False
    for h, res in results.items():
        console.print(f"[bold]{h}[/] exit {res.exit_code}")
        if res.stdout:
            typer.echo(res.stdout.rstrip("\n"))
        if res.stderr:
            err_console.print(res.stderr.rstrip("\n"))
        failed = failed or not res.ok
    if failed:
        raise typer.Exit(code=1)


def routes(
    ctx: typer.Context,
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """List routes registered on the shared ingress."""
    from rich.table import Table

    from rollout.deploy.ingress import Ingress

    config = get_config(ctx)
    with handle_errors():
        ingress = Ingress(config.ingress_path)
    entries = sorted(
        ingress.table.entries.values(),
        key=lambda e: (e.rule.host, e.rule.path_prefix or ""),
    )
    if json_out:
        echo_json([e.model_dump(mode="json") for e in entries])
        return
    if not entries:
        console.print("[dim]No routes registered.[/dim]")
        return

    table = Table(title="Ingress routes")
    table.add_column("Host", style="bold cyan")
    table.add_column("Prefix")
    table.add_column("Owner")
    table.add_column("TLS")
    table.add_column("Upstreams")
    for entry in entries:
        table.add_row(
            entry.rule.host,
            entry.rule.path_prefix or "/ (root)",
            entry.service,
            "yes" if entry.rule.tls else "no",
            ", ".join(entry.upstreams),
        )
    console.print(table)


def register(app: typer.Typer) -> None:
    """Attach the service commands to the root application."""
    app.command()(init)
    app.command()(validate)
    app.command()(deploy)
    app.command()(setup)
    app.command()(remove)
    app.command()(details)
    app.command()(logs)
    app.command("exec")(exec_command)
    app.command()(routes)
