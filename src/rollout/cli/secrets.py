"""
CLI: ``rollout secrets`` - secrets file template and completeness check.

Usage::

    rollout secrets init           # .rollout/secrets.example with KEY= lines
    rollout secrets check          # list declared secrets without a value
"""

from __future__ import annotations

from pathlib import Path

import typer

from rollout.cli.utils import console, echo_json, err_console, get_config, handle_errors
from rollout.core.secrets import SecretsResolver, render_secrets_template
from rollout.deploy.loader import load_topology

app = typer.Typer(no_args_is_help=True)


@app.command("init")
def secrets_init(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", help="Overwrite an existing template."),
) -> None:
    """Write ``<secrets file>.example`` listing every declared secret."""
    config = get_config(ctx)
    with handle_errors():
        names = load_topology(config).secret_names()

    path = Path(f"{config.secrets_file}.example")
    if path.exists() and not force:
        err_console.print(f"[yellow]{path} exists (use --force to overwrite)[/]")
        raise typer.Exit(code=1)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        render_secrets_template(
            names,
            header=f"Copy to {config.secrets_file} and fill in. Never commit the real file.",
        ),
        encoding="utf-8",
    )
    console.print(f"[green]✓[/] {path} ({len(names)} secret(s))")


@app.command("check")
def secrets_check(
    ctx: typer.Context,
    json_out: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """List declared secrets that have no value. Exit 1 if any."""
    config = get_config(ctx)
    with handle_errors():
        names = load_topology(config).secret_names()
        resolver = SecretsResolver.from_file(config.secrets_file)
        missing = resolver.missing(names)

    if json_out:
        echo_json({"declared": names, "missing": missing, "sources": resolver.backend_names})
    elif missing:
        for name in missing:
            err_console.print(f"[red]✗ {name}[/]")
    else:
        console.print(f"[green]✓ All {len(names)} secret(s) resolved[/]")
    if missing:
        raise typer.Exit(code=1)
