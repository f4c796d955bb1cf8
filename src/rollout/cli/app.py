"""
Root Typer application for the ``rollout`` CLI.

Options given before the command apply to every command and override the
matching ``ROLLOUT_*`` environment variables::

    rollout -d staging deploy -s api
    rollout --config-dir deploy/config --secrets .env.rollout validate
"""

from __future__ import annotations

from pathlib import Path

import typer
from typer import Typer

from rollout.cli.deploy import register
from rollout.cli.lock import app as lock_app
from rollout.cli.secrets import app as secrets_app
from rollout.core.logging import configure_logging
from rollout.deploy.config import RolloutConfig

app = Typer(
    name="rollout",
    help="rollout: ordered, idempotent multi-service deployments.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("rollout-spine")
        except PackageNotFoundError:
            from rollout import __version__ as v
        typer.echo(f"rollout {v}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    config_dir: Path | None = typer.Option(
        None, "--config-dir", "-c", help="Descriptor directory (default: config)."
    ),
    config_file: list[Path] = typer.Option(
        [], "--config-file", "-f", help="Descriptor file, in deployment order. Repeatable."
    ),
    destination: str | None = typer.Option(
        None, "--destination", "-d", help="Overlay suffix, e.g. staging."
    ),
    target: str | None = typer.Option(None, "--target", help="Configuration target name."),
    secrets_file: Path | None = typer.Option(
        None, "--secrets", help="Secrets file (default: .rollout/secrets)."
    ),
    state_dir: Path | None = typer.Option(
        None, "--state-dir", help="Ingress table and lock directory (default: .rollout)."
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING, ERROR."),
    json_logs: bool | None = typer.Option(  # noqa: UP007
        None, "--json-logs/--console-logs", help="Log format (default: auto)."
    ),
) -> None:
    """rollout CLI: validate, deploy and operate service descriptors."""
    configure_logging(level=log_level, json_format=json_logs)
    try:
        ctx.obj = RolloutConfig.from_env(
            config_dir=config_dir,
            config_files=config_file or None,
            destination=destination,
            target=target,
            secrets_file=secrets_file,
            state_dir=state_dir,
        )
    except ValueError as e:
        raise typer.BadParameter(str(e)) from e


# ── Sub-command registration ─────────────────────────────────────────────

register(app)
app.add_typer(lock_app, name="lock", help="Deploy lock management.")
app.add_typer(secrets_app, name="secrets", help="Secrets file template and checks.")


if __name__ == "__main__":
    app()
