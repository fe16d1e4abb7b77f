"""
Root Typer application for the loanflow CLI.
"""

from __future__ import annotations

from pathlib import Path

import typer
from typer import Typer

from loanflow.core.logging import configure_logging

app = Typer(
    name="loanflow",
    help="loanflow — drive and reconcile loan-application workflows across systems.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("loanflow")
        except PackageNotFoundError:
            v = "unknown"
        typer.echo(f"loanflow {v}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        envvar="LOANFLOW_CONFIG",
        help="YAML settings file.",
    ),
    log_level: str = typer.Option("WARNING", "--log-level", help="DEBUG, INFO, WARNING, ERROR"),
    json_logs: bool | None = typer.Option(None, "--json-logs/--console-logs", help="Log format"),
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """loanflow CLI — advance, reconcile, batch, health and config."""
    ctx.ensure_object(dict)
    ctx.obj.setdefault("config_path", config)
    configure_logging(level=log_level, json_format=json_logs)


# ── Sub-command registration ─────────────────────────────────────────────

from loanflow.cli.config import app as config_app  # noqa: E402
from loanflow.cli.health import app as health_app  # noqa: E402
from loanflow.cli.run import advance, batch, reconcile  # noqa: E402

app.command("advance")(advance)
app.command("reconcile")(reconcile)
app.command("batch")(batch)
app.add_typer(health_app, name="health", help="Endpoint and store health.")
app.add_typer(config_app, name="config", help="Configuration inspection.")
