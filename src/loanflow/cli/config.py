"""
CLI: ``loanflow config`` — configuration inspection.
"""

from __future__ import annotations

from typing import Any

import typer
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from loanflow.cli.utils import console, get_settings, print_json, print_table
from loanflow.core.settings import LoanflowSettings

app = typer.Typer(no_args_is_help=True)


def _mask_url(url: str) -> str:
    try:
        return make_url(url).render_as_string(hide_password=True)
    except ArgumentError:
        return url


def redacted(settings: LoanflowSettings) -> dict[str, Any]:
    """Settings as plain data, with store passwords hidden."""
    data = settings.model_dump(mode="json")
    for store in data.get("stores", {}).values():
        store["url"] = _mask_url(store["url"])
    return data


@app.command("show")
def show_config(
    ctx: typer.Context,
    format: str = typer.Option("table", "--format", "-f", help="Output format: table, json"),
) -> None:
    """Show the effective configuration."""
    settings = get_settings(ctx)
    data = redacted(settings)

    if format == "json":
        print_json(data)
        return

    console.print(f"[bold]Environment:[/bold] {settings.environment} ({settings.base_url})")
    console.print(f"[bold]Stages:[/bold] {' → '.join(settings.stages)}")
    console.print(f"[bold]Terminal:[/bold] {', '.join(settings.terminal_states)}")
    console.print(f"[bold]Target:[/bold] {settings.target_state}\n")

    print_table(
        [
            {"call site": name, "attempts": budget["max_attempts"], "interval ms": budget["interval_ms"]}
            for name, budget in data["retry"].items()
        ],
        title="Retry budgets",
    )
    print_table(
        [{"store": name, "url": s["url"], "pool": s["pool_size"]} for name, s in data["stores"].items()],
        title="Stores",
    )
    print_table(
        [
            {"trigger": name, "method": t["method"], "path": t["path"], "ok": t["ok_statuses"]}
            for name, t in data["triggers"].items()
        ],
        title="Triggers",
    )
