"""
CLI utility helpers — settings/runtime access and output formatting.
"""

from __future__ import annotations

import json
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from loanflow.bootstrap import Runtime, build_runtime
from loanflow.core.errors import ErrorCategory, LoanflowError
from loanflow.core.result import Err, Result
from loanflow.core.settings import LoanflowSettings, load_settings

console = Console()
err_console = Console(stderr=True)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2

_CONFIG_CATEGORIES = {ErrorCategory.CONFIG, ErrorCategory.VALIDATION}


# ── Settings / runtime ───────────────────────────────────────────────────


def _state(ctx: typer.Context) -> dict[str, Any]:
    root = ctx.find_root()
    root.ensure_object(dict)
    return root.obj


def get_settings(ctx: typer.Context) -> LoanflowSettings:
    """Settings for this invocation, loaded on first use."""
    state = _state(ctx)
    if "settings" not in state:
        try:
            state["settings"] = load_settings(state.get("config_path"))
        except LoanflowError as e:
            fail(e)
    return state["settings"]


def get_runtime(ctx: typer.Context) -> Runtime:
    """Runtime for this invocation. Closed when the root context closes."""
    state = _state(ctx)
    if "runtime" not in state:
        settings = get_settings(ctx)
        try:
            runtime = build_runtime(settings)
        except LoanflowError as e:
            fail(e)
        state["runtime"] = runtime
        ctx.find_root().call_on_close(runtime.close)
    return state["runtime"]


# ── Output helpers ───────────────────────────────────────────────────────


def exit_code_for(error: Exception) -> int:
    if isinstance(error, LoanflowError) and error.category in _CONFIG_CATEGORIES:
        return EXIT_CONFIG
    return EXIT_FAILURE


def print_error(error: Exception) -> None:
    """Render an error with its category and context."""
    if isinstance(error, LoanflowError):
        err_console.print(
            f"[bold red]Error[/bold red] ({error.category.value}): {error.message}"
        )
        for key, value in error.context.to_dict().items():
            err_console.print(f"  [cyan]{key}[/cyan]: {value}")
    else:
        err_console.print(f"[bold red]Error[/bold red]: {error}")


def fail(error: Exception) -> None:
    print_error(error)
    raise typer.Exit(code=exit_code_for(error))


def print_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def output_result(
    result: Result[Any],
    *,
    as_json: bool = False,
    render: Any = None,
) -> None:
    """Render a run result; exit non-zero on ``Err``."""
    if as_json:
        print_json(result.to_dict())
        if isinstance(result, Err):
            raise typer.Exit(code=exit_code_for(result.error))
        return

    if isinstance(result, Err):
        fail(result.error)
    if render is not None:
        render(result.value)


def print_table(rows: list[dict[str, Any]], *, title: str = "") -> None:
    """Render a list of dicts as a Rich table."""
    if not rows:
        console.print("[dim]No items.[/dim]")
        return
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in rows[0]:
        table.add_column(col, overflow="fold")
    for row in rows:
        table.add_row(*("" if v is None else str(v) for v in row.values()))
    console.print(table)


def print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
