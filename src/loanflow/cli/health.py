"""
CLI: ``loanflow health`` — service endpoint and store connectivity checks.
"""

from __future__ import annotations

import typer

from loanflow.adapters.health import check_endpoints
from loanflow.cli.utils import EXIT_FAILURE, console, get_runtime, get_settings, print_json, print_table

app = typer.Typer(no_args_is_help=True)


@app.command("endpoints")
def endpoints(
    ctx: typer.Context,
    timeout: float = typer.Option(5.0, "--timeout", help="Per-request timeout in seconds"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Check the configured service endpoints (2xx = up)."""
    settings = get_settings(ctx)
    if not settings.health_endpoints:
        console.print("[dim]No health endpoints configured.[/dim]")
        return

    statuses = check_endpoints(settings.health_endpoints, timeout_s=timeout)
    if json_out:
        print_json([s.to_dict() for s in statuses])
    else:
        print_table(
            [
                {
                    "service": s.name,
                    "up": "yes" if s.up else "NO",
                    "status": s.status_code if s.status_code is not None else s.error,
                    "ms": s.elapsed_ms,
                }
                for s in statuses
            ],
            title="Endpoints",
        )
    if not all(s.up for s in statuses):
        raise typer.Exit(code=EXIT_FAILURE)


@app.command("stores")
def stores(
    ctx: typer.Context,
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Check that every configured store is reachable."""
    runtime = get_runtime(ctx)
    status = runtime.registry.check_all()
    if not status:
        console.print("[dim]No stores configured.[/dim]")
        return

    if json_out:
        print_json(status)
    else:
        print_table(
            [{"store": name, "available": "yes" if ok else "NO"} for name, ok in status.items()],
            title="Stores",
        )
    if not all(status.values()):
        raise typer.Exit(code=EXIT_FAILURE)
