"""
CLI: ``loanflow advance`` / ``reconcile`` / ``batch`` — run commands.
"""

from __future__ import annotations

import signal
from collections.abc import Iterator
from contextlib import contextmanager

import typer

from loanflow.cli.utils import (
    EXIT_FAILURE,
    console,
    get_runtime,
    output_result,
    print_dict,
    print_json,
    print_table,
)
from loanflow.domain.leads import lead_records
from loanflow.execution.cancellation import CancelToken
from loanflow.orchestration.chain import ChainReport
from loanflow.orchestration.driver import RunReport


@contextmanager
def cancel_on_interrupt(deadline_s: float | None) -> Iterator[CancelToken]:
    """A cancel token that Ctrl-C sets instead of raising mid-sleep."""
    token = CancelToken(deadline_s=deadline_s)
    previous = signal.getsignal(signal.SIGINT)

    def _handler(signum, frame) -> None:
        token.cancel("interrupted")

    try:
        signal.signal(signal.SIGINT, _handler)
    except ValueError:
        # not the main thread (embedded use); Ctrl-C keeps its default
        previous = None
    try:
        yield token
    finally:
        if previous is not None:
            signal.signal(signal.SIGINT, previous)


def _render_run(report: RunReport) -> None:
    print_dict(
        {"entity_id": report.entity_id, "start": report.start, "final_state": report.final_state},
        title="Run",
    )
    print_table(
        [
            {
                "from": s.from_state,
                "to": s.to_state,
                "actuations": s.actuation_attempts,
                "polls": s.poll_attempts,
                "seconds": round(s.duration_seconds, 1),
            }
            for s in report.steps
        ],
        title="Steps",
    )


def _render_chain(report: ChainReport) -> None:
    print_dict(
        {
            "entity_id": report.entity_id,
            "chain": report.chain,
            "short_circuited": report.short_circuited,
            "derived_key": report.record.derived_key if report.record else None,
        },
        title="Reconciliation",
    )
    print_table(
        [
            {
                "link": r.name,
                "kind": r.kind,
                "status": r.status,
                "attempts": r.attempts,
                "triggered": r.triggered,
            }
            for r in report.links
        ],
        title="Links",
    )
    leads = lead_records(report)
    if leads:
        print_table([{"link": k, **v.to_dict()} for k, v in leads.items()], title="Leads")


def advance(
    ctx: typer.Context,
    entity_id: str = typer.Argument(..., help="Loan application id"),
    start: str | None = typer.Option(None, "--start", "-s", help="Start state (default: read from store)"),
    target: str | None = typer.Option(None, "--target", "-t", help="Target state (default: settings)"),
    deadline: float | None = typer.Option(None, "--deadline", help="Abort after this many seconds"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Advance one application through the review stages."""
    runtime = get_runtime(ctx)
    with cancel_on_interrupt(deadline) as token:
        result = runtime.run_review(entity_id, start, target, cancel=token)
    output_result(result, as_json=json_out, render=_render_run)


def reconcile(
    ctx: typer.Context,
    entity_id: str = typer.Argument(..., help="Loan application id"),
    campaign: str = typer.Option(
        "VKYC_NOTRY", "--campaign", help="Calling campaign: VKYC_NOTRY or VKYC_TRIED"
    ),
    deadline: float | None = typer.Option(None, "--deadline", help="Abort after this many seconds"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run the video-KYC lead push reconciliation for one application."""
    runtime = get_runtime(ctx)
    with cancel_on_interrupt(deadline) as token:
        result = runtime.run_leads(entity_id, campaign=campaign, cancel=token)
    output_result(result, as_json=json_out, render=_render_chain)


def batch(
    ctx: typer.Context,
    entity_ids: list[str] = typer.Argument(..., help="Loan application ids"),
    target: str | None = typer.Option(None, "--target", "-t", help="Target state (default: settings)"),
    workers: int | None = typer.Option(None, "--workers", "-w", min=1, help="Parallel runs"),
    deadline: float | None = typer.Option(None, "--deadline", help="Abort after this many seconds"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Advance many applications in parallel from their current state."""
    runtime = get_runtime(ctx)
    with cancel_on_interrupt(deadline) as token:
        outcome = runtime.run_review_batch(entity_ids, target, max_workers=workers, cancel=token)

    if json_out:
        print_json(outcome.to_dict())
    else:
        rows = []
        for entity_id, result in outcome.results.items():
            if result.is_ok():
                rows.append({"entity_id": entity_id, "ok": True, "detail": result.value.final_state})
            else:
                error = result.error
                rows.append({"entity_id": entity_id, "ok": False, "detail": f"{type(error).__name__}: {error}"})
        print_table(rows, title="Batch")
        console.print(f"\n[bold]{outcome.succeeded}[/bold] succeeded, [bold]{outcome.failed}[/bold] failed")

    if outcome.failed:
        raise typer.Exit(code=EXIT_FAILURE)
