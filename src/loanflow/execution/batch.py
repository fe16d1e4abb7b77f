"""Parallel runs over independent entities.

WHY
───
Each run spends its time sleeping between polls, so a batch of entities is
I/O-bound and fans out well over threads. Runs never share state: every
run acquires its own store handles and builds its own budgets inside
``run_one``.

ARCHITECTURE
────────────
::

    run_many(["app-1", "app-2", "app-3"], run_one, max_workers=4)
      │
      ├── ThreadPoolExecutor ── run_one("app-1") → Ok(report)
      │                     ├── run_one("app-2") → Err(TerminalStateError)
      │                     └── run_one("app-3") → Ok(report)
      │
      └── BatchResult          results in input order
            .succeeded / .failed / .ok() / .errors()

Example::

    def run_one(entity_id: str) -> Result[RunReport]:
        with registry.acquire("lending") as store:
            return build_review_driver(store, actuator, cancel=token).run(
                entity_id, "DOCS_UPLOADED", "FRAUD_REVIEW"
            )

    batch = run_many(entity_ids, run_one, max_workers=4, cancel=token)
    print(batch.succeeded, batch.failed)
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

from loanflow.core.errors import ConfigurationError, LoanflowError, RunCancelledError
from loanflow.core.logging import get_logger
from loanflow.core.result import Err, Result, partition_results
from loanflow.execution.cancellation import CancelToken

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class BatchResult(Generic[T]):
    """Per-entity results of a batch, in input order."""

    results: dict[str, Result[T]]
    started_at: datetime
    completed_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results.values() if r.is_ok())

    @property
    def failed(self) -> int:
        return len(self.results) - self.succeeded

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()

    def ok(self) -> list[T]:
        values, _ = partition_results(list(self.results.values()))
        return values

    def errors(self) -> dict[str, Exception]:
        return {k: r.error for k, r in self.results.items() if isinstance(r, Err)}

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "duration_seconds": self.duration_seconds,
            "results": {k: r.to_dict() for k, r in self.results.items()},
        }


def run_many(
    entity_ids: Sequence[str],
    run_one: Callable[[str], Result[T]],
    *,
    max_workers: int = 4,
    cancel: CancelToken | None = None,
) -> BatchResult[T]:
    """Run ``run_one`` for every entity on a thread pool.

    A ``LoanflowError`` raised by ``run_one`` is recorded as that entity's
    ``Err``; any other exception propagates. Entities not yet started when
    ``cancel`` fires are recorded as ``Err(RunCancelledError)``.
    """
    if max_workers < 1:
        raise ConfigurationError(f"max_workers must be >= 1, got {max_workers}")
    if len(set(entity_ids)) != len(entity_ids):
        raise ConfigurationError("Duplicate entity ids in batch")

    started_at = datetime.now(UTC)
    logger.info("batch.start", entities=len(entity_ids), max_workers=max_workers)

    def guarded(entity_id: str) -> Result[T]:
        if cancel is not None and cancel.is_cancelled:
            return Err(
                RunCancelledError(f"Run cancelled before start: {cancel.reason}").with_context(
                    entity_id=entity_id
                )
            )
        try:
            return run_one(entity_id)
        except LoanflowError as e:
            e.with_context(entity_id=entity_id)
            return Err(e)

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="loanflow") as executor:
        futures: dict[str, Future[Result[T]]] = {
            entity_id: executor.submit(guarded, entity_id) for entity_id in entity_ids
        }
        results = {entity_id: future.result() for entity_id, future in futures.items()}

    batch = BatchResult(results=results, started_at=started_at)
    logger.info(
        "batch.completed",
        succeeded=batch.succeeded,
        failed=batch.failed,
        duration_seconds=batch.duration_seconds,
    )
    return batch
