"""Bounded fixed-interval retry for polling and actuation.

Every wait in loanflow is "try N times, ``interval_ms`` apart". The two
loops share one policy type:

- ``wait_for`` polls a check until it reports a final outcome
  (``Confirmed`` / ``TerminalDetected``) or the budget is spent.
- ``retry`` re-invokes an operation while its result is retryable.

Manifesto:
    Eventual consistency across systems means the first read after an
    action is usually stale. Polling must be:

    - **Bounded:** A budget of attempts, never an unbounded loop
    - **Observable:** Each outcome stamped with the attempt that produced it
    - **Interruptible:** Sleeps go through an injected ``Sleeper``; a
      ``CancelToken`` is checked before every attempt
    - **Honest:** A store outage on the last attempt is reported as such,
      not as "still pending"

Architecture:
    ::

        attempt 1 ──► check() ──► Confirmed/TerminalDetected ──► return
                         │
                         └─► StillPending/StoreUnavailable
                                   │
                         sleep(interval_ms)       (never after the last)
                                   │
        attempt 2 ──► check() ...
                                   │
        attempt N ──► check() ──► return last outcome

Examples:
    >>> policy = RetryPolicy(max_attempts=12, interval_ms=5000)
    >>> outcome = policy.wait_for(lambda: poller_check(), sleeper=sleeper)
    >>> outcome.attempt
    3

Tags:
    retry, polling, backoff, budget, loanflow

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, TypeVar

from loanflow.core.errors import ConfigurationError
from loanflow.core.logging import get_logger
from loanflow.core.protocols import Sleeper
from loanflow.execution.cancellation import CancelToken
from loanflow.orchestration.outcomes import PollOutcome, StillPending, is_final

logger = get_logger(__name__)

R = TypeVar("R")


@dataclass
class RetryBudget:
    """Mutable attempt accounting for exactly one loop.

    Never shared between runs or between loops within a run.
    """

    max_attempts: int
    interval_ms: int
    attempts: int = 0
    elapsed_ms: int = 0

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    @property
    def remaining(self) -> int:
        return max(0, self.max_attempts - self.attempts)

    def record_attempt(self) -> int:
        """Consume one attempt and return its 1-based index."""
        self.attempts += 1
        return self.attempts

    def record_sleep(self, duration_ms: int) -> None:
        self.elapsed_ms += duration_ms


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-interval retry policy.

    Attributes:
        max_attempts: Total attempts, including the first (>= 1)
        interval_ms: Sleep between attempts in milliseconds (>= 0)
    """

    max_attempts: int
    interval_ms: int

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.interval_ms < 0:
            raise ConfigurationError(f"interval_ms must be >= 0, got {self.interval_ms}")

    @classmethod
    def from_settings(cls, settings) -> RetryPolicy:
        """Build from any object with ``max_attempts`` and ``interval_ms``."""
        return cls(max_attempts=settings.max_attempts, interval_ms=settings.interval_ms)

    def new_budget(self) -> RetryBudget:
        return RetryBudget(max_attempts=self.max_attempts, interval_ms=self.interval_ms)

    @property
    def budget_ms(self) -> int:
        """Worst-case total sleep for one loop."""
        return (self.max_attempts - 1) * self.interval_ms

    def wait_for(
        self,
        check: Callable[[], PollOutcome],
        *,
        sleeper: Sleeper,
        cancel: CancelToken | None = None,
        budget: RetryBudget | None = None,
    ) -> PollOutcome:
        """Run ``check`` until it returns a final outcome or the budget is spent.

        Returns the final outcome, or the outcome of the last attempt when
        the budget runs out (``StillPending`` or ``StoreUnavailable``).

        Raises:
            RunCancelledError: ``cancel`` was set before an attempt
        """
        budget = budget if budget is not None else self.new_budget()
        last: PollOutcome | None = None

        while not budget.exhausted:
            if cancel is not None:
                cancel.raise_if_cancelled(attempts=budget.attempts)

            attempt = budget.record_attempt()
            outcome = replace(check(), attempt=attempt)
            logger.debug(
                "poll.attempt",
                attempt=attempt,
                max_attempts=budget.max_attempts,
                outcome=type(outcome).__name__,
            )

            if is_final(outcome):
                return outcome
            last = outcome

            if budget.exhausted:
                break
            sleeper.sleep(self.interval_ms)
            budget.record_sleep(self.interval_ms)

        if last is None:
            # budget was already spent when handed in
            return StillPending(attempt=budget.attempts)
        return last

    def retry(
        self,
        operation: Callable[[int], R],
        *,
        is_retryable: Callable[[R], bool],
        sleeper: Sleeper,
        cancel: CancelToken | None = None,
        budget: RetryBudget | None = None,
    ) -> R:
        """Invoke ``operation(attempt)`` until its result is not retryable.

        Returns the first non-retryable result, or the last result once the
        budget is spent. Exceptions raised by ``operation`` propagate.
        """
        budget = budget if budget is not None else self.new_budget()

        while True:
            if cancel is not None:
                cancel.raise_if_cancelled(attempts=budget.attempts)

            attempt = budget.record_attempt()
            result = operation(attempt)
            if not is_retryable(result) or budget.exhausted:
                return result

            logger.info(
                "retry.scheduled",
                attempt=attempt,
                max_attempts=budget.max_attempts,
                delay_ms=self.interval_ms,
            )
            sleeper.sleep(self.interval_ms)
            budget.record_sleep(self.interval_ms)
