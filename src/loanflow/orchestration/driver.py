"""
WorkflowDriver - advance an entity through consecutive stages.

The driver owns the "current state" of one run. For each step it asks the
actuator to perform the action, then has the poller confirm that the store
shows the successor stage before moving on.

Manifesto:
    - **Confirm, don't assume:** A step only counts once the store shows it
    - **Fail with evidence:** Every error carries the entity id, the
      from/to states, the last observed state and the attempts spent
    - **Expected outcomes are values:** ``run`` returns ``Ok``/``Err``;
      a rejected application is not an exception to the caller

Architecture:
    ::

        run(entity_id, start, target)
          │
          ├─ start == target ─────────────────────────► Ok (no actuation)
          ├─ start terminal ──────────────────────────► Err(TerminalStateError)
          │
          └─ for each (current → next) on the path:
               actuator.act()   ◄── RetryPolicy.retry (transient failures)
                   │ HardFailure / exhausted ─────────► Err(ActuationError)
               poller.confirm() ◄── RetryPolicy.wait_for
                   │ Confirmed ───────────────────────► current = next
                   │ TerminalDetected ────────────────► Err(TerminalStateError)
                   │ StillPending ────────────────────► Err(ConfirmationTimeoutError)
                   │ StoreUnavailable ────────────────► Err(StoreUnavailableError)

Examples:
    >>> driver = WorkflowDriver(stages, actuator, poller, store)
    >>> result = driver.run("app-1", "DOCS_UPLOADED", "FRAUD_REVIEW")
    >>> result.unwrap().final_state
    'FRAUD_REVIEW'

Guardrails:
    ❌ DON'T: Keep the current state on the driver instance
    ✅ DO: Keep it local to ``run`` so one driver can serve sequential runs

    Actuation is at-least-once: a retried transient failure may have
    already taken effect.

Tags:
    workflow, driver, state-machine, polling, loanflow

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from loanflow.core.errors import (
    ActuationError,
    ConfigurationError,
    ConfirmationTimeoutError,
    LoanflowError,
    StoreUnavailableError,
    TerminalStateError,
)
from loanflow.core.logging import LogContext, get_logger
from loanflow.core.protocols import Actuator, Sleeper, StoreHandle
from loanflow.core.result import Err, Ok, Result
from loanflow.execution.cancellation import CancelToken, SystemSleeper
from loanflow.execution.retry import RetryPolicy
from loanflow.orchestration.outcomes import (
    ActuationContext,
    Confirmed,
    HardFailure,
    StillPending,
    StoreUnavailable,
    TerminalDetected,
    TransientFailure,
)
from loanflow.orchestration.poller import TransitionPoller
from loanflow.orchestration.states import StageSequence, TransitionRequest, WorkflowState

logger = get_logger(__name__)

DEFAULT_ACTUATION_POLICY = RetryPolicy(max_attempts=3, interval_ms=1000)


@dataclass
class StepRecord:
    """One confirmed transition."""

    from_state: str
    to_state: str
    actuation_attempts: int
    poll_attempts: int
    started_at: datetime
    completed_at: datetime

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "from_state": self.from_state,
            "to_state": self.to_state,
            "actuation_attempts": self.actuation_attempts,
            "poll_attempts": self.poll_attempts,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class RunReport:
    """Outcome of a successful ``WorkflowDriver.run``."""

    entity_id: str
    start: str
    final_state: str
    steps: list[StepRecord] = field(default_factory=list)

    @property
    def actuator_calls(self) -> int:
        return sum(s.actuation_attempts for s in self.steps)

    @property
    def poll_attempts(self) -> int:
        return sum(s.poll_attempts for s in self.steps)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "start": self.start,
            "final_state": self.final_state,
            "steps": [s.to_dict() for s in self.steps],
        }


class WorkflowDriver:
    """Drives one entity from a start stage to a target stage.

    Args:
        stages: The ordered stage sequence and terminal set
        actuator: Performs the action for each step
        poller: Confirms each step against ``store``
        store: Handle the poller reads; borrowed for the driver's lifetime
        actuation_policy: Budget for transient actuator failures
        sleeper: Suspension point between actuation retries
        cancel: Checked at every actuation and poll boundary
        name: Workflow name used in logs and error context
    """

    def __init__(
        self,
        stages: StageSequence,
        actuator: Actuator,
        poller: TransitionPoller,
        store: StoreHandle,
        *,
        actuation_policy: RetryPolicy = DEFAULT_ACTUATION_POLICY,
        sleeper: Sleeper | None = None,
        cancel: CancelToken | None = None,
        name: str = "review",
    ):
        self.stages = stages
        self.name = name
        self._actuator = actuator
        self._poller = poller
        self._store = store
        self._actuation_policy = actuation_policy
        self._cancel = cancel
        self._sleeper = sleeper if sleeper is not None else SystemSleeper(cancel)

    def advance(self, current: str | WorkflowState) -> WorkflowState:
        """Successor of ``current`` in the stage sequence.

        Raises:
            ConfigurationError: ``current`` is unknown, terminal, or last
        """
        name = current.name if isinstance(current, WorkflowState) else current
        return self.stages.successor(name)

    def current_state(self, entity_id: str) -> str | None:
        """State the driver's store currently shows for ``entity_id``."""
        return self._poller.read_state(entity_id, self._store)

    def run(self, entity_id: str, start: str, target: str) -> Result[RunReport]:
        """Drive ``entity_id`` from ``start`` to ``target``."""
        with LogContext(entity_id=entity_id, workflow=self.name):
            logger.info("driver.run.start", start=start, target=target, store=self._store.name)
            steps: list[StepRecord] = []
            try:
                report = self._run(entity_id, start, target, steps)
            except LoanflowError as e:
                e.with_context(entity_id=entity_id, workflow=self.name)
                e.context.metadata.setdefault("completed_steps", [s.to_state for s in steps])
                logger.warning("driver.run.failed", **e.to_dict())
                return Err(e)
            logger.info(
                "driver.run.completed",
                final_state=report.final_state,
                steps=len(report.steps),
                actuator_calls=report.actuator_calls,
            )
            return Ok(report)

    def _run(
        self, entity_id: str, start: str, target: str, steps: list[StepRecord]
    ) -> RunReport:
        self.stages.get(start)
        self.stages.get(target)

        if start == target:
            return RunReport(entity_id=entity_id, start=start, final_state=start)

        if self.stages.is_terminal(start):
            raise TerminalStateError(
                start, f"Cannot advance from terminal state: {start}"
            ).with_context(from_state=start, to_state=target, attempts=0)

        if self.stages.is_terminal(target):
            raise ConfigurationError(f"Target is a terminal state: {target}")

        path = self.stages.path(start, target)
        current = start
        for successor in path[1:]:
            steps.append(self._step(entity_id, current, successor.name))
            current = successor.name

        return RunReport(entity_id=entity_id, start=start, final_state=current, steps=steps)

    def _step(self, entity_id: str, current: str, successor: str) -> StepRecord:
        started_at = datetime.now(UTC)
        try:
            actuation_attempts = self._actuate(entity_id, current, successor)
            poll_attempts = self._confirm(entity_id, successor)
        except LoanflowError as e:
            if e.context.from_state is None:
                e.with_context(from_state=current, to_state=successor)
            raise

        record = StepRecord(
            from_state=current,
            to_state=successor,
            actuation_attempts=actuation_attempts,
            poll_attempts=poll_attempts,
            started_at=started_at,
            completed_at=datetime.now(UTC),
        )
        logger.info(
            "driver.step.confirmed",
            from_state=current,
            to_state=successor,
            actuation_attempts=actuation_attempts,
            poll_attempts=poll_attempts,
        )
        return record

    def _actuate(self, entity_id: str, current: str, successor: str) -> int:
        request = TransitionRequest(
            current_state=current,
            target_state=successor,
            entity_id=entity_id,
            store=self._store.name,
        )
        budget = self._actuation_policy.new_budget()

        def attempt(n: int):
            logger.info("driver.step.actuate", from_state=current, to_state=successor, attempt=n)
            return self._actuator.act(
                ActuationContext(
                    entity_id=entity_id,
                    action=f"{current}->{successor}",
                    attempt=n,
                    request=request,
                    params={"entity_id": entity_id, "from_state": current, "to_state": successor},
                )
            )

        outcome = self._actuation_policy.retry(
            attempt,
            is_retryable=lambda o: isinstance(o, TransientFailure),
            sleeper=self._sleeper,
            cancel=self._cancel,
            budget=budget,
        )

        match outcome:
            case HardFailure(reason=reason):
                raise ActuationError(f"Actuation failed: {reason}").with_context(
                    attempts=budget.attempts, last_observed_state=current
                )
            case TransientFailure(reason=reason):
                raise ActuationError(
                    f"Actuation still failing after {budget.attempts} attempts: {reason}",
                ).with_context(attempts=budget.attempts, last_observed_state=current)
        return budget.attempts

    def _confirm(self, entity_id: str, successor: str) -> int:
        outcome = self._poller.confirm(
            entity_id,
            successor,
            self.stages.terminal_states,
            self._store,
            cancel=self._cancel,
        )

        match outcome:
            case Confirmed():
                return outcome.attempt
            case TerminalDetected(state=state):
                raise TerminalStateError(state).with_context(
                    attempts=outcome.attempt, last_observed_state=state
                )
            case StillPending(observed=observed):
                raise ConfirmationTimeoutError(
                    f"Store never showed {successor} after {outcome.attempt} polls"
                ).with_context(
                    attempts=outcome.attempt,
                    last_observed_state=observed,
                    store=self._store.name,
                )
            case StoreUnavailable(reason=reason):
                raise StoreUnavailableError(
                    f"Store {self._store.name} unavailable on final poll: {reason}"
                ).with_context(attempts=outcome.attempt, store=self._store.name)
        raise AssertionError(f"Unhandled poll outcome: {outcome!r}")
