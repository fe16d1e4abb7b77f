"""
Loan-application review workflow wiring.

The review workflow moves an application through document upload, manual
review, fraud review, NACH mandate email and KYC verification. A reviewer
can drop it into ``TEST_IGNORE`` or ``REJECTED`` at any point.

Statement keys used on the review store:

- ``review_status`` → row with ``user_data_review_status``
"""

from __future__ import annotations

from collections.abc import Sequence

from loanflow.core.protocols import Actuator, Sleeper, StoreHandle
from loanflow.core.settings import DEFAULT_STAGES, DEFAULT_TERMINAL_STATES
from loanflow.execution.cancellation import CancelToken, SystemSleeper
from loanflow.execution.retry import RetryPolicy
from loanflow.orchestration.driver import DEFAULT_ACTUATION_POLICY, WorkflowDriver
from loanflow.orchestration.poller import TransitionPoller
from loanflow.orchestration.states import StageSequence

REVIEW_STAGES = tuple(DEFAULT_STAGES)
REVIEW_TERMINAL_STATES = tuple(DEFAULT_TERMINAL_STATES)

REVIEW_STATUS_STATEMENT = "review_status"
REVIEW_STATUS_FIELD = "user_data_review_status"

STAGE_CONFIRMATION_POLICY = RetryPolicy(max_attempts=12, interval_ms=5000)


def review_stages(
    stages: Sequence[str] = REVIEW_STAGES,
    terminal_states: Sequence[str] = REVIEW_TERMINAL_STATES,
) -> StageSequence:
    return StageSequence(stages, terminal_states=terminal_states)


def build_review_driver(
    store: StoreHandle,
    actuator: Actuator,
    *,
    stages: StageSequence | None = None,
    confirmation_policy: RetryPolicy = STAGE_CONFIRMATION_POLICY,
    actuation_policy: RetryPolicy = DEFAULT_ACTUATION_POLICY,
    state_statement: str = REVIEW_STATUS_STATEMENT,
    state_field: str = REVIEW_STATUS_FIELD,
    sleeper: Sleeper | None = None,
    cancel: CancelToken | None = None,
) -> WorkflowDriver:
    """A driver for the review workflow against ``store``."""
    sleeper = sleeper if sleeper is not None else SystemSleeper(cancel)
    poller = TransitionPoller(
        confirmation_policy,
        state_statement=state_statement,
        state_field=state_field,
        sleeper=sleeper,
    )
    return WorkflowDriver(
        stages if stages is not None else review_stages(),
        actuator,
        poller,
        store,
        actuation_policy=actuation_policy,
        sleeper=sleeper,
        cancel=cancel,
        name="review",
    )
