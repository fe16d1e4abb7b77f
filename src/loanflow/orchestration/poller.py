"""
TransitionPoller - confirm that a store shows an expected state.

One poll reads the entity's state column through a statement key and maps
the observation onto a ``PollOutcome``:

==========================================  ======================
Observation                                 Outcome
==========================================  ======================
state == target                             ``Confirmed``
state in terminal set                       ``TerminalDetected``
store unreachable                           ``StoreUnavailable``
no row, or any other value                  ``StillPending``
==========================================  ======================

``confirm`` repeats the poll under the poller's ``RetryPolicy``.
"""

from __future__ import annotations

from collections.abc import Callable, Collection
from typing import TypeVar

from loanflow.core.errors import StoreQueryError, StoreUnavailableError
from loanflow.core.logging import get_logger
from loanflow.core.protocols import Sleeper, StoreHandle
from loanflow.execution.cancellation import CancelToken
from loanflow.execution.retry import RetryBudget, RetryPolicy
from loanflow.orchestration.outcomes import (
    Confirmed,
    PollOutcome,
    StillPending,
    StoreUnavailable,
    TerminalDetected,
)

logger = get_logger(__name__)

T = TypeVar("T")


def guarded_read(store: StoreHandle, read: Callable[[], T]) -> T | StoreUnavailable:
    """Run one store read, turning an outage into ``StoreUnavailable``.

    A ``StoreQueryError`` counts as an outage only when the store also fails
    its liveness check; otherwise it propagates.
    """
    try:
        return read()
    except StoreUnavailableError as e:
        return StoreUnavailable(reason=str(e))
    except StoreQueryError as e:
        if store.is_available():
            raise
        return StoreUnavailable(reason=str(e))


class TransitionPoller:
    """Polls one state column until it shows the target or a terminal state.

    Args:
        policy: Attempt budget for each ``confirm`` call
        state_statement: Statement key that selects the entity's state row
        state_field: Column holding the state value
        sleeper: Suspension point between attempts
    """

    def __init__(
        self,
        policy: RetryPolicy,
        *,
        state_statement: str,
        state_field: str,
        sleeper: Sleeper,
    ):
        self.policy = policy
        self.state_statement = state_statement
        self.state_field = state_field
        self._sleeper = sleeper

    def read_state(self, entity_id: str, store: StoreHandle) -> str | None:
        """Current state value, or ``None`` when the entity has no row."""
        row = store.query_one(self.state_statement, {"entity_id": entity_id})
        if row is None:
            return None
        value = row.get(self.state_field)
        return None if value is None else str(value)

    def check(
        self,
        entity_id: str,
        target_state: str,
        terminal_states: Collection[str],
        store: StoreHandle,
    ) -> PollOutcome:
        """A single poll."""
        observed = guarded_read(store, lambda: self.read_state(entity_id, store))
        if isinstance(observed, StoreUnavailable):
            return observed

        if observed == target_state:
            return Confirmed(observed=observed)
        if observed is not None and observed in terminal_states:
            return TerminalDetected(state=observed)
        return StillPending(observed=observed)

    def confirm(
        self,
        entity_id: str,
        target_state: str,
        terminal_states: Collection[str],
        store: StoreHandle,
        *,
        cancel: CancelToken | None = None,
        budget: RetryBudget | None = None,
    ) -> PollOutcome:
        """Poll until confirmed, terminal, or the budget is spent."""
        outcome = self.policy.wait_for(
            lambda: self.check(entity_id, target_state, terminal_states, store),
            sleeper=self._sleeper,
            cancel=cancel,
            budget=budget,
        )
        logger.info(
            "poll.finished",
            entity_id=entity_id,
            target_state=target_state,
            store=store.name,
            outcome=type(outcome).__name__,
            attempts=outcome.attempt,
        )
        return outcome
