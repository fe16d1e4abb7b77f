"""
Outcome types returned by polls and actuations.

Both unions are closed sets of frozen dataclasses, so callers dispatch with
``match``::

    match outcome:
        case Confirmed(observed=state):
            ...
        case TerminalDetected(state=state):
            raise TerminalStateError(state)
        case StoreUnavailable(reason=reason):
            ...
        case StillPending():
            ...

``attempt`` on a poll outcome is the 1-based index of the attempt that
produced it. Checks return outcomes with ``attempt=0``; ``RetryPolicy``
stamps the real index before handing the outcome on.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, TypeAlias

from loanflow.orchestration.states import TransitionRequest


# ── Poll outcomes ────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class Confirmed:
    """The store shows the expected state."""

    observed: str | None = None
    row: Mapping[str, Any] | None = None
    attempt: int = 0


@dataclass(frozen=True, slots=True)
class StillPending:
    """No row yet, or the row shows some other non-terminal value."""

    observed: str | None = None
    row: Mapping[str, Any] | None = None
    attempt: int = 0


@dataclass(frozen=True, slots=True)
class TerminalDetected:
    """The store shows a dead-end state."""

    state: str
    attempt: int = 0


@dataclass(frozen=True, slots=True)
class StoreUnavailable:
    """The store could not be read on this attempt."""

    reason: str
    attempt: int = 0


PollOutcome: TypeAlias = Confirmed | StillPending | TerminalDetected | StoreUnavailable


def is_final(outcome: PollOutcome) -> bool:
    """Final outcomes end a polling loop before its budget is spent."""
    return isinstance(outcome, (Confirmed, TerminalDetected))


def observed_state(outcome: PollOutcome | None) -> str | None:
    """The last state value a poll outcome saw, if any."""
    match outcome:
        case Confirmed(observed=observed) | StillPending(observed=observed):
            return observed
        case TerminalDetected(state=state):
            return state
        case _:
            return None


# ── Actuation ────────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class ActuationContext:
    """What an actuator is asked to do.

    ``action`` names the transition (``"PENDING_REVIEW->FRAUD_REVIEW"``) or
    the trigger (``"push_lead"``). ``params`` are the values an HTTP
    trigger formats into its path.
    """

    entity_id: str
    action: str
    attempt: int = 1
    request: TransitionRequest | None = None
    params: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Success:
    detail: str | None = None
    status_code: int | None = None


@dataclass(frozen=True, slots=True)
class TransientFailure:
    """Retryable failure, e.g. a gateway timeout page."""

    reason: str
    status_code: int | None = None


@dataclass(frozen=True, slots=True)
class HardFailure:
    """Non-retryable failure. Aborts the run."""

    reason: str
    status_code: int | None = None


ActuationOutcome: TypeAlias = Success | TransientFailure | HardFailure
