"""
Canonical protocol definitions for loanflow.

The engine never talks to a database driver, an HTTP client or a browser
directly. It depends on three narrow shapes defined here, and adapters in
``loanflow.adapters`` (or a caller's own code) provide them.

Manifesto:
    Protocols define contracts without inheritance. They enable:

    - **Decoupling:** The engine depends on shape, not implementation
    - **Testability:** Any object matching the protocol works, fakes included
    - **Portability:** The same driver runs against MySQL, SQLite or a fake

Architecture:
    ::

        protocols.py (YOU ARE HERE)
        ├── StoreHandle   — statement-key reads/writes + liveness
        ├── Actuator      — perform the action that causes a transition
        └── Sleeper       — the suspension point between attempts

    Consumers:
        orchestration/poller.py, orchestration/driver.py,
        orchestration/chain.py, execution/retry.py

Guardrails:
    ❌ DON'T: Pass raw SQL through StoreHandle
    ✅ DO: Reference statement keys resolved by the adapter's catalog

    ❌ DON'T: Call time.sleep() inside engine loops
    ✅ DO: Go through the injected Sleeper so tests and cancellation work

Tags:
    protocol, store, actuator, sleeper, loanflow, contracts

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from loanflow.orchestration.outcomes import ActuationContext, ActuationOutcome


@runtime_checkable
class StoreHandle(Protocol):
    """
    Opaque, reusable handle to one named backing store.

    Implementations translate connectivity failures into
    ``StoreUnavailableError`` and any other statement failure into
    ``StoreQueryError``.

    Examples:
        >>> row = store.query_one("review_status", {"entity_id": "app-1"})
        >>> row["user_data_review_status"] if row else None
        'PENDING_REVIEW'
    """

    name: str

    def query_one(self, statement_key: str, params: Mapping[str, Any]) -> Mapping[str, Any] | None:
        """Run a read statement and return its first row, or ``None``."""
        ...

    def execute(self, statement_key: str, params: Mapping[str, Any]) -> int:
        """Run a write statement and return the affected row count."""
        ...

    def is_available(self) -> bool:
        """Liveness check. Never raises."""
        ...


@runtime_checkable
class Actuator(Protocol):
    """
    Performs the externally observable action that should cause a transition.

    Returns an ``ActuationOutcome``: ``Success``, ``TransientFailure`` (the
    driver may retry) or ``HardFailure`` (the run aborts).
    """

    def act(self, context: ActuationContext) -> ActuationOutcome:
        ...


class Sleeper(Protocol):
    """Suspension point between attempts. Durations are in milliseconds."""

    def sleep(self, duration_ms: int) -> None:
        ...
