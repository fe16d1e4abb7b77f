"""
Structured error types for the loanflow engine.

Every failure the engine can report to a caller is a ``LoanflowError``
subclass. Errors carry a category, a retryable flag and an ``ErrorContext``
holding the entity being driven, the last state the store showed and the
attempt counts spent, so a failed run can be diagnosed without re-running it.

Manifesto:
    - **Typed hierarchy:** One class per failure kind the caller must tell apart
    - **Explicit retry semantics:** Each error knows whether it is retryable
    - **Rich context:** Entity id, observed state and attempts travel with the error
    - **Error chaining:** The underlying driver/HTTP exception is kept as ``cause``

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                       LoanflowError                           │
        │        (category, retryable, context, cause)                 │
        ├──────────────────────────────────────────────────────────────┤
        │  ConfigurationError      StoreError          WorkflowError   │
        │  (CONFIG)                (STORE)             (WORKFLOW)      │
        │       │                      │                    │          │
        │  UnknownStatementError   StoreUnavailableError TerminalState │
        │  UnknownStoreError       StoreQueryError       Confirmation- │
        │                                                TimeoutError  │
        │  ActuationError          RunCancelledError     Precondition- │
        │  (ACTUATION)             (CANCELLED)           FailedError   │
        │                                                              │
        │  InvalidEntityIdError (VALIDATION)                           │
        └──────────────────────────────────────────────────────────────┘

Examples:
    >>> error = TerminalStateError("REJECTED").with_context(entity_id="app-1")
    >>> error.retryable
    False
    >>> error.to_dict()["context"]["entity_id"]
    'app-1'

Guardrails:
    ❌ DON'T: Raise bare Exception from engine code
    ✅ DO: Pick the subclass that names the failure kind

    ❌ DON'T: Drop the driver exception when translating it
    ✅ DO: Pass it as ``cause=``

Tags:
    error-handling, exception-hierarchy, retry-logic, error-context, loanflow

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Failure kinds. The CLI picks its exit code from the category.

    The category tells an operator where to look: CONFIG and VALIDATION
    errors need a fix before re-running, STORE errors point at
    infrastructure, WORKFLOW errors are business outcomes observed in the
    stores, ACTUATION errors come from the trigger side.
    """

    CONFIG = "CONFIG"              # Bad stage sequence, unknown state/store/statement
    VALIDATION = "VALIDATION"      # Malformed input such as an entity id
    STORE = "STORE"                # Backing store unreachable or statement failed
    ACTUATION = "ACTUATION"        # Trigger endpoint / UI action failed
    WORKFLOW = "WORKFLOW"          # Terminal state, timeout, precondition mismatch
    CANCELLED = "CANCELLED"        # Operator abort or deadline
    INTERNAL = "INTERNAL"          # Bugs, unexpected state


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        entity_id: Identifier of the entity being driven (loan application id)
        workflow: Name of the driver or chain that raised
        step: Step or link name within the run
        from_state: State the step started from
        to_state: State the step was trying to reach
        last_observed_state: Last state the store reported, if any
        attempts: Attempts spent by the loop that failed
        store: Name of the store involved
        metadata: Additional key-value pairs
    """

    entity_id: str | None = None
    workflow: str | None = None
    step: str | None = None
    from_state: str | None = None
    to_state: str | None = None
    last_observed_state: str | None = None
    attempts: int | None = None
    store: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Non-empty fields plus metadata, flattened."""
        result = {}
        for key in ["entity_id", "workflow", "step", "from_state", "to_state",
                    "last_observed_state", "attempts", "store"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class LoanflowError(Exception):
    """
    Base exception for all loanflow errors.

    Subclasses set ``default_category`` and ``default_retryable`` so call
    sites only pass what differs from the default.

    Examples:
        >>> error = LoanflowError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>

        >>> error = LoanflowError("Fetch failed").with_context(store="lending")
        >>> error.context.store
        'lending'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> LoanflowError:
        """
        Fill in context fields (unknown keys go to metadata). Returns self.

        Usage:
            raise ConfirmationTimeoutError("...").with_context(
                entity_id="app-1",
                attempts=12,
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Error type, message, category and context as plain data."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigurationError(LoanflowError):
    """
    Configuration error.

    Never retryable - the stage sequence, store map or policy must be fixed.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class UnknownStatementError(ConfigurationError):
    """Statement key is not defined in the store's catalog."""

    def __init__(self, key: str, store: str | None = None):
        self.key = key
        where = f" for store {store!r}" if store else ""
        super().__init__(f"Unknown statement key{where}: {key}")
        if store:
            self.context.store = store


class UnknownStoreError(ConfigurationError):
    """Store name is not registered."""

    def __init__(self, name: str):
        self.store_name = name
        super().__init__(f"Store not registered: {name}")
        self.context.store = name


class InvalidEntityIdError(LoanflowError):
    """Entity id does not match the accepted identifier format."""

    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(self, entity_id: str | None):
        self.entity_id = entity_id
        super().__init__(f"Invalid entity id: {entity_id!r}")


# =============================================================================
# STORE ERRORS
# =============================================================================


class StoreError(LoanflowError):
    """Backing store error."""

    default_category = ErrorCategory.STORE
    default_retryable = False


class StoreUnavailableError(StoreError):
    """
    Store could not be reached.

    Absorbed as a consumed attempt by polling loops; only reported to the
    caller when it is the outcome of the last attempt in a budget.
    """

    default_retryable = True


class StoreQueryError(StoreError):
    """Statement failed for a reason other than connectivity."""

    pass


# =============================================================================
# ACTUATION ERRORS
# =============================================================================


class ActuationError(LoanflowError):
    """
    The actuator failed hard, or exhausted its transient-retry budget.

    Fatal for the run.
    """

    default_category = ErrorCategory.ACTUATION
    default_retryable = False


# =============================================================================
# WORKFLOW ERRORS
# =============================================================================


class WorkflowError(LoanflowError):
    """Business-level failure observed while driving a workflow."""

    default_category = ErrorCategory.WORKFLOW
    default_retryable = False


class TerminalStateError(WorkflowError):
    """
    The workflow is in (or reached) a dead-end state.

    An expected business outcome, e.g. a reviewer rejected the application
    while it was being driven.
    """

    def __init__(self, state: str, message: str | None = None):
        self.state = state
        super().__init__(message or f"Workflow reached terminal state: {state}")
        self.context.last_observed_state = state


class ConfirmationTimeoutError(WorkflowError):
    """
    The store never reflected the expected state within the attempt budget.

    Unlike ``TerminalStateError`` the true state is unknown; the last
    observed value is in ``context.last_observed_state``.
    """

    pass


class PreconditionFailedError(WorkflowError):
    """A chain precondition (expected row values or a narrow write) was not met."""

    pass


class RunCancelledError(LoanflowError):
    """The run was cancelled by an operator or its deadline passed."""

    default_category = ErrorCategory.CANCELLED
    default_retryable = False


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """A ``LoanflowError``'s own flag; builtin connection/timeout errors count too."""
    if isinstance(error, LoanflowError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError))


def categorize_error(error: Exception) -> ErrorCategory:
    """Category of a ``LoanflowError``; INTERNAL for foreign exceptions."""
    if isinstance(error, LoanflowError):
        return error.category
    return ErrorCategory.INTERNAL
