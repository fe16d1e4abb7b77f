"""
Ok/Err envelopes returned by the engine entry points.

``WorkflowDriver.run``, ``ReconciliationChain.run`` and ``run_many`` never
raise for an expected outcome. A rejected application or a store that never
caught up comes back as ``Err`` carrying a ``LoanflowError``; only
programming errors escape as exceptions. A batch of runs therefore keeps
going past the first bad entity.

Manifesto:
    - **Outcomes are values:** The caller sees the failure in the type
    - **Composable:** ``map``/``flat_map`` chain follow-up work on success
    - **Batch-friendly:** ``partition_results()`` splits a list of runs

Architecture:
    ::

        Ok(value)    is_ok()  unwrap() -> value     to_dict() {"ok": true, "value": ...}
        Err(error)   is_err() unwrap() raises error to_dict() {"ok": false, "error": ...}

Usage:
    from loanflow.core.result import Ok, Err

    result = driver.run("app-1", "DOCS_UPLOADED", "FRAUD_REVIEW")
    match result:
        case Ok(report):
            print(report.final_state)
        case Err(error):
            print(error.to_dict())
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

from loanflow.core.errors import LoanflowError


T = TypeVar("T")
U = TypeVar("U")


def _as_data(value: Any) -> Any:
    return value.to_dict() if hasattr(value, "to_dict") else value


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """
    A completed run and its report.

    Examples:
        >>> Ok(2).map(lambda steps: steps + 1).unwrap()
        3
    """

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value

    def map(self, f: Callable[[T], U]) -> Result[U]:
        return Ok(f(self.value))

    def flat_map(self, f: Callable[[T], Result[U]]) -> Result[U]:
        """Feed the value into the next run-producing step."""
        return f(self.value)

    def map_err(self, f: Callable[[Exception], Exception]) -> Result[T]:
        return self

    def to_dict(self) -> dict[str, Any]:
        return {"ok": True, "value": _as_data(self.value)}

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[T]):
    """
    A failed run and the error that stopped it.

    Examples:
        >>> Err(TerminalStateError("REJECTED")).unwrap_or(None) is None
        True
    """

    error: Exception

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        """Re-raise the stored error."""
        raise self.error

    def unwrap_or(self, default: T) -> T:
        return default

    def map(self, f: Callable[[T], U]) -> Result[U]:
        return Err(self.error)

    def flat_map(self, f: Callable[[T], Result[U]]) -> Result[U]:
        return Err(self.error)

    def map_err(self, f: Callable[[Exception], Exception]) -> Result[T]:
        """Replace the error, e.g. to add context before reporting."""
        return Err(f(self.error))

    def to_dict(self) -> dict[str, Any]:
        if isinstance(self.error, LoanflowError):
            error = self.error.to_dict()
        else:
            error = {"error_type": type(self.error).__name__, "message": str(self.error)}
        return {"ok": False, "error": error}

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


Result = Ok[T] | Err[T]


def partition_results(results: list[Result[T]]) -> tuple[list[T], list[Exception]]:
    """Split run results into reports and errors, keeping input order.

    Example:
        >>> reports, errors = partition_results([Ok("a"), Err(ValueError("x")), Ok("b")])
        >>> reports
        ['a', 'b']
        >>> len(errors)
        1
    """
    values: list[T] = []
    errors: list[Exception] = []
    for r in results:
        if isinstance(r, Ok):
            values.append(r.value)
        else:
            errors.append(r.error)
    return values, errors
