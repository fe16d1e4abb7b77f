"""Test harness — doubles and assertions for loanflow runs.

Manifesto:
Driver and chain tests need stores whose answers change between polls,
actuators that fail on cue, and sleeps that cost nothing. This module
provides those so test code reads like the scenario it checks.

ARCHITECTURE
────────────
::

    Test doubles:
      FakeStore          → StoreHandle with scripted / keyed rows
      ScriptedActuator   → Actuator returning pre-configured outcomes
      RecordingSleeper   → Sleeper that records durations, never blocks

    Assertion helpers:
      assert_run_completed(result, final_state=None)
      assert_run_failed(result, error_type)

Example::

    store = FakeStore("lending")
    store.script("review_status",
                 {"user_data_review_status": "DOCS_UPLOADED"},
                 {"user_data_review_status": "PENDING_REVIEW"})
    actuator = ScriptedActuator()
    sleeper = RecordingSleeper()

    driver = build_review_driver(store, actuator, sleeper=sleeper)
    result = driver.run("app-1", "DOCS_UPLOADED", "PENDING_REVIEW")
    assert_run_completed(result, "PENDING_REVIEW")
    assert sleeper.calls == [5000]

Tags:
    loanflow, testing, harness, fakes, assertions

Doc-Types:
    api-reference
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from loanflow.core.errors import StoreUnavailableError
from loanflow.core.result import Err, Ok, Result
from loanflow.orchestration.outcomes import ActuationContext, ActuationOutcome, Success

_Response = Mapping[str, Any] | Exception | None


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeStore:
    """In-memory ``StoreHandle``.

    Two ways to answer ``query_one``:

    - ``script(key, *responses)``: each query of ``key`` consumes the next
      response; the last one repeats. A response may be a row, ``None``
      or an exception to raise.
    - ``put(key, entity_id, row, **where)``: a row keyed by
      ``params["entity_id"]``, used when ``key`` has no script. Any
      ``where`` items must also equal the bound params or the row is not
      found.

    ``execute`` returns scripted row counts (default 1).
    """

    def __init__(self, name: str = "fake", *, available: bool = True) -> None:
        self.name = name
        self.available = available
        self.calls: list[tuple[str, str, dict[str, Any]]] = []
        self._scripts: dict[str, deque[_Response]] = {}
        self._rows: dict[tuple[str, str], tuple[Mapping[str, Any], dict[str, Any]]] = {}
        self._execute_scripts: dict[str, deque[int | Exception]] = {}
        self._lock = threading.Lock()

    def script(self, statement_key: str, *responses: _Response) -> FakeStore:
        self._scripts[statement_key] = deque(responses)
        return self

    def put(
        self, statement_key: str, entity_id: str, row: Mapping[str, Any] | None, **where: Any
    ) -> FakeStore:
        if row is None:
            self._rows.pop((statement_key, entity_id), None)
        else:
            self._rows[(statement_key, entity_id)] = (dict(row), where)
        return self

    def script_execute(self, statement_key: str, *results: int | Exception) -> FakeStore:
        self._execute_scripts[statement_key] = deque(results)
        return self

    @staticmethod
    def _next(queue: deque) -> Any:
        return queue.popleft() if len(queue) > 1 else queue[0]

    def _row_for(self, statement_key: str, params: Mapping[str, Any]) -> Mapping[str, Any] | None:
        stored = self._rows.get((statement_key, str(params.get("entity_id"))))
        if stored is None:
            return None
        row, where = stored
        if any(params.get(name) != value for name, value in where.items()):
            return None
        return row

    def query_one(self, statement_key: str, params: Mapping[str, Any]) -> Mapping[str, Any] | None:
        with self._lock:
            self.calls.append(("query", statement_key, dict(params)))
            if not self.available:
                raise StoreUnavailableError(f"Store {self.name!r} is down")
            if statement_key in self._scripts and self._scripts[statement_key]:
                response = self._next(self._scripts[statement_key])
            else:
                response = self._row_for(statement_key, params)
        if isinstance(response, Exception):
            raise response
        return dict(response) if response is not None else None

    def execute(self, statement_key: str, params: Mapping[str, Any]) -> int:
        with self._lock:
            self.calls.append(("execute", statement_key, dict(params)))
            if not self.available:
                raise StoreUnavailableError(f"Store {self.name!r} is down")
            queue = self._execute_scripts.get(statement_key)
            result = self._next(queue) if queue else 1
        if isinstance(result, Exception):
            raise result
        return result

    def is_available(self) -> bool:
        return self.available

    def queries(self, statement_key: str | None = None) -> int:
        """Number of ``query_one`` calls, optionally for one statement key."""
        return sum(
            1 for op, key, _ in self.calls
            if op == "query" and (statement_key is None or key == statement_key)
        )


class ScriptedActuator:
    """Actuator returning pre-configured outcomes.

    Outcomes given to the constructor apply to every action;
    ``script(action, ...)`` overrides them for one action. Within a script
    each call consumes the next outcome; the last one repeats. With no
    script at all every call succeeds.

    ``on_act`` runs after each call (tests use it to move a ``FakeStore``
    forward the way the real system would).
    """

    def __init__(
        self,
        *outcomes: ActuationOutcome,
        on_act: Callable[[ActuationContext], None] | None = None,
    ) -> None:
        self.calls: list[ActuationContext] = []
        self.on_act = on_act
        self._default: deque[ActuationOutcome] = deque(outcomes)
        self._scripts: dict[str, deque[ActuationOutcome]] = {}
        self._lock = threading.Lock()

    def script(self, action: str, *outcomes: ActuationOutcome) -> ScriptedActuator:
        self._scripts[action] = deque(outcomes)
        return self

    def act(self, context: ActuationContext) -> ActuationOutcome:
        with self._lock:
            self.calls.append(context)
            queue = self._scripts.get(context.action) or self._default
            outcome = FakeStore._next(queue) if queue else Success()
        if self.on_act is not None:
            self.on_act(context)
        return outcome

    def calls_for(self, action: str) -> list[ActuationContext]:
        return [c for c in self.calls if c.action == action]


@dataclass
class RecordingSleeper:
    """Sleeper that records requested durations and never blocks.

    ``on_sleep`` receives the 1-based sleep count; tests use it to cancel a
    token or change a ``FakeStore`` between attempts.
    """

    calls: list[int] = field(default_factory=list)
    on_sleep: Callable[[int], None] | None = None

    def sleep(self, duration_ms: int) -> None:
        self.calls.append(duration_ms)
        if self.on_sleep is not None:
            self.on_sleep(len(self.calls))

    @property
    def total_ms(self) -> int:
        return sum(self.calls)


# ---------------------------------------------------------------------------
# Assertion helpers
# ---------------------------------------------------------------------------


def assert_run_completed(result: Result[Any], final_state: str | None = None) -> Any:
    """Assert an ``Ok`` result (optionally with ``final_state``) and return its value."""
    assert isinstance(result, Ok), f"Expected Ok, got {result!r}"
    if final_state is not None:
        actual = getattr(result.value, "final_state", None)
        assert actual == final_state, f"Expected final state {final_state}, got {actual}"
    return result.value


def assert_run_failed(result: Result[Any], error_type: type[Exception]) -> Any:
    """Assert an ``Err`` holding ``error_type`` and return the error."""
    assert isinstance(result, Err), f"Expected Err, got {result!r}"
    assert isinstance(result.error, error_type), (
        f"Expected {error_type.__name__}, got {type(result.error).__name__}: {result.error}"
    )
    return result.error
