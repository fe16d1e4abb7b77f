"""Tests for loanflow.execution.batch."""

import threading

import pytest

from loanflow.core.errors import ConfigurationError, RunCancelledError, TerminalStateError
from loanflow.core.result import Err, Ok
from loanflow.execution.batch import run_many
from loanflow.execution.cancellation import CancelToken


class TestRunMany:
    def test_results_in_input_order(self):
        batch = run_many(["c", "a", "b"], lambda eid: Ok(eid.upper()), max_workers=3)
        assert list(batch.results) == ["c", "a", "b"]
        assert batch.ok() == ["C", "A", "B"]
        assert batch.succeeded == 3
        assert batch.failed == 0

    def test_mixed_results(self):
        def run_one(eid):
            if eid == "app-2":
                return Err(TerminalStateError("REJECTED"))
            return Ok(eid)

        batch = run_many(["app-1", "app-2", "app-3"], run_one, max_workers=2)
        assert batch.succeeded == 2
        assert batch.failed == 1
        assert isinstance(batch.errors()["app-2"], TerminalStateError)

    def test_raised_loanflow_error_becomes_err(self):
        def run_one(eid):
            raise TerminalStateError("TEST_IGNORE")

        batch = run_many(["app-1"], run_one)
        error = batch.errors()["app-1"]
        assert error.context.entity_id == "app-1"

    def test_other_exceptions_propagate(self):
        def run_one(eid):
            raise ValueError("bug")

        with pytest.raises(ValueError):
            run_many(["app-1"], run_one)

    def test_runs_in_parallel(self):
        barrier = threading.Barrier(3, timeout=5)

        def run_one(eid):
            barrier.wait()
            return Ok(eid)

        batch = run_many(["a", "b", "c"], run_one, max_workers=3)
        assert batch.succeeded == 3

    def test_cancelled_before_start(self):
        token = CancelToken()
        token.cancel("operator abort")
        calls = []

        batch = run_many(["a", "b"], lambda eid: calls.append(eid) or Ok(eid), cancel=token)

        assert calls == []
        assert all(isinstance(e, RunCancelledError) for e in batch.errors().values())

    def test_duplicate_ids_rejected(self):
        with pytest.raises(ConfigurationError):
            run_many(["a", "a"], lambda eid: Ok(eid))

    def test_invalid_workers(self):
        with pytest.raises(ConfigurationError):
            run_many(["a"], lambda eid: Ok(eid), max_workers=0)

    def test_to_dict(self):
        batch = run_many(["a"], lambda eid: Ok({"id": eid}))
        data = batch.to_dict()
        assert data["succeeded"] == 1
        assert data["results"]["a"] == {"ok": True, "value": {"id": "a"}}
