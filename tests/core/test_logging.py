"""Tests for loanflow.core.logging."""

import structlog
from structlog.testing import capture_logs

from loanflow.core.logging import LogContext, bind_context, configure_logging, get_logger, unbind_context


class TestConfigureLogging:
    def test_console_and_json_modes(self):
        configure_logging(level="DEBUG", json_format=False)
        configure_logging(level="INFO", json_format=True, service="loanflow-test")
        get_logger("loanflow.test").info("logging.configured")

    def test_get_logger_logs_kwargs(self):
        configure_logging(level="DEBUG", json_format=True)
        with capture_logs() as logs:
            get_logger(__name__).info("poll.attempt", entity_id="app-1", attempt=2)
        assert logs[-1]["event"] == "poll.attempt"
        assert logs[-1]["attempt"] == 2


class TestLogContext:
    def test_binds_and_unbinds(self):
        with LogContext(entity_id="app-1", workflow="review"):
            bound = structlog.contextvars.get_contextvars()
            assert bound["entity_id"] == "app-1"
            assert bound["workflow"] == "review"
        assert "entity_id" not in structlog.contextvars.get_contextvars()

    def test_bind_unbind_context(self):
        bind_context(run="batch-1")
        assert structlog.contextvars.get_contextvars()["run"] == "batch-1"
        unbind_context("run")
        assert "run" not in structlog.contextvars.get_contextvars()
