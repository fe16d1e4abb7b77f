"""Tests for the review workflow wiring."""

from loanflow.core.errors import TerminalStateError
from loanflow.domain.review import (
    REVIEW_STAGES,
    STAGE_CONFIRMATION_POLICY,
    build_review_driver,
    review_stages,
)
from loanflow.execution.retry import RetryPolicy
from loanflow.testing import assert_run_completed, assert_run_failed


def row(state):
    return {"user_data_review_status": state}


class TestReviewStages:
    def test_default_sequence(self):
        stages = review_stages()
        assert [s.name for s in stages] == list(REVIEW_STAGES)
        assert stages.terminal_states == {"TEST_IGNORE", "REJECTED"}

    def test_observed_confirmation_budget(self):
        assert STAGE_CONFIRMATION_POLICY == RetryPolicy(12, 5000)


class TestBuildReviewDriver:
    def test_full_review(self, review_store, actuator, sleeper):
        review_store.script(
            "review_status",
            row("PENDING_REVIEW"),
            row("FRAUD_REVIEW"),
            row("NACH_EMAIL_SENT"),
            row("KYC_VERIFICATION"),
        )
        driver = build_review_driver(review_store, actuator, sleeper=sleeper)

        report = assert_run_completed(
            driver.run("app-1", "DOCS_UPLOADED", "KYC_VERIFICATION"), "KYC_VERIFICATION"
        )

        assert len(report.steps) == 4
        assert report.poll_attempts == 4
        assert sleeper.calls == []

    def test_rejected_application(self, review_store, actuator, sleeper):
        driver = build_review_driver(review_store, actuator, sleeper=sleeper)

        assert_run_failed(driver.run("app-1", "REJECTED", "KYC_VERIFICATION"), TerminalStateError)

        assert actuator.calls == []
        assert review_store.calls == []
