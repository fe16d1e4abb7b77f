"""Tests for loanflow.core.settings."""

import os

import pytest

from loanflow.core.errors import ConfigurationError
from loanflow.core.settings import (
    DEFAULT_STAGES,
    LoanflowSettings,
    RetrySettings,
    load_settings,
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    """Isolate tests from the developer's environment and .env file."""
    for key in list(os.environ):
        if key.startswith("LOANFLOW_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)


class TestDefaults:
    def test_workflow_defaults(self):
        settings = LoanflowSettings()
        assert settings.stages == DEFAULT_STAGES
        assert settings.terminal_states == ["TEST_IGNORE", "REJECTED"]
        assert settings.target_state == "KYC_VERIFICATION"
        assert settings.state_field == "user_data_review_status"

    def test_retry_budgets(self):
        retry = LoanflowSettings().retry
        assert (retry.stage_confirmation.max_attempts, retry.stage_confirmation.interval_ms) == (12, 5000)
        assert (retry.lead_creation.max_attempts, retry.lead_creation.interval_ms) == (12, 5000)
        assert (retry.lead_confirmation.max_attempts, retry.lead_confirmation.interval_ms) == (20, 15000)
        assert (retry.actuation.max_attempts, retry.actuation.interval_ms) == (3, 1000)

    def test_base_url_uses_environment(self):
        settings = LoanflowSettings(environment="qa2")
        assert settings.base_url == "https://qa2.example.com"

    def test_default_triggers(self):
        settings = LoanflowSettings()
        assert settings.trigger("create_lead").ok_statuses == [204]
        assert settings.trigger("create_lead_tried").path.endswith("createLeadVkycTried?loanAppId={entity_id}")
        assert "{entity_id}" in settings.trigger("push_lead").path

    def test_unknown_trigger(self):
        with pytest.raises(ConfigurationError):
            LoanflowSettings().trigger("nope")


class TestEnvironment:
    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("LOANFLOW_ENVIRONMENT", "uat")
        assert LoanflowSettings().environment == "uat"

    def test_nested_delimiter(self, monkeypatch):
        monkeypatch.setenv("LOANFLOW_RETRY__ACTUATION__MAX_ATTEMPTS", "5")
        monkeypatch.setenv("LOANFLOW_RETRY__ACTUATION__INTERVAL_MS", "250")
        assert LoanflowSettings().retry.actuation == RetrySettings(max_attempts=5, interval_ms=250)


class TestLoadSettings:
    def test_no_file(self):
        assert load_settings().environment == "qa"

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "loanflow.yaml"
        path.write_text(
            "environment: qa3\n"
            "stores:\n"
            "  lending:\n"
            "    url: sqlite://\n"
            "retry:\n"
            "  lead_confirmation: {max_attempts: 30, interval_ms: 100}\n"
        )
        settings = load_settings(path)
        assert settings.environment == "qa3"
        assert settings.stores["lending"].url == "sqlite://"
        assert settings.retry.lead_confirmation.max_attempts == 30
        assert settings.retry.actuation.max_attempts == 3

    def test_file_wins_over_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LOANFLOW_ENVIRONMENT", "from-env")
        path = tmp_path / "loanflow.yaml"
        path.write_text("environment: from-file\n")
        assert load_settings(path).environment == "from-file"

    def test_overrides_win_over_file(self, tmp_path):
        path = tmp_path / "loanflow.yaml"
        path.write_text("environment: from-file\n")
        assert load_settings(path, environment="override").environment == "override"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_settings(path).environment == "qa"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_settings(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("stores: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_settings(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError, match="Expected a mapping"):
            load_settings(path)

    def test_validation_error_is_configuration_error(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("retry:\n  actuation: {max_attempts: 0, interval_ms: 10}\n")
        with pytest.raises(ConfigurationError, match="Invalid settings"):
            load_settings(path)
