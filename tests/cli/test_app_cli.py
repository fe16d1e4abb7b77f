"""Tests for the root CLI, config and health commands."""

from __future__ import annotations

import json
from unittest.mock import patch

from typer.testing import CliRunner

from loanflow.adapters.health import EndpointStatus
from loanflow.adapters.stores import StoreRegistry
from loanflow.bootstrap import Runtime
from loanflow.cli.app import app
from loanflow.core.settings import LoanflowSettings, StoreSettings
from loanflow.testing import FakeStore, ScriptedActuator

runner = CliRunner()


class TestRoot:
    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        assert "advance" in result.output

    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "loanflow" in result.output

    def test_missing_config_file_exits_2(self, tmp_path):
        result = runner.invoke(app, ["--config", str(tmp_path / "missing.yaml"), "config", "show"])
        assert result.exit_code == 2
        assert "CONFIG" in result.output


class TestConfigShow:
    def test_password_is_masked(self):
        settings = LoanflowSettings(
            stores={"lending": StoreSettings(url="mysql+pymysql://loanflow:s3cret@db:3306/lending")}
        )
        result = runner.invoke(app, ["config", "show", "--format", "json"], obj={"settings": settings})
        assert result.exit_code == 0
        assert "s3cret" not in result.stdout
        data = json.loads(result.stdout)
        assert data["stores"]["lending"]["url"] == "mysql+pymysql://loanflow:***@db:3306/lending"

    def test_table(self):
        result = runner.invoke(app, ["config", "show"], obj={"settings": LoanflowSettings(environment="qa2")})
        assert result.exit_code == 0
        assert "qa2" in result.output
        assert "Retry budgets" in result.output

    def test_from_yaml_file(self, tmp_path):
        path = tmp_path / "loanflow.yaml"
        path.write_text("environment: uat\n")
        result = runner.invoke(app, ["--config", str(path), "config", "show", "--format", "json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout)["environment"] == "uat"


class TestHealth:
    def test_no_endpoints(self):
        result = runner.invoke(app, ["health", "endpoints"], obj={"settings": LoanflowSettings()})
        assert result.exit_code == 0
        assert "No health endpoints" in result.output

    @patch("loanflow.cli.health.check_endpoints")
    def test_endpoint_down_exits_1(self, mock_check):
        mock_check.return_value = [
            EndpointStatus(name="lending", url="https://l/health", up=True, status_code=200),
            EndpointStatus(name="calling", url="https://c/health", up=False, error="ConnectError"),
        ]
        settings = LoanflowSettings(health_endpoints={"lending": "https://l/health", "calling": "https://c/health"})

        result = runner.invoke(app, ["health", "endpoints", "--json"], obj={"settings": settings})

        assert result.exit_code == 1
        assert [s["up"] for s in json.loads(result.stdout)] == [True, False]

    def test_stores(self):
        registry = StoreRegistry()
        registry.register("lending", lambda: FakeStore("lending"))
        registry.register("calling", lambda: FakeStore("calling", available=False))
        runtime = Runtime(settings=LoanflowSettings(), registry=registry, actuator=ScriptedActuator())

        result = runner.invoke(app, ["health", "stores"], obj={"runtime": runtime, "settings": runtime.settings})

        assert result.exit_code == 1
        assert "lending" in result.output
        assert "NO" in result.output
