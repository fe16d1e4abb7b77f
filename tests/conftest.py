"""
Shared pytest fixtures and configuration for loanflow tests.

This module provides:
- Auto-marking of unit/integration tests by location
- Fake stores, scripted actuators and a non-blocking sleeper
- A review stage sequence matching the production defaults

Usage:
    Fixtures are auto-discovered by pytest; request them by name.

    def test_something(review_store, sleeper):
        ...
"""

import sys
from pathlib import Path

import pytest

# Ensure loanflow package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from loanflow.orchestration.states import StageSequence
from loanflow.testing import FakeStore, RecordingSleeper, ScriptedActuator


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        # SQLite and HTTP transport tests exercise real adapters
        if test_path.parts and test_path.parts[0] == "adapters":
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Stage Fixtures
# =============================================================================


REVIEW_STAGES = [
    "DOCS_UPLOADED",
    "PENDING_REVIEW",
    "FRAUD_REVIEW",
    "NACH_EMAIL_SENT",
    "KYC_VERIFICATION",
]
TERMINAL_STATES = ["TEST_IGNORE", "REJECTED"]


@pytest.fixture
def stages() -> StageSequence:
    return StageSequence(REVIEW_STAGES, terminal_states=TERMINAL_STATES)


# =============================================================================
# Test Doubles
# =============================================================================


@pytest.fixture
def review_store() -> FakeStore:
    return FakeStore("lending")


@pytest.fixture
def calling_store() -> FakeStore:
    return FakeStore("calling")


@pytest.fixture
def actuator() -> ScriptedActuator:
    return ScriptedActuator()


@pytest.fixture
def sleeper() -> RecordingSleeper:
    return RecordingSleeper()

