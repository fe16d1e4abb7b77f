"""Lead push chains against in-memory SQLite and the shipped statements."""

from datetime import datetime
from pathlib import Path

import pytest
from sqlalchemy import text

from loanflow.adapters.stores import SqlStoreHandle, StatementCatalog, create_store_engine
from loanflow.core.errors import ConfirmationTimeoutError
from loanflow.core.settings import StoreSettings
from loanflow.domain.leads import build_lead_chain, build_tried_lead_chain
from loanflow.execution.retry import RetryPolicy
from loanflow.testing import RecordingSleeper, ScriptedActuator, assert_run_completed, assert_run_failed

STATEMENTS = Path(__file__).resolve().parents[2] / "config" / "statements.yaml"
NOW = datetime(2026, 3, 2, 10, 0, 0)

LENDING_SCHEMA = [
    """CREATE TABLE loan_application (
        id TEXT PRIMARY KEY,
        loan_application_no TEXT,
        user_data_review_status TEXT
    )""",
    """CREATE TABLE vkyc_info (
        unique_id_ref TEXT,
        status TEXT,
        provider TEXT,
        flow_type TEXT,
        attempts INTEGER,
        date_created TEXT,
        date_modified TEXT
    )""",
    """CREATE TABLE calling_service_leads (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        entity_id TEXT,
        campaign_id TEXT,
        status TEXT
    )""",
]

CALLING_SCHEMA = [
    """CREATE TABLE vendor_lead_details (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        entity_id TEXT,
        campaign_id TEXT,
        status TEXT
    )""",
]


def run_sql(engine, sql, **params):
    with engine.begin() as conn:
        conn.execute(text(sql), params)


def fetch(engine, sql, **params):
    with engine.connect() as conn:
        return conn.execute(text(sql), params).mappings().all()


def add_lead(engine, table, campaign, status):
    run_sql(
        engine,
        f"INSERT INTO {table} (entity_id, campaign_id, status) VALUES ('LAPP42', :campaign, :status)",
        campaign=campaign,
        status=status,
    )


@pytest.fixture
def catalog():
    return StatementCatalog.from_yaml(STATEMENTS)


@pytest.fixture
def lending_engine():
    engine = create_store_engine(StoreSettings(url="sqlite://"))
    for ddl in LENDING_SCHEMA:
        run_sql(engine, ddl)
    run_sql(engine, "INSERT INTO loan_application VALUES ('app1', 'LAPP42', 'REQ_CREDIT_CHECK')")
    run_sql(
        engine,
        "INSERT INTO vkyc_info VALUES ('app1', 'STARTED', 'IN_HOUSE', 'ASSISTED', 0, "
        "'2026-03-02 09:59:00', '2026-03-02 09:59:00')",
    )
    yield engine
    engine.dispose()


@pytest.fixture
def calling_engine():
    engine = create_store_engine(StoreSettings(url="sqlite://"))
    for ddl in CALLING_SCHEMA:
        run_sql(engine, ddl)
    yield engine
    engine.dispose()


@pytest.fixture
def lending(lending_engine, catalog):
    return SqlStoreHandle("lending", lending_engine, catalog.for_store("lending"))


@pytest.fixture
def calling(calling_engine, catalog):
    return SqlStoreHandle("calling", calling_engine, catalog.for_store("calling"))


def chain_for(lending, calling, actuator, *, builder=build_lead_chain, sleeper=None):
    return builder(
        lending,
        calling,
        actuator,
        lead_creation_policy=RetryPolicy(3, 0),
        lead_confirmation_policy=RetryPolicy(3, 0),
        trigger_policy=RetryPolicy(1, 0),
        sleeper=sleeper or RecordingSleeper(),
        clock=lambda: NOW,
    )


class TestNoTryLeadChain:
    def test_existing_lead_short_circuits(self, lending, calling, lending_engine, calling_engine):
        add_lead(lending_engine, "calling_service_leads", "VKYC_NOTRY", "ADDED")
        add_lead(calling_engine, "vendor_lead_details", "VKYC_NOTRY", "ADDED")
        actuator = ScriptedActuator()

        report = assert_run_completed(chain_for(lending, calling, actuator).run("app1"))

        assert report.short_circuited is True
        assert actuator.calls == []
        assert report.rows["lead_exists"] == {
            "entity_id": "LAPP42",
            "campaign_id": "VKYC_NOTRY",
            "status": "ADDED",
        }

    def test_touch_backdates_date_created(self, lending, calling, lending_engine):
        add_lead(lending_engine, "calling_service_leads", "VKYC_NOTRY", "ADDED")

        assert_run_completed(chain_for(lending, calling, ScriptedActuator()).run("app1"))

        rows = fetch(lending_engine, "SELECT date_created, date_modified FROM vkyc_info")
        assert dict(rows[0]) == {
            "date_created": "2026-03-02 09:00:00",
            "date_modified": "2026-03-02 09:59:00",
        }

    def test_full_push_derives_application_number(self, lending, calling, lending_engine, calling_engine):
        add_lead(calling_engine, "vendor_lead_details", "VKYC_NOTRY", "READY_TO_ADD")

        def on_act(ctx):
            if ctx.action == "create_lead":
                add_lead(lending_engine, "calling_service_leads", "VKYC_NOTRY", "ADDED")
            elif ctx.action == "push_lead":
                add_lead(calling_engine, "vendor_lead_details", "VKYC_NOTRY", "ADDED")

        actuator = ScriptedActuator(on_act=on_act)

        report = assert_run_completed(chain_for(lending, calling, actuator).run("app1"))

        assert [c.action for c in actuator.calls] == ["create_lead", "push_lead"]
        assert actuator.calls[0].params == {"entity_id": "app1"}
        assert actuator.calls[1].params == {"entity_id": "LAPP42"}
        assert report.record.source_key == "app1"
        assert report.record.derived_key == "LAPP42"
        assert report.rows["push_lead"]["status"] == "ADDED"

    def test_lead_for_other_campaign_is_not_reused(self, lending, calling, lending_engine):
        add_lead(lending_engine, "calling_service_leads", "VKYC_TRIED", "ADDED")
        actuator = ScriptedActuator()

        error = assert_run_failed(chain_for(lending, calling, actuator).run("app1"), ConfirmationTimeoutError)

        assert error.context.step == "create_lead"
        assert len(actuator.calls_for("create_lead")) == 1


class TestTriedLeadChain:
    @pytest.fixture(autouse=True)
    def tried_kyc(self, lending_engine):
        run_sql(lending_engine, "UPDATE vkyc_info SET status = 'FAILED', attempts = 2")

    def test_existing_lead_short_circuits(self, lending, calling, lending_engine):
        add_lead(lending_engine, "calling_service_leads", "VKYC_TRIED", "ADDED")
        actuator = ScriptedActuator()

        report = assert_run_completed(
            chain_for(lending, calling, actuator, builder=build_tried_lead_chain).run("app1")
        )

        assert report.chain == "vkyc_tried"
        assert report.short_circuited is True
        assert actuator.calls == []
        rows = fetch(lending_engine, "SELECT date_created, date_modified FROM vkyc_info")
        assert dict(rows[0]) == {
            "date_created": "2026-03-02 09:59:00",
            "date_modified": "2026-03-02 09:00:00",
        }
