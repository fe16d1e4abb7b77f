"""Tests for loanflow.adapters.stores against in-memory SQLite."""

import pytest
from sqlalchemy import text

from loanflow.core.errors import (
    ConfigurationError,
    StoreError,
    StoreQueryError,
    StoreUnavailableError,
    UnknownStatementError,
    UnknownStoreError,
)
from loanflow.core.protocols import StoreHandle
from loanflow.core.settings import StoreSettings
from loanflow.adapters.stores import SqlStoreHandle, StatementCatalog, StoreRegistry, create_store_engine

STATEMENTS = {
    "review_status": "SELECT user_data_review_status FROM loan_application WHERE id = :entity_id",
    "vkyc_touch": "UPDATE vkyc_info SET date_created = :date_created WHERE unique_id_ref = :entity_id",
    "duplicate": "INSERT INTO loan_application (id) VALUES (:entity_id)",
}


@pytest.fixture
def engine():
    engine = create_store_engine(StoreSettings(url="sqlite://"))
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE loan_application (id TEXT PRIMARY KEY, user_data_review_status TEXT)"))
        conn.execute(text("CREATE TABLE vkyc_info (unique_id_ref TEXT, date_created TEXT)"))
        conn.execute(text("INSERT INTO loan_application VALUES ('app-1', 'PENDING_REVIEW')"))
        conn.execute(text("INSERT INTO vkyc_info VALUES ('app-1', '2026-01-01 00:00:00')"))
    yield engine
    engine.dispose()


@pytest.fixture
def handle(engine):
    return SqlStoreHandle("lending", engine, STATEMENTS)


class TestStatementCatalog:
    def test_from_mapping(self):
        catalog = StatementCatalog.from_mapping({"lending": {"review_status": "  SELECT 1  "}})
        assert catalog.get("lending", "review_status") == "SELECT 1"
        assert catalog.stores() == ["lending"]
        assert catalog.for_store("calling") == {}

    def test_unknown_key(self):
        with pytest.raises(UnknownStatementError):
            StatementCatalog({"lending": {}}).get("lending", "vendor_lead")

    def test_entries_must_be_mapping(self):
        with pytest.raises(ConfigurationError):
            StatementCatalog({"lending": ["SELECT 1"]})

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "statements.yaml"
        path.write_text("calling:\n  vendor_lead: |\n    SELECT status FROM vendor_lead_details\n")
        catalog = StatementCatalog.from_yaml(path)
        assert catalog.get("calling", "vendor_lead") == "SELECT status FROM vendor_lead_details"

    def test_from_yaml_missing(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            StatementCatalog.from_yaml(tmp_path / "nope.yaml")

    def test_from_yaml_invalid(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("lending: {unclosed\n")
        with pytest.raises(ConfigurationError):
            StatementCatalog.from_yaml(path)


class TestSqlStoreHandle:
    def test_satisfies_protocol(self, handle):
        assert isinstance(handle, StoreHandle)

    def test_query_one(self, handle):
        assert handle.query_one("review_status", {"entity_id": "app-1"}) == {
            "user_data_review_status": "PENDING_REVIEW"
        }

    def test_query_one_no_row(self, handle):
        assert handle.query_one("review_status", {"entity_id": "app-2"}) is None

    def test_parameters_are_bound(self, handle):
        assert handle.query_one("review_status", {"entity_id": "app-1' OR '1'='1"}) is None

    def test_execute_returns_rowcount(self, handle):
        assert handle.execute("vkyc_touch", {"entity_id": "app-1", "date_created": "2026-03-02 09:00:00"}) == 1
        assert handle.execute("vkyc_touch", {"entity_id": "app-9", "date_created": "2026-03-02 09:00:00"}) == 0

    def test_unknown_statement(self, handle):
        with pytest.raises(UnknownStatementError) as exc:
            handle.query_one("vendor_lead", {"entity_id": "app-1"})
        assert exc.value.context.store == "lending"

    def test_query_error(self, handle):
        with pytest.raises(StoreQueryError) as exc:
            handle.execute("duplicate", {"entity_id": "app-1"})
        assert exc.value.context.metadata["statement"] == "duplicate"
        assert exc.value.context.store == "lending"

    def test_unreachable_database(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'missing' / 'db.sqlite'}"
        handle = SqlStoreHandle("lending", create_store_engine(StoreSettings(url=url)), STATEMENTS)
        with pytest.raises(StoreUnavailableError):
            handle.query_one("review_status", {"entity_id": "app-1"})
        assert handle.is_available() is False

    def test_is_available(self, handle):
        assert handle.is_available() is True

    def test_use_after_release(self, handle):
        handle.release()
        with pytest.raises(StoreError, match="after release"):
            handle.query_one("review_status", {"entity_id": "app-1"})


class TestStoreRegistry:
    def test_acquire_and_release(self, engine):
        registry = StoreRegistry()
        registry.register_engine("lending", engine, STATEMENTS)

        with registry.acquire("lending") as store:
            assert registry.active("lending") == 1
            assert store.query_one("review_status", {"entity_id": "app-1"}) is not None
        assert registry.active("lending") == 0
        with pytest.raises(StoreError):
            store.query_one("review_status", {"entity_id": "app-1"})

    def test_handles_are_not_shared(self, engine):
        registry = StoreRegistry()
        registry.register_engine("lending", engine, STATEMENTS)
        with registry.acquire("lending") as a, registry.acquire("lending") as b:
            assert a is not b
            assert registry.active("lending") == 2

    def test_unknown_store(self):
        with pytest.raises(UnknownStoreError):
            with StoreRegistry().acquire("calling"):
                pass

    def test_from_settings_and_check_all(self):
        catalog = StatementCatalog({"lending": {"review_status": "SELECT 1"}})
        registry = StoreRegistry.from_settings(
            {"lending": StoreSettings(url="sqlite://"), "calling": StoreSettings(url="sqlite://")},
            catalog,
        )
        assert registry.names() == ["calling", "lending"]
        assert "lending" in registry
        assert registry.check_all() == {"calling": True, "lending": True}
        registry.dispose()

    def test_register_custom_factory(self):
        from loanflow.testing import FakeStore

        registry = StoreRegistry()
        fake = FakeStore("calling")
        registry.register("calling", lambda: fake)
        with registry.acquire("calling") as store:
            assert store is fake
