"""SQL store handles, the statement catalog, and the store registry.

The engine addresses stores by name and statements by key. This module is
where names become SQLAlchemy engines and keys become SQL text.

Statement catalog
-----------------
A YAML file supplied by the operator maps store name to statement key to
SQL. Parameters use SQLAlchemy ``:name`` binds; every statement receives
``:entity_id``::

    lending:
      review_status: >
        SELECT user_data_review_status FROM loan_application WHERE id = :entity_id
      vkyc_touch: >
        UPDATE vkyc_info SET date_created = :date_created WHERE unique_id_ref = :entity_id
    calling:
      vendor_lead: >
        SELECT entity_id, campaign_id, status FROM vendor_lead_details
        WHERE entity_id = :entity_id

Failure mapping
---------------
==========================================  ==========================
Driver failure                              Raised as
==========================================  ==========================
``OperationalError`` / invalidated conn.    ``StoreUnavailableError``
any other ``SQLAlchemyError``               ``StoreQueryError``
statement key missing                       ``UnknownStatementError``
==========================================  ==========================

Usage
-----
::

    registry = StoreRegistry.from_settings(settings.stores, catalog)
    with registry.acquire("lending") as store:
        store.query_one("review_status", {"entity_id": "app-1"})
    registry.check_all()   # {"lending": True, "calling": False}
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import yaml
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from loanflow.core.errors import (
    ConfigurationError,
    StoreError,
    StoreQueryError,
    StoreUnavailableError,
    UnknownStatementError,
    UnknownStoreError,
)
from loanflow.core.logging import get_logger
from loanflow.core.protocols import StoreHandle
from loanflow.core.settings import StoreSettings

logger = get_logger(__name__)


# =============================================================================
# STATEMENT CATALOG
# =============================================================================


class StatementCatalog:
    """Store name -> statement key -> SQL text."""

    def __init__(self, statements: Mapping[str, Mapping[str, str]] | None = None):
        self._statements: dict[str, dict[str, str]] = {}
        for store, entries in (statements or {}).items():
            if not isinstance(entries, Mapping):
                raise ConfigurationError(
                    f"Statements for store {store!r} must be a mapping, got {type(entries).__name__}"
                )
            self._statements[store] = {str(k): str(v).strip() for k, v in entries.items()}

    @classmethod
    def from_mapping(cls, statements: Mapping[str, Mapping[str, str]]) -> StatementCatalog:
        return cls(statements)

    @classmethod
    def from_yaml(cls, path: str | Path) -> StatementCatalog:
        path = Path(path)
        if not path.is_file():
            raise ConfigurationError(f"Statements file not found: {path}")
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}", cause=e) from e
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Expected a mapping in {path}, got {type(data).__name__}")
        logger.debug("stores.catalog.loaded", path=str(path), stores=sorted(data))
        return cls(data)

    def stores(self) -> list[str]:
        return sorted(self._statements)

    def for_store(self, store: str) -> dict[str, str]:
        return dict(self._statements.get(store, {}))

    def get(self, store: str, key: str) -> str:
        try:
            return self._statements[store][key]
        except KeyError:
            raise UnknownStatementError(key, store=store) from None


# =============================================================================
# ENGINE FACTORY
# =============================================================================


def create_store_engine(settings: StoreSettings, **kwargs: Any) -> Engine:
    """Create a SQLAlchemy engine for one store.

    In-memory SQLite shares a single connection across threads so every
    handle sees the same database.
    """
    url = settings.url
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs.setdefault("poolclass", StaticPool)
        engine = create_engine(url, **kwargs)

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    kwargs.setdefault("pool_size", settings.pool_size)
    kwargs.setdefault("pool_pre_ping", True)
    kwargs.setdefault("connect_args", {"connect_timeout": settings.connect_timeout})
    return create_engine(url, **kwargs)


# =============================================================================
# SQL STORE HANDLE
# =============================================================================


def _is_connectivity_error(error: SQLAlchemyError) -> bool:
    if isinstance(error, OperationalError):
        return True
    return isinstance(error, DBAPIError) and error.connection_invalidated


class SqlStoreHandle:
    """``StoreHandle`` over a SQLAlchemy engine and one store's statements."""

    def __init__(self, name: str, engine: Engine, statements: Mapping[str, str]):
        self.name = name
        self._engine = engine
        self._statements = dict(statements)
        self._released = False

    def __repr__(self) -> str:
        return f"SqlStoreHandle({self.name!r}, url={self._engine.url.render_as_string(hide_password=True)!r})"

    def _statement(self, key: str) -> str:
        if self._released:
            raise StoreError(f"Store handle {self.name!r} used after release").with_context(
                store=self.name
            )
        try:
            return self._statements[key]
        except KeyError:
            raise UnknownStatementError(key, store=self.name) from None

    def _translate(self, error: SQLAlchemyError, key: str) -> StoreError:
        if _is_connectivity_error(error):
            translated: StoreError = StoreUnavailableError(
                f"Store {self.name!r} unavailable: {error.__class__.__name__}", cause=error
            )
        else:
            translated = StoreQueryError(
                f"Statement {key!r} failed on store {self.name!r}: {error.__class__.__name__}",
                cause=error,
            )
        translated.with_context(store=self.name, statement=key)
        return translated

    def query_one(self, statement_key: str, params: Mapping[str, Any]) -> dict[str, Any] | None:
        sql = self._statement(statement_key)
        try:
            with self._engine.connect() as conn:
                row = conn.execute(text(sql), dict(params)).mappings().first()
        except SQLAlchemyError as e:
            raise self._translate(e, statement_key) from e
        logger.debug("store.query", store=self.name, statement=statement_key, found=row is not None)
        return dict(row) if row is not None else None

    def execute(self, statement_key: str, params: Mapping[str, Any]) -> int:
        sql = self._statement(statement_key)
        try:
            with self._engine.begin() as conn:
                result = conn.execute(text(sql), dict(params))
                affected = result.rowcount
        except SQLAlchemyError as e:
            raise self._translate(e, statement_key) from e
        logger.info("store.execute", store=self.name, statement=statement_key, rows=affected)
        return affected

    def is_available(self) -> bool:
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.warning("store.unavailable", store=self.name, error=str(e))
            return False
        return True

    def release(self) -> None:
        self._released = True


# =============================================================================
# REGISTRY
# =============================================================================


HandleFactory = Callable[[], StoreHandle]


class StoreRegistry:
    """Named store handle factories with scoped acquisition.

    Engines (and their connection pools) live as long as the registry.
    ``acquire`` hands each caller its own handle and releases it on exit.
    """

    def __init__(self) -> None:
        self._factories: dict[str, HandleFactory] = {}
        self._engines: dict[str, Engine] = {}
        self._lock = threading.Lock()
        self._active: dict[str, int] = {}

    @classmethod
    def from_settings(
        cls,
        stores: Mapping[str, StoreSettings],
        catalog: StatementCatalog,
    ) -> StoreRegistry:
        registry = cls()
        for name, store_settings in stores.items():
            registry.register_engine(name, create_store_engine(store_settings), catalog.for_store(name))
        return registry

    def register(self, name: str, factory: HandleFactory) -> None:
        """Register any ``StoreHandle`` factory under ``name``."""
        self._factories[name] = factory

    def register_engine(self, name: str, engine: Engine, statements: Mapping[str, str]) -> None:
        statements = dict(statements)
        self._engines[name] = engine
        self.register(name, lambda: SqlStoreHandle(name, engine, statements))

    def names(self) -> list[str]:
        return sorted(self._factories)

    def __contains__(self, name: object) -> bool:
        return name in self._factories

    def active(self, name: str) -> int:
        """Handles of ``name`` currently acquired."""
        with self._lock:
            return self._active.get(name, 0)

    @contextmanager
    def acquire(self, name: str) -> Iterator[StoreHandle]:
        try:
            factory = self._factories[name]
        except KeyError:
            raise UnknownStoreError(name) from None

        handle = factory()
        with self._lock:
            self._active[name] = self._active.get(name, 0) + 1
        try:
            yield handle
        finally:
            with self._lock:
                self._active[name] -= 1
            release = getattr(handle, "release", None)
            if callable(release):
                release()

    def check_all(self) -> dict[str, bool]:
        """Liveness of every registered store."""
        status: dict[str, bool] = {}
        for name in self.names():
            with self.acquire(name) as store:
                status[name] = store.is_available()
            logger.info("stores.check", store=name, available=status[name])
        return status

    def dispose(self) -> None:
        for engine in self._engines.values():
            engine.dispose()
