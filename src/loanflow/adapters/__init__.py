"""Adapters binding the core protocols to real systems.

- stores.py     SQLAlchemy-backed StoreHandle, statement catalog, registry
- actuators.py  HTTP trigger actuator (httpx) and callable actuator
- health.py     HTTP endpoint checks
"""

from loanflow.adapters.actuators import CallableActuator, HttpTriggerActuator, classify_response
from loanflow.adapters.health import EndpointStatus, check_endpoints
from loanflow.adapters.stores import SqlStoreHandle, StatementCatalog, StoreRegistry, create_store_engine

__all__ = [
    "CallableActuator",
    "EndpointStatus",
    "HttpTriggerActuator",
    "SqlStoreHandle",
    "StatementCatalog",
    "StoreRegistry",
    "check_endpoints",
    "classify_response",
    "create_store_engine",
]
