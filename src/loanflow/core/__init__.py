"""Loanflow core -- errors, results, protocols, logging and settings.

Everything here is synchronous and free of workflow knowledge. Higher
layers (execution, orchestration, adapters) depend on core, never the
other way round; ``protocols`` only names orchestration types for type
checking.

Modules:
    errors.py      LoanflowError hierarchy with categories and context
    result.py      Ok / Err envelope returned by runs
    protocols.py   StoreHandle, Actuator, Sleeper
    logging.py     structlog configuration and context binding
    settings.py    LoanflowSettings (pydantic-settings + YAML)
"""

from loanflow.core.errors import (
    ActuationError,
    ConfigurationError,
    ConfirmationTimeoutError,
    ErrorCategory,
    ErrorContext,
    InvalidEntityIdError,
    LoanflowError,
    PreconditionFailedError,
    RunCancelledError,
    StoreError,
    StoreQueryError,
    StoreUnavailableError,
    TerminalStateError,
    UnknownStatementError,
    UnknownStoreError,
    WorkflowError,
    categorize_error,
    is_retryable,
)
from loanflow.core.logging import LogContext, bind_context, configure_logging, get_logger
from loanflow.core.protocols import Actuator, Sleeper, StoreHandle
from loanflow.core.result import Err, Ok, Result, partition_results
from loanflow.core.settings import LoanflowSettings, load_settings

__all__ = [
    "ActuationError",
    "Actuator",
    "ConfigurationError",
    "ConfirmationTimeoutError",
    "Err",
    "ErrorCategory",
    "ErrorContext",
    "InvalidEntityIdError",
    "LogContext",
    "LoanflowError",
    "LoanflowSettings",
    "Ok",
    "PreconditionFailedError",
    "Result",
    "RunCancelledError",
    "Sleeper",
    "StoreError",
    "StoreHandle",
    "StoreQueryError",
    "StoreUnavailableError",
    "TerminalStateError",
    "UnknownStatementError",
    "UnknownStoreError",
    "WorkflowError",
    "bind_context",
    "categorize_error",
    "configure_logging",
    "get_logger",
    "is_retryable",
    "load_settings",
    "partition_results",
]
