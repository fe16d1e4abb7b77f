"""Runtime settings for loanflow.

Everything an operator tunes lives on ``LoanflowSettings``: which
environment to hit, where the stores are, the stage sequence, per-call-site
retry budgets, trigger endpoints and health checks. The engine itself never
reads settings; the CLI (or an embedding application) reads them once and
passes plain values into constructors.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Type-checked at startup, not mid-run
    - **Environment-driven:** ``LOANFLOW_*`` env vars and ``.env`` files
    - **File-based:** An optional YAML file for the nested parts
      (stores, triggers, retry budgets)
    - **Sensible defaults:** The observed budgets of the review workflow

Examples:
    >>> from loanflow.core.settings import load_settings
    >>> settings = load_settings("loanflow.yaml")
    >>> settings.retry.stage_confirmation.max_attempts
    12

    Nested values from the environment use ``__``::

        LOANFLOW_STORES__LENDING__URL=mysql+pymysql://user:pw@host/lending
        LOANFLOW_RETRY__LEAD_CONFIRMATION__INTERVAL_MS=15000

Tags:
    settings, configuration, pydantic, environment, yaml, loanflow

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from loanflow.core.errors import ConfigurationError


DEFAULT_STAGES = [
    "DOCS_UPLOADED",
    "PENDING_REVIEW",
    "FRAUD_REVIEW",
    "NACH_EMAIL_SENT",
    "KYC_VERIFICATION",
]
DEFAULT_TERMINAL_STATES = ["TEST_IGNORE", "REJECTED"]


class RetrySettings(BaseModel):
    """Attempt budget for one call site."""

    max_attempts: int = Field(ge=1)
    interval_ms: int = Field(ge=0)


class RetryCallSites(BaseModel):
    """Budgets per call site. Defaults are the observed production values."""

    stage_confirmation: RetrySettings = RetrySettings(max_attempts=12, interval_ms=5000)
    lead_creation: RetrySettings = RetrySettings(max_attempts=12, interval_ms=5000)
    lead_confirmation: RetrySettings = RetrySettings(max_attempts=20, interval_ms=15000)
    actuation: RetrySettings = RetrySettings(max_attempts=3, interval_ms=1000)


class StoreSettings(BaseModel):
    """Connection settings for one named store."""

    url: str
    pool_size: int = Field(default=5, ge=1)
    connect_timeout: int = Field(default=10, ge=1, description="Seconds")


class TriggerSettings(BaseModel):
    """An HTTP trigger endpoint.

    ``path`` is formatted with ``entity_id`` before the request is sent.
    ``base_url`` overrides the environment base URL for services hosted
    elsewhere.
    """

    path: str
    method: str = "GET"
    ok_statuses: list[int] = Field(default_factory=lambda: [200, 204])
    base_url: str | None = None


def _default_triggers() -> dict[str, TriggerSettings]:
    return {
        "create_lead": TriggerSettings(
            path="/loans/services/api/vkycCalling/createLeadVkycNoTry?loanAppId={entity_id}",
            ok_statuses=[204],
        ),
        "create_lead_tried": TriggerSettings(
            path="/loans/services/api/vkycCalling/createLeadVkycTried?loanAppId={entity_id}",
            ok_statuses=[204],
        ),
        "push_lead": TriggerSettings(
            path="/callingInfra/v1/cron/ameyo/pushCreatedLead?entityId={entity_id}",
            ok_statuses=[200, 204],
        ),
    }


class LoanflowSettings(BaseSettings):
    """Operator-facing settings.

    Fields
    ──────
    environment        : Environment slug substituted into base_url_template
    stores             : Store name -> connection settings
    statements_file    : YAML file mapping store -> {statement_key: sql}
    stages             : Ordered non-terminal review stages
    terminal_states    : Dead-end states
    retry              : Attempt budgets per call site
    triggers           : Named HTTP trigger endpoints
    health_endpoints   : Service name -> URL checked by ``health endpoints``
    """

    model_config = SettingsConfigDict(
        env_prefix="LOANFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # ── Environment ──────────────────────────────────────────────
    environment: str = "qa"
    base_url_template: str = "https://{environment}.example.com"
    http_timeout_s: float = Field(default=30.0, gt=0)

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    # ── Stores ───────────────────────────────────────────────────
    stores: dict[str, StoreSettings] = Field(default_factory=dict)
    statements_file: Path | None = None
    review_store: str = "lending"
    lead_store: str = "lending"
    calling_store: str = "calling"

    # ── Workflow ─────────────────────────────────────────────────
    stages: list[str] = Field(default_factory=lambda: list(DEFAULT_STAGES))
    terminal_states: list[str] = Field(default_factory=lambda: list(DEFAULT_TERMINAL_STATES))
    target_state: str = "KYC_VERIFICATION"
    state_statement: str = "review_status"
    state_field: str = "user_data_review_status"

    # ── Retry / actuation ────────────────────────────────────────
    retry: RetryCallSites = Field(default_factory=RetryCallSites)
    transient_signatures: list[str] = Field(
        default_factory=lambda: ["Gateway Time-out", "Gateway Timeout"]
    )
    triggers: dict[str, TriggerSettings] = Field(default_factory=_default_triggers)

    # ── Health / batch ───────────────────────────────────────────
    health_endpoints: dict[str, str] = Field(default_factory=dict)
    max_workers: int = Field(default=4, ge=1)

    @property
    def base_url(self) -> str:
        return self.base_url_template.format(environment=self.environment)

    def trigger(self, name: str) -> TriggerSettings:
        try:
            return self.triggers[name]
        except KeyError:
            raise ConfigurationError(f"Trigger not configured: {name}") from None


def load_settings(path: str | Path | None = None, **overrides: Any) -> LoanflowSettings:
    """Build settings from an optional YAML file plus keyword overrides.

    Values from the file and ``overrides`` take precedence over environment
    variables and ``.env``. Validation failures are raised as
    ``ConfigurationError``.
    """
    data: dict[str, Any] = {}
    if path is not None:
        path = Path(path)
        if not path.is_file():
            raise ConfigurationError(f"Settings file not found: {path}")
        try:
            loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}", cause=e) from e
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigurationError(
                f"Expected a mapping in {path}, got {type(loaded).__name__}"
            )
        data.update(loaded)
    data.update(overrides)

    try:
        return LoanflowSettings(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings: {e}", cause=e) from e
