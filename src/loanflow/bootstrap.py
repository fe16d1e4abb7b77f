"""Wire settings into runnable drivers and chains.

``build_runtime`` turns a ``LoanflowSettings`` into a ``Runtime``: the store
registry, the trigger actuator and the policies for each call site. The CLI
builds one runtime per invocation; tests build one from fakes.

Example::

    runtime = build_runtime(load_settings("loanflow.yaml"))
    try:
        result = runtime.run_review("app-1", "DOCS_UPLOADED", "FRAUD_REVIEW")
    finally:
        runtime.close()
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from loanflow.adapters.actuators import HttpTriggerActuator
from loanflow.adapters.stores import StatementCatalog, StoreRegistry
from loanflow.core.errors import LoanflowError, PreconditionFailedError
from loanflow.core.logging import get_logger
from loanflow.core.protocols import Actuator, Sleeper
from loanflow.core.result import Err, Result
from loanflow.core.settings import LoanflowSettings
from loanflow.domain.leads import VKYC_NOTRY, build_lead_chain, lead_campaign, validate_entity_id
from loanflow.domain.review import build_review_driver
from loanflow.execution.batch import BatchResult, run_many
from loanflow.execution.cancellation import CancelToken, SystemSleeper
from loanflow.execution.retry import RetryPolicy
from loanflow.orchestration.chain import ChainReport
from loanflow.orchestration.driver import RunReport
from loanflow.orchestration.states import StageSequence

logger = get_logger(__name__)


@dataclass
class Runtime:
    """Everything a run needs, built once per process."""

    settings: LoanflowSettings
    registry: StoreRegistry
    actuator: Actuator
    sleeper_factory: Callable[[CancelToken | None], Sleeper] = field(default=SystemSleeper)

    def policy(self, call_site: str) -> RetryPolicy:
        return RetryPolicy.from_settings(getattr(self.settings.retry, call_site))

    def stages(self) -> StageSequence:
        return StageSequence(self.settings.stages, terminal_states=self.settings.terminal_states)

    def run_review(
        self,
        entity_id: str,
        start: str | None,
        target: str | None = None,
        *,
        cancel: CancelToken | None = None,
    ) -> Result[RunReport]:
        """Drive the review workflow. ``start=None`` reads the current state."""
        target = target or self.settings.target_state
        try:
            validate_entity_id(entity_id)
            stages = self.stages()
            with self.registry.acquire(self.settings.review_store) as store:
                driver = build_review_driver(
                    store,
                    self.actuator,
                    stages=stages,
                    confirmation_policy=self.policy("stage_confirmation"),
                    actuation_policy=self.policy("actuation"),
                    state_statement=self.settings.state_statement,
                    state_field=self.settings.state_field,
                    sleeper=self.sleeper_factory(cancel),
                    cancel=cancel,
                )
                if start is None:
                    start = driver.current_state(entity_id)
                if start is None:
                    raise PreconditionFailedError(
                        f"No review state found for {entity_id}"
                    ).with_context(store=store.name)
                return driver.run(entity_id, start, target)
        except LoanflowError as e:
            e.with_context(entity_id=entity_id)
            return Err(e)

    def run_leads(
        self,
        entity_id: str,
        *,
        campaign: str = VKYC_NOTRY.campaign_id,
        cancel: CancelToken | None = None,
    ) -> Result[ChainReport]:
        """Run the lead push chain for ``campaign`` (VKYC_NOTRY or VKYC_TRIED)."""
        try:
            validate_entity_id(entity_id)
            lead_flow = lead_campaign(campaign)
            with (
                self.registry.acquire(self.settings.lead_store) as lead_store,
                self.registry.acquire(self.settings.calling_store) as calling_store,
            ):
                chain = build_lead_chain(
                    lead_store,
                    calling_store,
                    self.actuator,
                    campaign=lead_flow,
                    lead_creation_policy=self.policy("lead_creation"),
                    lead_confirmation_policy=self.policy("lead_confirmation"),
                    trigger_policy=self.policy("actuation"),
                    sleeper=self.sleeper_factory(cancel),
                    cancel=cancel,
                )
                return chain.run(entity_id, cancel=cancel)
        except LoanflowError as e:
            e.with_context(entity_id=entity_id)
            return Err(e)

    def run_review_batch(
        self,
        entity_ids: list[str],
        target: str | None = None,
        *,
        max_workers: int | None = None,
        cancel: CancelToken | None = None,
    ) -> BatchResult[RunReport]:
        """Drive many entities from their current state, in parallel."""
        return run_many(
            entity_ids,
            lambda entity_id: self.run_review(entity_id, None, target, cancel=cancel),
            max_workers=max_workers or self.settings.max_workers,
            cancel=cancel,
        )

    def close(self) -> None:
        self.registry.dispose()
        close = getattr(self.actuator, "close", None)
        if callable(close):
            close()


def build_runtime(settings: LoanflowSettings, *, actuator: Actuator | None = None) -> Runtime:
    """Build the store registry and HTTP actuator described by ``settings``."""
    catalog = (
        StatementCatalog.from_yaml(settings.statements_file)
        if settings.statements_file is not None
        else StatementCatalog()
    )
    registry = StoreRegistry.from_settings(settings.stores, catalog)
    if actuator is None:
        actuator = HttpTriggerActuator(
            settings.triggers,
            base_url=settings.base_url,
            timeout_s=settings.http_timeout_s,
            transient_signatures=settings.transient_signatures,
        )
    logger.debug(
        "runtime.built",
        environment=settings.environment,
        stores=registry.names(),
        triggers=sorted(settings.triggers),
    )
    return Runtime(settings=settings, registry=registry, actuator=actuator)
