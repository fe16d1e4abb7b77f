"""
ReconciliationChain - sequence trigger→confirm sub-flows across stores.

A chain is an ordered list of links run against one shared, per-run
``ChainContext``. Links read and write stores only through statement keys
and invoke triggers only through ``Actuator``.

Manifesto:
    End-to-end checks span systems that do not share a key. The chain makes
    the hand-off explicit:

    - **Idempotent entry:** A ``PreconditionLink`` short-circuits the whole
      chain when the work is already done
    - **One derived key:** ``TriggerConfirmLink`` reads the correlation key
      once from the confirmed upstream row; later links use only that key
    - **Trigger once:** ``PushConfirmLink`` invokes its downstream trigger
      at most once per run, however many polls it takes
    - **No rollback:** A failed link aborts the chain; progress made by
      earlier links is reported in the error context

Architecture:
    ::

        ReconciliationChain.run(entity_id)
          │  ChainContext(entity_id, derived_key=None, rows={})
          ▼
        ExpectRecordLink      store A  row matches expected   else Precondition-
        TouchRecordLink       store A  narrow write, >0 rows    FailedError
        ExpectRecordLink      store A  ...
        PreconditionLink      store A  row exists ──────────► Ok(short_circuited)
        TriggerConfirmLink    trigger → poll store A ───────► derived_key
        PushConfirmLink       poll store B by derived_key
                               READY → trigger once → ADDED
                               ADDED → done

    Keys:
        ``keyed_by="entity"``  → ``{"entity_id": <source entity id>}``
        ``keyed_by="derived"`` → ``{"entity_id": <derived key>}``

Examples:
    >>> chain = ReconciliationChain("lead_push", [precheck, create, push])
    >>> result = chain.run("app-1")
    >>> result.unwrap().record.derived_key
    'LAPP-42'

Tags:
    reconciliation, chain, cross-store, correlation, loanflow

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Collection, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from loanflow.core.errors import (
    ActuationError,
    ConfigurationError,
    ConfirmationTimeoutError,
    LoanflowError,
    PreconditionFailedError,
    StoreUnavailableError,
)
from loanflow.core.logging import LogContext, get_logger
from loanflow.core.protocols import Actuator, Sleeper, StoreHandle
from loanflow.core.result import Err, Ok, Result
from loanflow.execution.cancellation import CancelToken
from loanflow.execution.retry import RetryPolicy
from loanflow.orchestration.outcomes import (
    ActuationContext,
    ActuationOutcome,
    Confirmed,
    HardFailure,
    PollOutcome,
    StillPending,
    StoreUnavailable,
    TransientFailure,
)
from loanflow.orchestration.poller import guarded_read

logger = get_logger(__name__)

KeyedBy = Literal["entity", "derived"]
LinkParams = Mapping[str, Any] | Callable[[], Mapping[str, Any]]

SINGLE_ATTEMPT = RetryPolicy(max_attempts=1, interval_ms=0)


@dataclass(frozen=True, slots=True)
class ReconciliationRecord:
    """Correlation between the source entity and the key downstream stores use."""

    entity_id: str
    source_key: str
    derived_key: str
    stage: str


@dataclass
class ChainContext:
    """Per-run state shared by the links of one chain run."""

    entity_id: str
    cancel: CancelToken | None = None
    derived_key: str | None = None
    record: ReconciliationRecord | None = None
    rows: dict[str, Mapping[str, Any]] = field(default_factory=dict)

    def key_for(self, keyed_by: KeyedBy) -> str:
        if keyed_by == "entity":
            return self.entity_id
        if self.derived_key is None:
            raise ConfigurationError(
                "Link keyed by derived key runs before any link derived one"
            )
        return self.derived_key


@dataclass
class LinkRecord:
    """What one link did."""

    name: str
    kind: str
    status: Literal["completed", "short_circuited"]
    attempts: int = 0
    triggered: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "status": self.status,
            "attempts": self.attempts,
            "triggered": self.triggered,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass
class ChainReport:
    """Outcome of a successful chain run."""

    entity_id: str
    chain: str
    links: list[LinkRecord] = field(default_factory=list)
    short_circuited: bool = False
    record: ReconciliationRecord | None = None
    rows: dict[str, Mapping[str, Any]] = field(default_factory=dict)

    @property
    def triggers_invoked(self) -> int:
        return sum(1 for link in self.links if link.triggered)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "chain": self.chain,
            "short_circuited": self.short_circuited,
            "derived_key": self.record.derived_key if self.record else None,
            "links": [link.to_dict() for link in self.links],
        }


def greater_than(bound: int) -> Callable[[Any], bool]:
    """Matcher for ``expected`` values: a number strictly above ``bound``."""

    def match(value: Any) -> bool:
        try:
            return value is not None and int(value) > bound
        except (TypeError, ValueError):
            return False

    match.__name__ = f"greater_than_{bound}"
    return match


def row_mismatches(row: Mapping[str, Any], expected: Mapping[str, Any]) -> dict[str, Any]:
    """Fields whose value differs from ``expected``.

    An expected value that is a set, frozenset, list or tuple means "one of";
    a callable is a predicate on the row value.
    """
    mismatches: dict[str, Any] = {}
    for key, want in expected.items():
        got = row.get(key)
        if isinstance(want, (set, frozenset, list, tuple)):
            ok = got in want
        elif callable(want):
            ok = bool(want(got))
        else:
            ok = got == want
        if not ok:
            mismatches[key] = got
    return mismatches


# =============================================================================
# LINKS
# =============================================================================


class ChainLink(ABC):
    """Base class for chain links.

    Every statement is bound with ``entity_id`` (the key chosen by
    ``keyed_by``) plus ``params``: a fixed mapping, or a callable evaluated
    each time the link binds (timestamps).
    """

    kind: str = "link"

    def __init__(
        self,
        name: str,
        store: StoreHandle,
        statement: str,
        *,
        keyed_by: KeyedBy = "entity",
        params: LinkParams | None = None,
    ):
        self.name = name
        self.store = store
        self.statement = statement
        self.keyed_by = keyed_by
        self._extra = params

    @abstractmethod
    def execute(self, ctx: ChainContext) -> LinkRecord:
        """Run the link. Raise a ``LoanflowError`` to abort the chain."""

    def _record(self, status: str = "completed", **kwargs: Any) -> LinkRecord:
        return LinkRecord(name=self.name, kind=self.kind, status=status, **kwargs)

    def _params(self, ctx: ChainContext) -> dict[str, Any]:
        params: dict[str, Any] = {"entity_id": ctx.key_for(self.keyed_by)}
        if self._extra is not None:
            params.update(self._extra() if callable(self._extra) else self._extra)
        return params

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, store={self.store.name!r})"


class ExpectRecordLink(ChainLink):
    """Require a row whose fields match ``expected``."""

    kind = "expect"

    def __init__(
        self,
        name: str,
        store: StoreHandle,
        statement: str,
        expected: Mapping[str, Any],
        *,
        keyed_by: KeyedBy = "entity",
        params: LinkParams | None = None,
    ):
        super().__init__(name, store, statement, keyed_by=keyed_by, params=params)
        self.expected = dict(expected)

    def execute(self, ctx: ChainContext) -> LinkRecord:
        row = self.store.query_one(self.statement, self._params(ctx))
        if row is None:
            raise PreconditionFailedError(f"{self.name}: no row found").with_context(
                store=self.store.name
            )
        mismatches = row_mismatches(row, self.expected)
        if mismatches:
            raise PreconditionFailedError(
                f"{self.name}: row does not match expected values"
            ).with_context(store=self.store.name, mismatches=mismatches)
        ctx.rows[self.name] = row
        return self._record(attempts=1, completed_at=datetime.now(UTC))


class TouchRecordLink(ChainLink):
    """Run a narrow write; zero affected rows fails the chain."""

    kind = "touch"

    def execute(self, ctx: ChainContext) -> LinkRecord:
        affected = self.store.execute(self.statement, self._params(ctx))
        if affected < 1:
            raise PreconditionFailedError(f"{self.name}: write affected no rows").with_context(
                store=self.store.name
            )
        logger.info("chain.link.touched", link=self.name, rows=affected)
        return self._record(attempts=1, completed_at=datetime.now(UTC))


class PreconditionLink(ChainLink):
    """Short-circuit the chain when a correlated record already exists."""

    kind = "precondition"

    def __init__(
        self,
        name: str,
        store: StoreHandle,
        statement: str,
        *,
        expected: Mapping[str, Any] | None = None,
        keyed_by: KeyedBy = "entity",
        params: LinkParams | None = None,
    ):
        super().__init__(name, store, statement, keyed_by=keyed_by, params=params)
        self.expected = dict(expected or {})

    def execute(self, ctx: ChainContext) -> LinkRecord:
        row = self.store.query_one(self.statement, self._params(ctx))
        if row is not None and not row_mismatches(row, self.expected):
            ctx.rows[self.name] = row
            logger.info("chain.link.already_done", link=self.name, store=self.store.name)
            return self._record("short_circuited", attempts=1, completed_at=datetime.now(UTC))
        return self._record(attempts=1, completed_at=datetime.now(UTC))


class _TriggeringLink(ChainLink):
    """Shared trigger + poll plumbing."""

    def __init__(
        self,
        name: str,
        store: StoreHandle,
        statement: str,
        *,
        actuator: Actuator,
        trigger: str,
        policy: RetryPolicy,
        sleeper: Sleeper,
        actuation_policy: RetryPolicy = SINGLE_ATTEMPT,
        keyed_by: KeyedBy = "entity",
        params: LinkParams | None = None,
    ):
        super().__init__(name, store, statement, keyed_by=keyed_by, params=params)
        self.actuator = actuator
        self.trigger = trigger
        self.policy = policy
        self.actuation_policy = actuation_policy
        self._sleeper = sleeper

    def _fire(self, ctx: ChainContext, key: str) -> int:
        """Invoke the trigger. Returns the attempts spent."""
        budget = self.actuation_policy.new_budget()

        def attempt(n: int) -> ActuationOutcome:
            logger.info("chain.link.trigger", link=self.name, trigger=self.trigger, attempt=n)
            return self.actuator.act(
                ActuationContext(
                    entity_id=ctx.entity_id,
                    action=self.trigger,
                    attempt=n,
                    params={"entity_id": key},
                )
            )

        outcome = self.actuation_policy.retry(
            attempt,
            is_retryable=lambda o: isinstance(o, TransientFailure),
            sleeper=self._sleeper,
            cancel=ctx.cancel,
            budget=budget,
        )
        if isinstance(outcome, (HardFailure, TransientFailure)):
            raise ActuationError(f"{self.trigger} failed: {outcome.reason}").with_context(
                attempts=budget.attempts, trigger=self.trigger
            )
        return budget.attempts

    def _read(self, params: Mapping[str, Any]) -> Mapping[str, Any] | PollOutcome:
        row = guarded_read(self.store, lambda: self.store.query_one(self.statement, params))
        return StillPending() if row is None else row

    def _fail_unconfirmed(self, outcome: PollOutcome, what: str) -> LoanflowError:
        if isinstance(outcome, StoreUnavailable):
            return StoreUnavailableError(
                f"{self.name}: store {self.store.name} unavailable on final poll: {outcome.reason}"
            ).with_context(attempts=outcome.attempt, store=self.store.name)
        return ConfirmationTimeoutError(
            f"{self.name}: {what} not confirmed after {outcome.attempt} polls"
        ).with_context(
            attempts=outcome.attempt,
            store=self.store.name,
            last_observed_state=getattr(outcome, "observed", None),
        )


class TriggerConfirmLink(_TriggeringLink):
    """Invoke a trigger, then poll until a row matching ``expected`` appears.

    On confirmation the correlation key is read from ``derive_key_field`` of
    the confirmed row and stored on the context as a ``ReconciliationRecord``.
    """

    kind = "trigger_confirm"

    def __init__(
        self,
        name: str,
        store: StoreHandle,
        statement: str,
        *,
        expected: Mapping[str, Any],
        derive_key_field: str,
        stage: str | None = None,
        status_field: str = "status",
        **kwargs: Any,
    ):
        super().__init__(name, store, statement, **kwargs)
        self.expected = dict(expected)
        self.derive_key_field = derive_key_field
        self.stage = stage or name
        self.status_field = status_field

    def execute(self, ctx: ChainContext) -> LinkRecord:
        record = self._record()
        key = ctx.key_for(self.keyed_by)
        self._fire(ctx, key)
        record.triggered = True

        params = self._params(ctx)

        def check() -> PollOutcome:
            row = self._read(params)
            if not isinstance(row, Mapping):
                return row
            if row_mismatches(row, self.expected):
                observed = row.get(self.status_field)
                return StillPending(observed=None if observed is None else str(observed), row=row)
            return Confirmed(row=row)

        outcome = self.policy.wait_for(check, sleeper=self._sleeper, cancel=ctx.cancel)
        record.attempts = outcome.attempt
        if not isinstance(outcome, Confirmed):
            raise self._fail_unconfirmed(outcome, "record")

        row = outcome.row or {}
        derived = row.get(self.derive_key_field)
        if derived is None or str(derived) == "":
            raise PreconditionFailedError(
                f"{self.name}: confirmed row has no {self.derive_key_field}"
            ).with_context(store=self.store.name)

        ctx.rows[self.name] = row
        ctx.derived_key = str(derived)
        ctx.record = ReconciliationRecord(
            entity_id=ctx.entity_id,
            source_key=key,
            derived_key=ctx.derived_key,
            stage=self.stage,
        )
        logger.info("chain.link.derived_key", link=self.name, derived_key=ctx.derived_key)
        record.completed_at = datetime.now(UTC)
        return record


class PushConfirmLink(_TriggeringLink):
    """Poll by the derived key; push a *ready* row once; wait for *added*.

    A row already in ``added_status`` succeeds without triggering. Statuses
    other than ready/added keep polling.
    """

    kind = "push_confirm"

    def __init__(
        self,
        name: str,
        store: StoreHandle,
        statement: str,
        *,
        ready_status: str,
        added_status: str,
        status_field: str = "status",
        keyed_by: KeyedBy = "derived",
        **kwargs: Any,
    ):
        super().__init__(name, store, statement, keyed_by=keyed_by, **kwargs)
        self.ready_status = ready_status
        self.added_status = added_status
        self.status_field = status_field

    def _status(self, row: Mapping[str, Any]) -> str | None:
        value = row.get(self.status_field)
        return None if value is None else str(value)

    def execute(self, ctx: ChainContext) -> LinkRecord:
        record = self._record()
        key = ctx.key_for(self.keyed_by)
        params = self._params(ctx)

        def check() -> PollOutcome:
            row = self._read(params)
            if not isinstance(row, Mapping):
                return row
            status = self._status(row)
            if status == self.added_status:
                return Confirmed(observed=status, row=row)
            if status == self.ready_status and not record.triggered:
                self._fire(ctx, key)
                record.triggered = True
                after = self._read(params)
                if isinstance(after, Mapping) and self._status(after) == self.added_status:
                    return Confirmed(observed=self.added_status, row=after)
            return StillPending(observed=status, row=row)

        outcome = self.policy.wait_for(check, sleeper=self._sleeper, cancel=ctx.cancel)
        record.attempts = outcome.attempt
        if not isinstance(outcome, Confirmed):
            raise self._fail_unconfirmed(outcome, f"{self.added_status} status").with_context(
                triggered=record.triggered
            )

        ctx.rows[self.name] = outcome.row or {}
        record.completed_at = datetime.now(UTC)
        return record


# =============================================================================
# CHAIN
# =============================================================================


class ReconciliationChain:
    """An ordered list of links run against one context per ``run``."""

    def __init__(self, name: str, links: Sequence[ChainLink]):
        if not links:
            raise ConfigurationError(f"Chain {name!r} has no links")
        names = [link.name for link in links]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate link names in chain {name!r}: {duplicates}")
        self.name = name
        self.links = list(links)

    @property
    def stores(self) -> Collection[str]:
        return sorted({link.store.name for link in self.links})

    def run(self, entity_id: str, *, cancel: CancelToken | None = None) -> Result[ChainReport]:
        ctx = ChainContext(entity_id=entity_id, cancel=cancel)
        report = ChainReport(entity_id=entity_id, chain=self.name)

        with LogContext(entity_id=entity_id, chain=self.name):
            logger.info("chain.run.start", links=[link.name for link in self.links])
            for link in self.links:
                try:
                    if cancel is not None:
                        cancel.raise_if_cancelled()
                    logger.info("chain.link.start", link=link.name, kind=link.kind)
                    link_record = link.execute(ctx)
                except LoanflowError as e:
                    e.with_context(entity_id=entity_id, workflow=self.name, step=link.name)
                    e.context.metadata.setdefault(
                        "completed_links", [r.name for r in report.links]
                    )
                    if ctx.derived_key is not None:
                        e.context.metadata.setdefault("derived_key", ctx.derived_key)
                    logger.warning("chain.run.failed", **e.to_dict())
                    return Err(e)

                report.links.append(link_record)
                logger.info(
                    "chain.link.completed",
                    link=link.name,
                    status=link_record.status,
                    attempts=link_record.attempts,
                    triggered=link_record.triggered,
                )
                if link_record.status == "short_circuited":
                    report.short_circuited = True
                    break

            report.record = ctx.record
            report.rows = dict(ctx.rows)
            logger.info(
                "chain.run.completed",
                short_circuited=report.short_circuited,
                triggers=report.triggers_invoked,
            )
            return Ok(report)
