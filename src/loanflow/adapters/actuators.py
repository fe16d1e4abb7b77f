"""Actuator adapters.

``HttpTriggerActuator`` calls named HTTP trigger endpoints with ``httpx``.
``CallableActuator`` adapts a plain function (a UI automation step, a
scripted action) to the ``Actuator`` protocol.

Both classify failures the same way: a gateway-timeout signature in the
response body or error message, a 502/503/504 status, or a transport error
is a ``TransientFailure`` the driver may retry; anything else is a
``HardFailure``.

Examples:
    >>> actuator = HttpTriggerActuator(
    ...     settings.triggers,
    ...     base_url=settings.base_url,
    ...     transient_signatures=settings.transient_signatures,
    ... )
    >>> actuator.act(ActuationContext("app-1", "create_lead", params={"entity_id": "app-1"}))
    Success(detail='HTTP 204', status_code=204)
"""

from __future__ import annotations

from collections.abc import Callable, Collection, Mapping, Sequence
from typing import Any

import httpx

from loanflow.core.errors import ConfigurationError
from loanflow.core.logging import get_logger
from loanflow.core.settings import TriggerSettings
from loanflow.orchestration.outcomes import (
    ActuationContext,
    ActuationOutcome,
    HardFailure,
    Success,
    TransientFailure,
)

logger = get_logger(__name__)

DEFAULT_TRANSIENT_SIGNATURES = ("Gateway Time-out", "Gateway Timeout")
TRANSIENT_STATUSES = frozenset({502, 503, 504})


def has_transient_signature(text: str | None, signatures: Sequence[str]) -> bool:
    if not text:
        return False
    return any(sig in text for sig in signatures)


def classify_response(
    status_code: int,
    body: str,
    *,
    ok_statuses: Collection[int],
    transient_signatures: Sequence[str] = DEFAULT_TRANSIENT_SIGNATURES,
) -> ActuationOutcome:
    """Map an HTTP response onto an ``ActuationOutcome``."""
    if status_code in ok_statuses:
        return Success(detail=f"HTTP {status_code}", status_code=status_code)
    if status_code in TRANSIENT_STATUSES or has_transient_signature(body, transient_signatures):
        return TransientFailure(reason=f"HTTP {status_code}", status_code=status_code)
    return HardFailure(
        reason=f"HTTP {status_code} (expected {sorted(ok_statuses)})", status_code=status_code
    )


class HttpTriggerActuator:
    """Invokes the trigger named by ``ActuationContext.action``.

    The trigger's ``path`` is formatted with ``context.params`` and joined to
    the trigger's own ``base_url`` or the actuator's default.
    """

    def __init__(
        self,
        triggers: Mapping[str, TriggerSettings],
        *,
        base_url: str,
        client: httpx.Client | None = None,
        timeout_s: float = 30.0,
        transient_signatures: Sequence[str] = DEFAULT_TRANSIENT_SIGNATURES,
    ):
        self._triggers = dict(triggers)
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client if client is not None else httpx.Client(timeout=timeout_s)
        self._signatures = tuple(transient_signatures)

    def __enter__(self) -> HttpTriggerActuator:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def url_for(self, context: ActuationContext) -> tuple[TriggerSettings, str]:
        try:
            trigger = self._triggers[context.action]
        except KeyError:
            raise ConfigurationError(f"No trigger configured for action: {context.action}") from None
        try:
            path = trigger.path.format(**context.params)
        except KeyError as e:
            raise ConfigurationError(
                f"Trigger {context.action!r} path needs parameter {e.args[0]!r}"
            ) from None
        base = (trigger.base_url or self._base_url).rstrip("/")
        return trigger, f"{base}/{path.lstrip('/')}"

    def act(self, context: ActuationContext) -> ActuationOutcome:
        trigger, url = self.url_for(context)
        log = logger.bind(action=context.action, attempt=context.attempt, url=url)
        try:
            response = self._client.request(trigger.method.upper(), url)
        except httpx.TransportError as e:
            log.warning("actuator.http.transport_error", error=str(e))
            return TransientFailure(reason=f"{e.__class__.__name__}: {e}")

        outcome = classify_response(
            response.status_code,
            response.text,
            ok_statuses=trigger.ok_statuses,
            transient_signatures=self._signatures,
        )
        log.info(
            "actuator.http.response",
            status_code=response.status_code,
            outcome=type(outcome).__name__,
        )
        return outcome


class CallableActuator:
    """Adapts ``fn(context)`` to the ``Actuator`` protocol.

    ``fn`` may return an ``ActuationOutcome``, ``None``/``True`` (success)
    or ``False`` (hard failure). An exception whose message carries a
    transient signature becomes a ``TransientFailure``; other exceptions
    become a ``HardFailure``.
    """

    def __init__(
        self,
        fn: Callable[[ActuationContext], ActuationOutcome | bool | None],
        *,
        transient_signatures: Sequence[str] = DEFAULT_TRANSIENT_SIGNATURES,
    ):
        self._fn = fn
        self._signatures = tuple(transient_signatures)

    def act(self, context: ActuationContext) -> ActuationOutcome:
        try:
            result = self._fn(context)
        except Exception as e:  # noqa: BLE001
            message = f"{e.__class__.__name__}: {e}"
            if has_transient_signature(str(e), self._signatures):
                logger.warning("actuator.callable.transient", action=context.action, error=message)
                return TransientFailure(reason=message)
            logger.error("actuator.callable.failed", action=context.action, error=message)
            return HardFailure(reason=message)

        if isinstance(result, (Success, TransientFailure, HardFailure)):
            return result
        if result is False:
            return HardFailure(reason=f"{context.action} reported failure")
        return Success()
