"""Service endpoint health checks.

Before a run, operators check that the services whose triggers and UIs the
run depends on are up. Each check is a plain ``GET`` with a short timeout;
any 2xx response counts as up.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from loanflow.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT_S = 5.0


@dataclass(frozen=True)
class EndpointStatus:
    name: str
    url: str
    up: bool
    status_code: int | None = None
    error: str | None = None
    elapsed_ms: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "url": self.url,
            "up": self.up,
            "status_code": self.status_code,
            "error": self.error,
            "elapsed_ms": self.elapsed_ms,
        }


def check_http(client: httpx.Client, name: str, url: str) -> EndpointStatus:
    """``GET`` one endpoint and expect a 2xx response."""
    started = time.perf_counter()
    try:
        response = client.get(url)
    except httpx.HTTPError as e:
        logger.warning("health.endpoint.down", name=name, url=url, error=str(e))
        return EndpointStatus(name=name, url=url, up=False, error=f"{e.__class__.__name__}: {e}")

    elapsed_ms = round((time.perf_counter() - started) * 1000, 1)
    up = response.is_success
    logger.info("health.endpoint", name=name, url=url, status_code=response.status_code, up=up)
    return EndpointStatus(
        name=name,
        url=url,
        up=up,
        status_code=response.status_code,
        elapsed_ms=elapsed_ms,
    )


def check_endpoints(
    endpoints: Mapping[str, str],
    *,
    client: httpx.Client | None = None,
    timeout_s: float = DEFAULT_TIMEOUT_S,
) -> list[EndpointStatus]:
    """Check every endpoint, in the order given."""
    if client is not None:
        return [check_http(client, name, url) for name, url in endpoints.items()]
    with httpx.Client(timeout=timeout_s, follow_redirects=True) as owned:
        return [check_http(owned, name, url) for name, url in endpoints.items()]
