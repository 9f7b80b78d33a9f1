"""URL reachability probes used by backend switching, the factory and diagnostics."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

import httpx

from core.health import EndpointPool, HealthCheckResult

LOGGER = logging.getLogger(__name__)

HttpFactory = Callable[[], httpx.AsyncClient]

DEFAULT_PROBE_TIMEOUT = 5.0


def default_http_factory() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=DEFAULT_PROBE_TIMEOUT)


@dataclass(slots=True)
class ProbeResult:
    """Outcome of one reachability probe."""

    url: str
    ok: bool
    status: Optional[int] = None
    reason: str = ""
    duration_ms: float = 0.0


@dataclass(slots=True)
class MultiProbeResult:
    overall_success: bool
    results: List[ProbeResult] = field(default_factory=list)
    first_successful_url: Optional[str] = None
    logs: List[str] = field(default_factory=list)


async def check_url_connectivity(
    url: str,
    timeout: float = DEFAULT_PROBE_TIMEOUT,
    method: str = "HEAD",
    http_factory: Optional[HttpFactory] = None,
) -> ProbeResult:
    """Issue a lightweight request against ``url``.

    Only a 2xx answer counts as reachable. Transport failures and timeouts are
    reported through ``reason`` instead of being raised, so callers can probe a
    list of candidates without wrapping each call.
    """

    factory = http_factory or default_http_factory
    started = time.monotonic()
    try:
        async with factory() as client:
            response = await client.request(method, url, timeout=timeout)
    except httpx.TimeoutException:
        duration = (time.monotonic() - started) * 1000
        return ProbeResult(url=url, ok=False, reason=f"timed out after {timeout:g}s", duration_ms=duration)
    except httpx.RequestError as exc:
        duration = (time.monotonic() - started) * 1000
        return ProbeResult(url=url, ok=False, reason=str(exc) or exc.__class__.__name__, duration_ms=duration)
    duration = (time.monotonic() - started) * 1000
    ok = response.is_success
    reason = "ok" if ok else f"status {response.status_code} {response.reason_phrase}".strip()
    return ProbeResult(url=url, ok=ok, status=response.status_code, reason=reason, duration_ms=duration)


async def check_multiple_urls(
    urls: Iterable[str],
    timeout: float = DEFAULT_PROBE_TIMEOUT,
    stop_on_first: bool = False,
    http_factory: Optional[HttpFactory] = None,
) -> MultiProbeResult:
    """Probe every URL in order and summarise which ones answered."""

    candidates = list(urls)
    outcome = MultiProbeResult(overall_success=False)
    outcome.logs.append(f"probing {len(candidates)} url(s)")
    for url in candidates:
        result = await check_url_connectivity(url, timeout=timeout, http_factory=http_factory)
        outcome.results.append(result)
        if result.ok:
            outcome.logs.append(f"reachable: {url} ({result.duration_ms:.0f}ms, status {result.status})")
            if outcome.first_successful_url is None:
                outcome.first_successful_url = url
                outcome.overall_success = True
            if stop_on_first:
                break
        else:
            outcome.logs.append(f"unreachable: {url} ({result.duration_ms:.0f}ms): {result.reason}")
    if outcome.overall_success:
        outcome.logs.append(f"first reachable url: {outcome.first_successful_url}")
    else:
        outcome.logs.append("no url could be reached")
    return outcome


async def probe_pool(
    pool: EndpointPool,
    timeout: float = DEFAULT_PROBE_TIMEOUT,
    stop_on_first: bool = True,
    http_factory: Optional[HttpFactory] = None,
) -> List[HealthCheckResult]:
    """Probe the pool in priority order and record health on each endpoint."""

    results: List[HealthCheckResult] = []
    for endpoint in pool.endpoints:
        probe = await check_url_connectivity(endpoint.url, timeout=timeout, http_factory=http_factory)
        if probe.ok:
            pool.mark_success(endpoint, probe.duration_ms, probe.status)
        else:
            pool.mark_failure(endpoint, probe.reason, probe.status)
        LOGGER.debug("probe %s -> %s", endpoint.url, probe.reason)
        results.append(
            HealthCheckResult(
                endpoint=endpoint,
                ok=probe.ok,
                reason=probe.reason,
                latency_ms=probe.duration_ms if probe.ok else None,
            )
        )
        if probe.ok and stop_on_first:
            break
    return results


__all__ = [
    "HttpFactory",
    "ProbeResult",
    "MultiProbeResult",
    "default_http_factory",
    "check_url_connectivity",
    "check_multiple_urls",
    "probe_pool",
]
