from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Callable, List

import httpx

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from connectors import network_diagnostics
from core.health import EndpointPool
from core.health_checker import check_multiple_urls, check_url_connectivity, probe_pool


def _factory(handler: Callable[[httpx.Request], httpx.Response]):
    return lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _refuse(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("refused", request=request)


def test_single_url_probe() -> None:
    ok = asyncio.run(check_url_connectivity("https://up.test/", http_factory=_factory(lambda r: httpx.Response(204))))
    assert ok.ok and ok.status == 204

    bad = asyncio.run(check_url_connectivity("https://up.test/", http_factory=_factory(lambda r: httpx.Response(500))))
    assert not bad.ok and bad.status == 500

    down = asyncio.run(check_url_connectivity("https://down.test/", http_factory=_factory(_refuse)))
    assert not down.ok and down.status is None


def test_probe_timeout_is_reported() -> None:
    def slow(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    result = asyncio.run(check_url_connectivity("https://slow.test/", timeout=2, http_factory=_factory(slow)))
    assert not result.ok
    assert result.reason == "timed out after 2s"


def test_multiple_urls_stop_on_first() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "down.test":
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(200)

    urls = ["https://down.test/", "https://up.test/", "https://other.test/"]
    result = asyncio.run(check_multiple_urls(urls, stop_on_first=True, http_factory=_factory(handler)))
    assert result.overall_success
    assert result.first_successful_url == "https://up.test/"
    assert len(result.results) == 2

    everything = asyncio.run(check_multiple_urls(urls, http_factory=_factory(handler)))
    assert len(everything.results) == 3
    assert everything.first_successful_url == "https://up.test/"


def test_probe_pool_marks_health() -> None:
    pool = EndpointPool.from_urls(["https://down.test/", "https://up.test/"])
    handler = lambda r: httpx.Response(200) if r.url.host == "up.test" else httpx.Response(502)
    results = asyncio.run(probe_pool(pool, http_factory=_factory(handler)))
    assert [r.ok for r in results] == [False, True]
    chosen = pool.choose_healthy()
    assert chosen is not None and chosen.url == "https://up.test/"
    assert pool.endpoints[0].consecutive_failures == 1


def test_dns_resolution_via_doh() -> None:
    seen: List[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.host)
        assert request.headers["Accept"] == "application/dns-json"
        return httpx.Response(200, json={"Status": 0, "Answer": [{"data": "203.0.113.7"}]})

    result = asyncio.run(network_diagnostics.check_dns_resolution("project.example.co", http_factory=_factory(handler)))
    assert result.success
    assert result.ip == "203.0.113.7"
    assert seen == ["dns.google"]


def test_dns_falls_back_to_direct_probe() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host in ("dns.google", "cloudflare-dns.com"):
            return httpx.Response(200, json={"Status": 3})
        return httpx.Response(200)

    result = asyncio.run(network_diagnostics.check_dns_resolution("project.example.co", http_factory=_factory(handler)))
    assert result.success
    assert result.ip is None
    assert any("resolves" in line for line in result.logs)


def test_connection_test_reports_dns_failure() -> None:
    outcome = asyncio.run(network_diagnostics.test_connection("https://nowhere.test", http_factory=_factory(_refuse)))
    assert not outcome.success
    assert outcome.message.startswith("DNS resolution failed")
    assert outcome.dns is not None and outcome.dns.error == "DNS resolution failed"


def test_connection_test_success_without_scheme() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "dns.google":
            return httpx.Response(200, json={"Answer": [{"data": "198.51.100.1"}]})
        return httpx.Response(200)

    outcome = asyncio.run(network_diagnostics.test_connection("project.example.co", http_factory=_factory(handler)))
    assert outcome.success
    assert outcome.message == "connection test passed (DNS ok, HTTP ok)"
    assert outcome.connectivity is not None and outcome.connectivity.url == "https://project.example.co"


def test_network_diagnosis() -> None:
    handler = lambda r: httpx.Response(200, json={"ip": "192.0.2.10"})
    diagnosis = asyncio.run(network_diagnostics.diagnose_network_issues(online=True, http_factory=_factory(handler)))
    assert diagnosis.success
    assert diagnosis.public_ip == "192.0.2.10"
    assert diagnosis.issues == ["no obvious network problem detected"]
    assert "python" in diagnosis.runtime

    offline = asyncio.run(network_diagnostics.diagnose_network_issues(online=False, http_factory=_factory(_refuse)))
    assert not offline.success
    assert offline.public_ip is None
    assert len(offline.issues) == 2


def test_network_diagnosis_keeps_a_log() -> None:
    handler = lambda r: httpx.Response(200, json={"ip": "192.0.2.10"})
    diagnosis = asyncio.run(network_diagnostics.diagnose_network_issues(online=True, http_factory=_factory(handler)))
    assert diagnosis.logs[0].startswith("network diagnosis")
    assert "public ip: 192.0.2.10" in diagnosis.logs
    assert diagnosis.logs[-1] == "issue: no obvious network problem detected"


def test_non_object_json_bodies_are_tolerated() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host in ("dns.google", "cloudflare-dns.com", "api.ipify.org"):
            return httpx.Response(200, json=["not", "an", "object"])
        return httpx.Response(200)

    result = asyncio.run(network_diagnostics.check_dns_resolution("project.example.co", http_factory=_factory(handler)))
    assert result.success
    assert result.ip is None
    assert result.logs.count("resolver returned an unexpected body") == 2

    diagnosis = asyncio.run(network_diagnostics.diagnose_network_issues(online=True, http_factory=_factory(handler)))
    assert diagnosis.public_ip is None
    assert "public IP service returned an unexpected body" in diagnosis.logs
