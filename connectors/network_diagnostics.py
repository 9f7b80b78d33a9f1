"""Connectivity diagnostics behind the settings page's "diagnose" button.

DNS resolution goes through public DNS-over-HTTPS JSON APIs so it reflects
what an HTTPS client on this machine can actually reach; when every resolver
fails, a direct HTTPS request to the host stands in as an indirect check.
Every function returns its verdict together with the log lines it produced.
"""

from __future__ import annotations

import logging
import platform
import socket
import sys
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from core.health_checker import HttpFactory, ProbeResult, check_url_connectivity, default_http_factory

LOGGER = logging.getLogger(__name__)

DOH_RESOLVERS = (
    "https://dns.google/resolve?name={host}",
    "https://cloudflare-dns.com/dns-query?name={host}&type=A",
)
PUBLIC_IP_URL = "https://api.ipify.org?format=json"
DNS_TIMEOUT = 5.0


@dataclass(slots=True)
class DnsResult:
    success: bool
    ip: Optional[str] = None
    error: Optional[str] = None
    logs: List[str] = field(default_factory=list)


@dataclass(slots=True)
class ConnectionTestResult:
    success: bool
    message: str = ""
    dns: Optional[DnsResult] = None
    connectivity: Optional[ProbeResult] = None
    logs: List[str] = field(default_factory=list)


@dataclass(slots=True)
class NetworkDiagnosis:
    runtime: Dict[str, Any] = field(default_factory=dict)
    online: bool = False
    public_ip: Optional[str] = None
    issues: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.online


def _stamp() -> str:
    return time.strftime("%Y-%m-%d %H:%M:%S")


async def check_dns_resolution(
    hostname: str,
    http_factory: Optional[HttpFactory] = None,
    timeout: float = DNS_TIMEOUT,
) -> DnsResult:
    """Resolve ``hostname`` through public DNS-over-HTTPS resolvers."""

    factory = http_factory or default_http_factory
    result = DnsResult(success=False)
    logs = result.logs
    logs.append(f"resolving {hostname} ({_stamp()})")
    for template in DOH_RESOLVERS:
        url = template.format(host=hostname)
        logs.append(f"query: {url}")
        try:
            async with factory() as client:
                response = await client.get(url, headers={"Accept": "application/dns-json"}, timeout=timeout)
        except httpx.RequestError as exc:
            logs.append(f"resolver error: {exc}")
            continue
        if not response.is_success:
            logs.append(f"resolver answered {response.status_code} {response.reason_phrase}")
            continue
        try:
            body = response.json()
        except ValueError:
            logs.append("resolver returned an unreadable body")
            continue
        if not isinstance(body, dict):
            logs.append("resolver returned an unexpected body")
            continue
        answers = [answer for answer in body.get("Answer") or [] if isinstance(answer, dict)]
        if answers:
            result.success = True
            result.ip = answers[0].get("data")
            logs.append(f"resolved {hostname} -> {result.ip}")
            return result
        logs.append("resolver answered without records")

    logs.append("all resolvers failed, trying the host directly")
    probe = await check_url_connectivity(f"https://{hostname}/", http_factory=http_factory)
    if probe.ok:
        logs.append("host answered over HTTPS, so its name resolves")
        result.success = True
        return result
    logs.append(f"host unreachable: {probe.reason}")
    result.error = "DNS resolution failed"
    return result


async def test_connection(host: str, http_factory: Optional[HttpFactory] = None) -> ConnectionTestResult:
    """DNS check plus an HTTPS reachability probe for a host name or URL."""

    result = ConnectionTestResult(success=False)
    logs = result.logs
    logs.append(f"connection test for {host} ({_stamp()})")

    hostname = host
    url = host
    if host.startswith("http"):
        try:
            hostname = httpx.URL(host).host or host
        except httpx.InvalidURL as exc:
            logs.append(f"cannot parse {host}: {exc}")
    else:
        url = f"https://{host}"
        logs.append(f"no scheme given, using {url}")

    logs.append(f"step 1: DNS resolution of {hostname}")
    dns = await check_dns_resolution(hostname, http_factory=http_factory)
    result.dns = dns
    logs.extend(dns.logs)

    logs.append("step 2: reachability")
    probe = await check_url_connectivity(url, http_factory=http_factory)
    result.connectivity = probe
    if probe.ok:
        logs.append(f"reachable ({probe.duration_ms:.0f}ms)")
    else:
        logs.append(f"unreachable: {probe.reason}")

    result.success = dns.success or probe.ok
    if result.success:
        parts = [part for ok, part in ((dns.success, "DNS ok"), (probe.ok, "HTTP ok")) if ok]
        result.message = f"connection test passed ({', '.join(parts)})"
    elif not dns.success:
        result.message = f"DNS resolution failed, host {hostname} not found"
        logs.extend(
            [
                "possible causes: DNS server settings, no network, proxy or VPN, wrong host name",
                "try another network, review proxy/VPN settings and verify the remote endpoint in settings",
            ]
        )
    else:
        result.message = f"DNS resolved but HTTP failed ({probe.reason})"
    logs.append(f"conclusion: {result.message}")
    return result


def _runtime_info() -> Dict[str, Any]:
    return {
        "python": sys.version.split()[0],
        "platform": platform.platform(),
        "hostname": socket.gethostname(),
        "httpx": httpx.__version__,
    }


async def diagnose_network_issues(
    online: bool = True,
    http_factory: Optional[HttpFactory] = None,
) -> NetworkDiagnosis:
    """Collect runtime facts, the public IP and generic recommendations."""

    diagnosis = NetworkDiagnosis(runtime=_runtime_info(), online=online)
    logs = diagnosis.logs
    logs.append(f"network diagnosis ({_stamp()})")
    for key, value in diagnosis.runtime.items():
        logs.append(f"{key}: {value}")
    logs.append(f"online: {online}")
    if not online:
        diagnosis.issues.append("the console reports the network as offline")
        diagnosis.recommendations.append("check that this machine is connected to the internet")

    factory = http_factory or default_http_factory
    try:
        async with factory() as client:
            response = await client.get(PUBLIC_IP_URL, headers={"Accept": "application/json"}, timeout=DNS_TIMEOUT)
        if response.is_success:
            body = response.json()
            if isinstance(body, dict) and body.get("ip"):
                diagnosis.public_ip = str(body["ip"])
                logs.append(f"public ip: {diagnosis.public_ip}")
            else:
                logs.append("public IP service returned an unexpected body")
        else:
            LOGGER.warning("Public IP lookup failed: %s", response.status_code)
            logs.append(f"public IP service answered {response.status_code}")
    except (httpx.RequestError, ValueError) as exc:
        LOGGER.warning("Public IP lookup failed: %s", exc)
        logs.append(f"public IP lookup failed: {exc}")
        diagnosis.issues.append("public IP lookup failed, outbound HTTPS may be blocked")

    if not diagnosis.issues:
        diagnosis.issues.append("no obvious network problem detected")
    diagnosis.recommendations.append(
        "if the remote store is still unreachable, check the service status or ask its administrator"
    )
    diagnosis.recommendations.append("switch to local storage for now and retry the remote store later")
    logs.extend(f"issue: {issue}" for issue in diagnosis.issues)
    return diagnosis


__all__ = [
    "DnsResult",
    "ConnectionTestResult",
    "NetworkDiagnosis",
    "check_dns_resolution",
    "test_connection",
    "diagnose_network_issues",
]
