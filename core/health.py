"""远端探测地址的健康状态与优先级选择。"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional


@dataclass(slots=True)
class Endpoint:
    """单个探测地址的运行时状态。"""

    name: str
    url: str
    priority: int = 0
    last_checked: float = 0.0
    consecutive_failures: int = 0
    latency_ms: float = 0.0
    healthy: bool = False
    status: Optional[int] = None
    failure_reason: str = ""


@dataclass(slots=True)
class HealthCheckResult:
    """一次探测的结果，用于日志与 UI 展示。"""

    endpoint: Endpoint
    ok: bool
    reason: str = ""
    latency_ms: Optional[float] = None


class EndpointPool:
    """按优先级排列的候选地址池。"""

    def __init__(self, endpoints: Iterable[Endpoint]) -> None:
        self._endpoints: List[Endpoint] = sorted(list(endpoints), key=lambda e: e.priority)

    @classmethod
    def from_urls(cls, urls: Iterable[str]) -> "EndpointPool":
        return cls(Endpoint(name=url, url=url, priority=index) for index, url in enumerate(urls))

    @property
    def endpoints(self) -> List[Endpoint]:
        return list(self._endpoints)

    def mark_success(self, endpoint: Endpoint, latency_ms: float, status: Optional[int] = None) -> None:
        endpoint.latency_ms = latency_ms
        endpoint.last_checked = time.time()
        endpoint.consecutive_failures = 0
        endpoint.healthy = True
        endpoint.status = status
        endpoint.failure_reason = ""

    def mark_failure(self, endpoint: Endpoint, reason: str, status: Optional[int] = None) -> None:
        """标记失败：累计失败次数并记录原因。"""

        endpoint.consecutive_failures += 1
        endpoint.last_checked = time.time()
        endpoint.healthy = False
        endpoint.latency_ms = 0.0
        endpoint.status = status
        endpoint.failure_reason = reason

    def choose_healthy(self) -> Optional[Endpoint]:
        """挑选优先级最高的健康地址；全部失败时返回 None。"""

        for endpoint in self._endpoints:
            if endpoint.healthy:
                return endpoint
        return None

    def snapshot(self) -> List[Dict[str, object]]:
        return [
            {
                "name": ep.name,
                "url": ep.url,
                "healthy": ep.healthy,
                "status": ep.status,
                "latency_ms": ep.latency_ms,
                "failures": ep.consecutive_failures,
                "last_checked": ep.last_checked,
                "reason": ep.failure_reason,
            }
            for ep in self._endpoints
        ]


__all__ = ["Endpoint", "EndpointPool", "HealthCheckResult"]
