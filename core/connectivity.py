"""网络在线状态：保存当前标志，并在状态翻转时通过事件总线广播。"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from core.event_bus import EventBus
from core.events import ConnectivityState
from core.health_checker import HttpFactory, check_url_connectivity

LOGGER = logging.getLogger(__name__)


class ConnectivityMonitor:
    """在线/离线状态源。

    没有配置探测地址时只依赖外部调用 ``set_online``；配置后 ``refresh`` 会用一次带超时的
    请求刷新状态。
    """

    def __init__(
        self,
        online: bool = True,
        check_url: Optional[str] = None,
        check_timeout: float = 3.0,
        http_factory: Optional[HttpFactory] = None,
        bus: Optional[EventBus] = None,
    ) -> None:
        self._online = online
        self._check_url = check_url
        self._check_timeout = check_timeout
        self._http_factory = http_factory
        self._bus = bus or EventBus()

    @property
    def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        """更新状态；只有真正翻转时才广播。"""

        if online == self._online:
            return
        self._online = online
        state = ConnectivityState.ONLINE if online else ConnectivityState.OFFLINE
        LOGGER.info("网络状态变化: %s", state.value)
        self._bus.publish(state.value, state)

    def on_offline(self, handler: Callable[[ConnectivityState], None]) -> Callable[[], None]:
        return self._bus.subscribe(ConnectivityState.OFFLINE.value, handler)

    def on_online(self, handler: Callable[[ConnectivityState], None]) -> Callable[[], None]:
        return self._bus.subscribe(ConnectivityState.ONLINE.value, handler)

    async def refresh(self) -> bool:
        """探测一次检查地址并更新状态，返回最新的在线标志。"""

        if not self._check_url:
            return self._online
        probe = await check_url_connectivity(
            self._check_url, timeout=self._check_timeout, http_factory=self._http_factory
        )
        # 任意 HTTP 响应都说明网络可达
        reachable = probe.ok or probe.status is not None
        if not reachable:
            LOGGER.warning("网络探测失败 %s: %s", self._check_url, probe.reason)
        self.set_online(reachable)
        return self._online

    async def watch(self, interval: float = 30.0) -> None:
        """周期性刷新，直到任务被取消。"""

        while True:
            try:
                await self.refresh()
            except Exception as exc:  # pragma: no cover
                LOGGER.exception("网络状态刷新失败: %s", exc)
            await asyncio.sleep(interval)


__all__ = ["ConnectivityMonitor"]
