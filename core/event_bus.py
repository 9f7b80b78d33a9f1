"""轻量级事件总线，连接状态与后端切换通过它解耦。"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable, DefaultDict, List, Tuple

LOGGER = logging.getLogger(__name__)

Handler = Callable[[Any], None]


class EventBus:
    """按主题发布/订阅；单个订阅者抛错不影响其它订阅者。"""

    def __init__(self) -> None:
        self._subscribers: DefaultDict[str, List[Handler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        """注册主题回调，返回取消订阅函数。"""

        self._subscribers[topic].append(handler)

        def unsubscribe() -> None:
            handlers = self._subscribers.get(topic, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, topic: str, payload: Any = None) -> None:
        for handler in list(self._subscribers.get(topic, [])):
            try:
                handler(payload)
            except Exception:
                LOGGER.exception("订阅者处理 %s 失败", topic)

    def subscribers(self, topic: str) -> Tuple[Handler, ...]:
        """便于测试/调试时查看订阅者。"""

        return tuple(self._subscribers.get(topic, ()))


__all__ = ["EventBus", "Handler"]
