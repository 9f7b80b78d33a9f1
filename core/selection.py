"""后端选择状态：带持久化钩子的发布/订阅容器。"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from core.events import StorageType

LOGGER = logging.getLogger(__name__)

Listener = Callable[[StorageType], None]
Loader = Callable[[], Optional[str]]
Saver = Callable[[str], None]


class _Registration:
    __slots__ = ("listener", "active")

    def __init__(self, listener: Listener) -> None:
        self.listener = listener
        self.active = True


class SelectionStore:
    """保存当前后端，并按注册顺序同步通知订阅者。

    ``load``/``save`` 由调用方注入（通常指向 kv_state 表），读取失败或值无法识别时
    回落到本地后端，写入失败则向调用方抛出。
    """

    def __init__(self, load: Optional[Loader] = None, save: Optional[Saver] = None) -> None:
        self._load = load
        self._save = save
        self._value: Optional[StorageType] = None
        self._registrations: List[_Registration] = []

    def get(self) -> StorageType:
        """读取当前值；有 ``load`` 时每次都重新读取持久化值，任何读取异常都视为未设置。"""

        if self._load is None:
            return self._value or StorageType.LOCAL
        try:
            raw = self._load()
        except Exception:
            LOGGER.exception("读取后端选择失败，使用本地存储")
            raw = None
        self._value = StorageType.parse(raw) or StorageType.LOCAL
        return self._value

    def set(self, value: StorageType) -> None:
        """先持久化再通知；同值写入也会通知。"""

        if self._save is not None:
            self._save(value.value)
        self._value = value
        for registration in list(self._registrations):
            if not registration.active:
                continue
            try:
                registration.listener(value)
            except Exception:
                LOGGER.exception("后端切换监听器执行失败: %r", registration.listener)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """注册监听器并返回取消函数；取消函数可重复调用。"""

        registration = _Registration(listener)
        self._registrations.append(registration)

        def unsubscribe() -> None:
            if not registration.active:
                return
            registration.active = False
            self._registrations.remove(registration)

        return unsubscribe

    def listener_count(self) -> int:
        return len(self._registrations)


__all__ = ["SelectionStore", "Listener"]
