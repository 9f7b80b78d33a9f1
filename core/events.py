"""存储层共享的类型：后端选择、迁移日志与迁移结果。

迁移引擎、存储管理器、命令行与 UI 通过这些结构体通信，而不是零散的字典。
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class StorageType(str, Enum):
    """后端类型；取值与历史安装中持久化的字符串保持一致。"""

    LOCAL = "indexeddb"
    REMOTE = "supabase"

    @classmethod
    def parse(cls, value: object) -> Optional["StorageType"]:
        """宽松解析：接受枚举值、枚举名或 local/remote 别名，无法识别返回 None。"""

        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        text = value.strip().lower()
        aliases = {"local": cls.LOCAL, "remote": cls.REMOTE}
        if text in aliases:
            return aliases[text]
        for member in cls:
            if member.value == text:
                return member
        return None


class Severity(str, Enum):
    """迁移日志的级别。"""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class ConnectivityState(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


@dataclass(slots=True)
class MigrationLogEntry:
    """一条带时间戳的迁移日志。"""

    message: str
    severity: Severity = Severity.INFO
    timestamp: float = field(default_factory=time.time)


@dataclass(slots=True)
class CollectionReport:
    """单个集合的迁移统计。"""

    collection: str
    total: int = 0
    migrated: int = 0
    skipped: int = 0
    failed: int = 0
    success: bool = True
    error: str = ""


@dataclass(slots=True)
class MigrationResult:
    """迁移、校验、清空等批处理操作的结果。"""

    success: bool
    logs: List[MigrationLogEntry] = field(default_factory=list)
    summary: str = ""
    reports: Dict[str, CollectionReport] = field(default_factory=dict)

    def log_lines(self) -> List[str]:
        return [f"[{entry.severity.value}] {entry.message}" for entry in self.logs]


__all__ = [
    "StorageType",
    "Severity",
    "ConnectivityState",
    "MigrationLogEntry",
    "CollectionReport",
    "MigrationResult",
]
