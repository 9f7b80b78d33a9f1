"""存储层错误分类：本地、远端、网络与字段翻译错误的统一层级。"""

from __future__ import annotations

import re
from typing import Any, List, Mapping, Optional

_COLUMN_PATTERNS = (
    re.compile(r'column "([^"]+)"'),
    re.compile(r"Key \(([^)]+)\)="),
)


class StorageError(Exception):
    """所有存储相关错误的基类。"""


class NotFound(StorageError):
    """按 identity 查找的记录不存在。"""


class StorageUnavailable(StorageError):
    """本地存储无法打开或使用。"""


class NetworkUnavailable(StorageError):
    """连接、DNS 或超时类错误。"""


class RetryExhausted(NetworkUnavailable):
    """重试全部失败，保留每次尝试的诊断日志。"""

    def __init__(self, message: str, trail: List[str], last_error: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.trail = list(trail)
        self.last_error = last_error

    def __str__(self) -> str:
        base = super().__str__()
        if not self.trail:
            return base
        return base + "\n" + "\n".join(self.trail)


class TableNotFound(StorageError):
    """远端表不存在。"""

    def __init__(self, table: str, message: str = "") -> None:
        super().__init__(message or f"table {table} does not exist")
        self.table = table


class ConstraintViolation(StorageError):
    """非空或唯一约束冲突。"""

    UNIQUE = "unique"
    NOT_NULL = "not_null"
    OTHER = "other"

    def __init__(self, message: str, code: str = "", column: Optional[str] = None, kind: str = OTHER) -> None:
        super().__init__(message)
        self.code = code
        self.column = column
        self.kind = kind

    @property
    def is_unique(self) -> bool:
        return self.kind == self.UNIQUE


class TranslationAmbiguous(StorageError):
    """两个字段会落到同一个远端列上。"""

    def __init__(self, column: str, fields: List[str]) -> None:
        super().__init__(f"fields {', '.join(sorted(fields))} all translate to column {column!r}")
        self.column = column
        self.fields = list(fields)


def extract_column(message: str) -> Optional[str]:
    """从数据库错误文本中解析列名。"""

    for pattern in _COLUMN_PATTERNS:
        match = pattern.search(message or "")
        if match:
            return match.group(1)
    return None


def format_error(error: Any) -> str:
    """把异常或远端错误负载渲染成一行日志文本。"""

    if error is None:
        return "unknown error"
    if isinstance(error, BaseException):
        text = str(error)
        return text or error.__class__.__name__
    if isinstance(error, Mapping):
        parts = [str(error[key]) for key in ("code", "message", "details", "hint") if error.get(key)]
        if parts:
            return " | ".join(parts)
    return str(error)


__all__ = [
    "StorageError",
    "NotFound",
    "StorageUnavailable",
    "NetworkUnavailable",
    "RetryExhausted",
    "TableNotFound",
    "ConstraintViolation",
    "TranslationAmbiguous",
    "extract_column",
    "format_error",
]
