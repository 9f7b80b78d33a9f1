"""控制台配置模型：本地存储、远端服务、迁移与网络探测。"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

DEFAULT_COLLECTIONS: List[str] = [
    "ChainConfig",
    "TokenConfig",
    "TradingPairConfig",
    "ExchangeConfig",
    "ApiConfig",
    "AlertConfig",
    "data_collection_configs",
    "data_processing_configs",
]

DEFAULT_LEGACY_KEYS: Dict[str, str] = {
    "data_collection_configs": "data_collection_configs",
    "data_processing_configs": "data_processing_configs",
}

DEFAULT_PLACEHOLDER_NAMES: List[str] = ["测试配置", "测试数据"]


@dataclass(slots=True)
class LocalStoreConfig:
    """本地 SQLite 文件位置；None 表示使用环境变量或默认路径。"""

    db_path: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, object]]) -> "LocalStoreConfig":
        if not data:
            return cls()
        return cls(db_path=data.get("db_path"))  # type: ignore[arg-type]


@dataclass(slots=True)
class RemoteConfig:
    """远端关系型存储（PostgREST 兼容）的连接参数。"""

    url: str = ""
    key: Optional[str] = None
    key_env: str = "REMOTE_API_KEY"
    rest_path: str = "/rest/v1"
    probe_paths: List[str] = field(default_factory=lambda: ["/rest/v1/", "/ping"])
    ping_path: str = "/ping"
    probe_timeout: float = 5.0
    request_timeout: float = 10.0
    retry_attempts: int = 3
    retry_backoff_seconds: float = 1.0
    upsert_on_update: bool = False
    sql_rpc: str = "exec_sql"

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, object]]) -> "RemoteConfig":
        if not data:
            return cls()
        values = dict(data)
        if "probe_paths" in values and values["probe_paths"] is not None:
            values["probe_paths"] = [str(p) for p in values["probe_paths"]]  # type: ignore[union-attr]
        return cls(**values)  # type: ignore[arg-type]

    @property
    def api_key(self) -> str:
        """显式 key 优先，否则读取环境变量。"""

        if self.key:
            return self.key
        return os.environ.get(self.key_env, "")

    @property
    def configured(self) -> bool:
        return bool(self.url.strip())

    @property
    def rest_base(self) -> str:
        return f"{self.url.rstrip('/')}{self.rest_path}"

    @property
    def ping_url(self) -> str:
        return f"{self.url.rstrip('/')}{self.ping_path}"

    def probe_urls(self) -> List[str]:
        base = self.url.rstrip("/")
        return [f"{base}{path}" for path in self.probe_paths]


@dataclass(slots=True)
class MigrationConfig:
    """迁移范围：集合列表、旧版 KV 数据位置与需剔除的占位记录名。"""

    collections: List[str] = field(default_factory=lambda: list(DEFAULT_COLLECTIONS))
    legacy_keys: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_LEGACY_KEYS))
    placeholder_names: List[str] = field(default_factory=lambda: list(DEFAULT_PLACEHOLDER_NAMES))

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, object]]) -> "MigrationConfig":
        if not data:
            return cls()
        defaults = cls()
        return cls(
            collections=list(data.get("collections") or defaults.collections),  # type: ignore[arg-type]
            legacy_keys=dict(data.get("legacy_keys") or defaults.legacy_keys),  # type: ignore[arg-type]
            placeholder_names=list(
                data.get("placeholder_names", defaults.placeholder_names) or []  # type: ignore[arg-type]
            ),
        )


@dataclass(slots=True)
class ConnectivityConfig:
    check_url: Optional[str] = None
    check_timeout: float = 3.0
    poll_seconds: int = 30

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, object]]) -> "ConnectivityConfig":
        if not data:
            return cls()
        return cls(**data)  # type: ignore[arg-type]


@dataclass(slots=True)
class ConsoleConfig:
    """完整配置快照。"""

    local: LocalStoreConfig = field(default_factory=LocalStoreConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    migration: MigrationConfig = field(default_factory=MigrationConfig)
    connectivity: ConnectivityConfig = field(default_factory=ConnectivityConfig)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, object]]) -> "ConsoleConfig":
        data = data or {}
        return cls(
            local=LocalStoreConfig.from_dict(data.get("local")),  # type: ignore[arg-type]
            remote=RemoteConfig.from_dict(data.get("remote")),  # type: ignore[arg-type]
            migration=MigrationConfig.from_dict(data.get("migration")),  # type: ignore[arg-type]
            connectivity=ConnectivityConfig.from_dict(data.get("connectivity")),  # type: ignore[arg-type]
        )


__all__ = [
    "DEFAULT_COLLECTIONS",
    "LocalStoreConfig",
    "RemoteConfig",
    "MigrationConfig",
    "ConnectivityConfig",
    "ConsoleConfig",
]
