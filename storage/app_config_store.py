"""Persisted console settings kept in the local ``kv_state`` table.

Three kinds of values live here:

* the currently selected backend under ``current_storage_type``;
* an operator override for the remote endpoint (URL and key) under
  ``remote_config``, which takes precedence over ``config.yaml``;
* legacy collections some installations stored as one JSON array per
  collection name, read by the migration engine as a fallback source.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import replace
from typing import Any, Dict, List, Optional

from core.config_models import RemoteConfig
from storage import sqlite_manager

LOGGER = logging.getLogger(__name__)

STORAGE_TYPE_KEY = "current_storage_type"
REMOTE_CONFIG_KEY = "remote_config"


def _now() -> int:
    return int(time.time())


def load_storage_type(db_path: Optional[str] = None) -> Optional[str]:
    """Return the raw persisted selection, or None when never set."""

    row = sqlite_manager.get_kv(STORAGE_TYPE_KEY, db_path=db_path)
    return row["value"] if row else None


def save_storage_type(value: str, db_path: Optional[str] = None) -> None:
    sqlite_manager.set_kv(STORAGE_TYPE_KEY, value, _now(), db_path=db_path)


def load_remote_override(db_path: Optional[str] = None) -> Dict[str, str]:
    row = sqlite_manager.get_kv(REMOTE_CONFIG_KEY, db_path=db_path)
    if not row or not row["value"]:
        return {}
    try:
        data = json.loads(row["value"])
    except ValueError:
        LOGGER.warning("Ignoring unreadable remote endpoint override")
        return {}
    return {key: str(value) for key, value in data.items() if key in ("url", "key") and value}


def save_remote_override(url: str, key: str, db_path: Optional[str] = None) -> None:
    """Persist the operator-supplied remote endpoint."""

    payload = json.dumps({"url": url.strip(), "key": key.strip()})
    sqlite_manager.set_kv(REMOTE_CONFIG_KEY, payload, _now(), db_path=db_path)


def clear_remote_override(db_path: Optional[str] = None) -> bool:
    return sqlite_manager.delete_kv(REMOTE_CONFIG_KEY, db_path=db_path)


def apply_remote_override(config: RemoteConfig, db_path: Optional[str] = None) -> RemoteConfig:
    """Return ``config`` with any persisted URL/key override applied."""

    override = load_remote_override(db_path)
    if not override:
        return config
    return replace(config, url=override.get("url", config.url), key=override.get("key", config.key))


def load_legacy_collection(key: str, db_path: Optional[str] = None) -> Optional[List[Dict[str, Any]]]:
    """Read a legacy JSON array; None when absent, empty list when unusable."""

    row = sqlite_manager.get_kv(key, db_path=db_path)
    if row is None or row["value"] is None:
        return None
    try:
        data = json.loads(row["value"])
    except ValueError:
        LOGGER.warning("Legacy collection %s is not valid JSON", key)
        return []
    if not isinstance(data, list):
        LOGGER.warning("Legacy collection %s is not a JSON array", key)
        return []
    return [item for item in data if isinstance(item, dict)]


def save_legacy_collection(key: str, records: List[Dict[str, Any]], db_path: Optional[str] = None) -> None:
    sqlite_manager.set_kv(key, json.dumps(records, ensure_ascii=False), _now(), db_path=db_path)


__all__ = [
    "STORAGE_TYPE_KEY",
    "REMOTE_CONFIG_KEY",
    "load_storage_type",
    "save_storage_type",
    "load_remote_override",
    "save_remote_override",
    "clear_remote_override",
    "apply_remote_override",
    "load_legacy_collection",
    "save_legacy_collection",
]
