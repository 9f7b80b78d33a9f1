"""SQLite management utilities for the console's local store.

Two kinds of tables live in the same database file:

* ``kv_state`` holds flat key/value pairs (backend selection, remote endpoint
  override, legacy JSON-encoded collections).
* one document table per logical collection, created lazily on first write,
  with an auto-incrementing ``NO`` identity and a JSON ``doc`` column.

Every helper opens its own connection and closes it before returning, on the
error path too. ``sqlite3.Error`` is re-raised as
:class:`core.errors.StorageUnavailable`.
"""
from __future__ import annotations

import json
import os
import re
import sqlite3
from contextlib import closing, contextmanager
from datetime import date, datetime
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterable, Iterator, List, Optional

from core.errors import NotFound, StorageUnavailable

_DB_PATH_ENV = "CONSOLE_DB_PATH"
_DEFAULT_DB_FILENAME = "console.db"
_IDENTITY_FIELD = "NO"
_DATETIME_TAG = "$datetime"
_COLLECTION_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_RESERVED_TABLES = {"kv_state"}

_connection_lock = Lock()


def get_db_path() -> str:
    """Return the configured SQLite database path."""
    env_path = os.environ.get(_DB_PATH_ENV)
    if env_path:
        return env_path
    storage_dir = Path(__file__).resolve().parent
    return str(storage_dir / _DEFAULT_DB_FILENAME)


def _connect(db_path: Optional[str] = None) -> sqlite3.Connection:
    path = Path(db_path or get_db_path())
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), check_same_thread=False, timeout=5.0)
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def _transaction(db_path: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    """Yield a connection inside one transaction; commit or roll back, then close."""
    with _connection_lock:
        try:
            with closing(_connect(db_path)) as conn:
                with conn:
                    yield conn
        except sqlite3.Error as exc:
            raise StorageUnavailable(f"local store error: {exc}") from exc


def _query(
    query: str,
    params: Iterable[Any] | Dict[str, Any] | None = None,
    db_path: Optional[str] = None,
) -> List[Dict[str, Any]]:
    with _transaction(db_path) as conn:
        rows = conn.execute(query, params or []).fetchall()
    return [dict(row) for row in rows]


# --- JSON documents -------------------------------------------------------


def _encode_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return {_DATETIME_TAG: value.isoformat()}
    if isinstance(value, date):
        return {_DATETIME_TAG: datetime(value.year, value.month, value.day).isoformat()}
    if isinstance(value, dict):
        return {key: _encode_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode_value(item) for item in value]
    return value


def _decode_hook(obj: Dict[str, Any]) -> Any:
    if len(obj) == 1 and _DATETIME_TAG in obj:
        return datetime.fromisoformat(obj[_DATETIME_TAG])
    return obj


def encode_document(document: Dict[str, Any]) -> str:
    body = {key: value for key, value in document.items() if key != _IDENTITY_FIELD}
    return json.dumps(_encode_value(body), ensure_ascii=False)


def decode_document(no: int, raw: str) -> Dict[str, Any]:
    document = json.loads(raw, object_hook=_decode_hook) if raw else {}
    document[_IDENTITY_FIELD] = no
    return document


# --- collections ----------------------------------------------------------


def _table(collection: str) -> str:
    if not _COLLECTION_NAME_RE.match(collection) or collection in _RESERVED_TABLES:
        raise ValueError(f"invalid collection name: {collection!r}")
    return f'"{collection}"'


def _create_collection(conn: sqlite3.Connection, collection: str) -> None:
    conn.execute(
        f"CREATE TABLE IF NOT EXISTS {_table(collection)} ("
        f"{_IDENTITY_FIELD} INTEGER PRIMARY KEY AUTOINCREMENT, doc TEXT NOT NULL)"
    )


def _exists(conn: sqlite3.Connection, collection: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (collection,)
    ).fetchone()
    return row is not None


def collection_exists(collection: str, db_path: Optional[str] = None) -> bool:
    """Return whether the collection table was ever created. Never creates it."""
    _table(collection)
    with _transaction(db_path) as conn:
        return _exists(conn, collection)


def list_collections(db_path: Optional[str] = None) -> List[str]:
    rows = _query(
        "SELECT name FROM sqlite_master WHERE type = 'table' "
        "AND name NOT LIKE 'sqlite_%' AND name != 'kv_state' ORDER BY name",
        db_path=db_path,
    )
    return [row["name"] for row in rows]


def fetch_documents(collection: str, db_path: Optional[str] = None) -> List[Dict[str, Any]]:
    """Return every document ordered by identity; missing collection yields []."""
    table = _table(collection)
    with _transaction(db_path) as conn:
        if not _exists(conn, collection):
            return []
        rows = conn.execute(f"SELECT {_IDENTITY_FIELD}, doc FROM {table} ORDER BY {_IDENTITY_FIELD} ASC").fetchall()
    return [decode_document(row[_IDENTITY_FIELD], row["doc"]) for row in rows]


def fetch_document(collection: str, no: int, db_path: Optional[str] = None) -> Optional[Dict[str, Any]]:
    table = _table(collection)
    with _transaction(db_path) as conn:
        if not _exists(conn, collection):
            return None
        row = conn.execute(
            f"SELECT {_IDENTITY_FIELD}, doc FROM {table} WHERE {_IDENTITY_FIELD} = ?", (no,)
        ).fetchone()
    if row is None:
        return None
    return decode_document(row[_IDENTITY_FIELD], row["doc"])


def insert_documents(
    collection: str, documents: Iterable[Dict[str, Any]], db_path: Optional[str] = None
) -> List[Dict[str, Any]]:
    """Insert documents in one transaction; caller-supplied identities are ignored."""
    table = _table(collection)
    inserted: List[Dict[str, Any]] = []
    with _transaction(db_path) as conn:
        _create_collection(conn, collection)
        for document in documents:
            raw = encode_document(document)
            cursor = conn.execute(f"INSERT INTO {table} (doc) VALUES (?)", (raw,))
            inserted.append(decode_document(int(cursor.lastrowid), raw))
    return inserted


def replace_document(collection: str, document: Dict[str, Any], db_path: Optional[str] = None) -> Dict[str, Any]:
    """Overwrite an existing document; raise NotFound when the identity is absent."""
    no = document.get(_IDENTITY_FIELD)
    if no is None:
        raise ValueError(f"{_IDENTITY_FIELD} is required to update a document")
    table = _table(collection)
    raw = encode_document(document)
    with _transaction(db_path) as conn:
        if not _exists(conn, collection):
            raise NotFound(f"{collection}: no record with {_IDENTITY_FIELD}={no}")
        row = conn.execute(f"SELECT 1 FROM {table} WHERE {_IDENTITY_FIELD} = ?", (no,)).fetchone()
        if row is None:
            raise NotFound(f"{collection}: no record with {_IDENTITY_FIELD}={no}")
        conn.execute(f"UPDATE {table} SET doc = ? WHERE {_IDENTITY_FIELD} = ?", (raw, no))
    return decode_document(int(no), raw)


def delete_document(collection: str, no: int, db_path: Optional[str] = None) -> bool:
    table = _table(collection)
    with _transaction(db_path) as conn:
        if not _exists(conn, collection):
            return False
        cursor = conn.execute(f"DELETE FROM {table} WHERE {_IDENTITY_FIELD} = ?", (no,))
        return cursor.rowcount > 0


def clear_documents(collection: str, db_path: Optional[str] = None) -> int:
    table = _table(collection)
    with _transaction(db_path) as conn:
        if not _exists(conn, collection):
            return 0
        return conn.execute(f"DELETE FROM {table}").rowcount


# --- key/value state ------------------------------------------------------

KV_TABLE_DDL = """
    CREATE TABLE IF NOT EXISTS kv_state (
        key TEXT PRIMARY KEY,
        value TEXT,
        updated_at INTEGER
    )
"""


def set_kv(key: str, value: str, updated_at: int, db_path: Optional[str] = None) -> None:
    with _transaction(db_path) as conn:
        conn.execute(KV_TABLE_DDL)
        conn.execute(
            "INSERT INTO kv_state (key, value, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at",
            (key, value, updated_at),
        )


def get_kv(key: str, db_path: Optional[str] = None) -> Optional[Dict[str, Any]]:
    with _transaction(db_path) as conn:
        conn.execute(KV_TABLE_DDL)
        row = conn.execute("SELECT key, value, updated_at FROM kv_state WHERE key = ?", (key,)).fetchone()
    return dict(row) if row is not None else None


def delete_kv(key: str, db_path: Optional[str] = None) -> bool:
    with _transaction(db_path) as conn:
        conn.execute(KV_TABLE_DDL)
        return conn.execute("DELETE FROM kv_state WHERE key = ?", (key,)).rowcount > 0


__all__ = [
    "KV_TABLE_DDL",
    "get_db_path",
    "encode_document",
    "decode_document",
    "collection_exists",
    "list_collections",
    "fetch_documents",
    "fetch_document",
    "insert_documents",
    "replace_document",
    "delete_document",
    "clear_documents",
    "set_kv",
    "get_kv",
    "delete_kv",
]
