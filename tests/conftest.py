from __future__ import annotations

import json
import re
import sys
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

import httpx
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.config_models import ConsoleConfig, LocalStoreConfig, RemoteConfig
from storage.schema import initialize_database

REMOTE_URL = "https://remote.test"
REST_PREFIX = "/rest/v1/"
_CREATE_RE = re.compile(r"CREATE TABLE IF NOT EXISTS (\w+)")
_DROP_RE = re.compile(r"DROP TABLE IF EXISTS (\w+)")
_CONTROL_PARAMS = {"select", "order", "limit"}


class FakePostgrest:
    """In-memory PostgREST stand-in served through ``httpx.MockTransport``."""

    def __init__(self, tables: Iterable[str] = (), unique: Optional[Mapping[str, Iterable[str]]] = None) -> None:
        self.tables: Dict[str, List[dict]] = {name: [] for name in tables}
        self.unique = {table: tuple(columns) for table, columns in (unique or {}).items()}
        self.requests: List[httpx.Request] = []
        self.sql: List[str] = []
        self.connect_failures = 0
        self.reject_batches = False
        self._next_id: Dict[str, int] = {}

    def http_factory(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handle))

    def methods(self, table: str) -> List[str]:
        path = REST_PREFIX + table
        return [request.method for request in self.requests if request.url.path == path]

    def seed(self, table: str, *rows: dict) -> None:
        for row in rows:
            self._insert(table, row)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.connect_failures > 0:
            self.connect_failures -= 1
            raise httpx.ConnectError("connection refused", request=request)
        path = request.url.path
        if not path.startswith(REST_PREFIX) or path == REST_PREFIX:
            return httpx.Response(200, json={})
        name = path[len(REST_PREFIX):]
        if name.startswith("rpc/"):
            return self._rpc(request)
        if name not in self.tables:
            return httpx.Response(
                404, json={"code": "42P01", "message": f'relation "public.{name}" does not exist'}
            )
        params = request.url.params
        matched = [row for row in self.tables[name] if self._matches(row, params)]
        if request.method == "GET":
            return httpx.Response(200, json=self._project(matched, params))
        if request.method == "POST":
            return self._post(name, json.loads(request.content))
        if request.method == "PATCH":
            body = json.loads(request.content)
            for row in matched:
                row.update(body)
            return httpx.Response(200, json=matched)
        if request.method == "DELETE":
            self.tables[name] = [row for row in self.tables[name] if row not in matched]
            return httpx.Response(204)
        return httpx.Response(405, json={"message": "method not allowed"})

    def _rpc(self, request: httpx.Request) -> httpx.Response:
        sql = json.loads(request.content)["query"]
        self.sql.append(sql)
        dropped = _DROP_RE.search(sql)
        if dropped:
            self.tables.pop(dropped.group(1), None)
        created = _CREATE_RE.search(sql)
        if created:
            self.tables.setdefault(created.group(1), [])
        return httpx.Response(204)

    def _post(self, name: str, body: object) -> httpx.Response:
        items = body if isinstance(body, list) else [body]
        if isinstance(body, list) and self.reject_batches:
            return httpx.Response(400, json={"code": "PGRST102", "message": "batch insert rejected"})
        conflict = self._conflict(name, items)
        if conflict:
            column, value = conflict
            return httpx.Response(
                409,
                json={
                    "code": "23505",
                    "message": f'duplicate key value violates unique constraint "{name}_{column}_key"',
                    "details": f"Key ({column})=({value}) already exists.",
                },
            )
        created = [self._insert(name, item) for item in items]
        return httpx.Response(201, json=created)

    def _insert(self, name: str, item: dict) -> dict:
        row = dict(item)
        current = self._next_id.get(name, 1)
        if row.get("id") is None:
            row["id"] = current
        self._next_id[name] = max(current, int(row["id"]) + 1)
        self.tables.setdefault(name, []).append(row)
        return row

    def _conflict(self, name: str, items: List[dict]) -> Optional[tuple]:
        for column in self.unique.get(name, ()):
            seen = {row.get(column) for row in self.tables[name]}
            for item in items:
                value = item.get(column)
                if value in seen:
                    return column, value
                seen.add(value)
        return None

    @staticmethod
    def _matches(row: dict, params: httpx.QueryParams) -> bool:
        for key, condition in params.multi_items():
            if key in _CONTROL_PARAMS:
                continue
            value = row.get(key)
            if condition == "is.null":
                if value is not None:
                    return False
                continue
            expected = condition[len("eq."):]
            actual = str(value).lower() if isinstance(value, bool) else str(value)
            if actual != expected:
                return False
        return True

    @staticmethod
    def _project(rows: List[dict], params: httpx.QueryParams) -> List[dict]:
        rows = sorted(rows, key=lambda row: row.get("id") or 0)
        select = params.get("select", "*")
        if select != "*":
            columns = select.split(",")
            rows = [{column: row.get(column) for column in columns} for row in rows]
        limit = params.get("limit")
        if limit is not None:
            rows = rows[: int(limit)]
        return rows


@pytest.fixture()
def temp_db(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    db_path = tmp_path / "console.db"
    monkeypatch.setenv("CONSOLE_DB_PATH", str(db_path))
    initialize_database(str(db_path))
    return db_path


@pytest.fixture()
def remote_config() -> RemoteConfig:
    return RemoteConfig(url=REMOTE_URL, key="test-key", retry_backoff_seconds=0.0)


@pytest.fixture()
def console_config(temp_db: Path, remote_config: RemoteConfig) -> ConsoleConfig:
    return ConsoleConfig(local=LocalStoreConfig(db_path=str(temp_db)), remote=remote_config)
