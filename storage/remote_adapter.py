"""Adapter for a PostgREST-compatible relational store reached over HTTP.

Each logical collection maps to one remote table (see
:mod:`storage.codec`). Requests carry the project key twice, as the
``apikey`` header and as a bearer token, and ask for the written rows back with
``Prefer: return=representation``.

Transport failures surface as :class:`core.errors.NetworkUnavailable`; error
payloads returned by the server are classified into the typed errors of
:mod:`core.errors` by code first and message text second.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional

import httpx

from core.config_models import RemoteConfig
from core.errors import (
    ConstraintViolation,
    NetworkUnavailable,
    NotFound,
    StorageError,
    TableNotFound,
    extract_column,
    format_error,
)
from core.events import StorageType
from core.health_checker import HttpFactory
from storage.base import IDENTITY_FIELD, Record, StorageAdapter
from storage.codec import PRIMARY_KEY, TABLE_NAME_MAP, FieldCodec, remote_table_name
from storage.retry import LinearBackoff, with_retry

LOGGER = logging.getLogger(__name__)

_TABLE_MISSING_CODES = {"42P01", "PGRST205"}
_UNIQUE_CODE = "23505"
_NOT_NULL_CODE = "23502"
_DATETIME_CODE = "22008"
_NO_ROWS_CODE = "PGRST116"


def validate_endpoint(url: str) -> httpx.URL:
    """Parse the configured endpoint; raise ValueError when it cannot be used."""

    if not url or not url.strip():
        raise ValueError("remote endpoint URL is not configured")
    try:
        parsed = httpx.URL(url.strip())
    except httpx.InvalidURL as exc:
        raise ValueError(f"malformed remote endpoint URL {url!r}: {exc}") from exc
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise ValueError(f"malformed remote endpoint URL {url!r}")
    return parsed


class RemoteAdapter(StorageAdapter):
    """One collection backed by a remote table."""

    storage_type = StorageType.REMOTE

    def __init__(
        self,
        collection: str,
        config: RemoteConfig,
        http_factory: Optional[HttpFactory] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        super().__init__(collection)
        self.endpoint = validate_endpoint(config.url)
        self.config = config
        self.table = remote_table_name(collection)
        self.codec = FieldCodec(self.table)
        self._http_factory = http_factory or (lambda: httpx.AsyncClient(timeout=config.request_timeout))
        self._sleep = sleep
        self.last_trail: List[str] = []

    @property
    def table_url(self) -> str:
        return f"{self.config.rest_base}/{self.table}"

    def _headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        key = self.config.api_key
        headers = {
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        url: Optional[str] = None,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        prefer: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        target = url or self.table_url
        try:
            async with self._http_factory() as client:
                response = await client.request(
                    method,
                    target,
                    params=params,
                    json=json,
                    headers=self._headers(prefer),
                    timeout=timeout or self.config.request_timeout,
                )
        except httpx.TimeoutException as exc:
            raise NetworkUnavailable(f"request to {target} timed out: {exc}") from exc
        except httpx.RequestError as exc:
            raise NetworkUnavailable(f"Failed to fetch {target}: {exc}") from exc
        except (TypeError, ValueError) as exc:
            raise StorageError(f"{self.table}: request body is not JSON serializable: {exc}") from exc
        if response.is_error:
            raise self._classify(response)
        return response

    def _classify(self, response: httpx.Response) -> StorageError:
        try:
            payload = response.json()
        except ValueError:
            payload = {"message": response.text}
        if not isinstance(payload, dict):
            payload = {"message": str(payload)}
        code = str(payload.get("code") or "")
        message = format_error(payload) if payload else response.reason_phrase
        text = f"{payload.get('message') or ''} {payload.get('details') or ''}"
        status = response.status_code

        if code in _TABLE_MISSING_CODES or (
            not code and "does not exist" in text and "column" not in text
        ) or "Could not find the table" in text:
            return TableNotFound(self.table, f"{self.table}: {message}")
        if code == _UNIQUE_CODE or "duplicate key value" in text:
            return ConstraintViolation(
                f"{self.table}: unique constraint violated: {message}",
                code=code or _UNIQUE_CODE,
                column=extract_column(text),
                kind=ConstraintViolation.UNIQUE,
            )
        if code == _NOT_NULL_CODE or "violates not-null constraint" in text:
            return ConstraintViolation(
                f"{self.table}: not-null constraint violated: {message}",
                code=code or _NOT_NULL_CODE,
                column=extract_column(text),
                kind=ConstraintViolation.NOT_NULL,
            )
        if code == _DATETIME_CODE:
            return ConstraintViolation(f"{self.table}: invalid date/time value: {message}", code=code)
        if code == _NO_ROWS_CODE:
            return NotFound(f"{self.table}: {message}")
        if status >= 500:
            return NetworkUnavailable(f"{self.table}: HTTP {status}: {message}")
        return StorageError(f"{self.table}: HTTP {status}: {message}")

    def _rows(self, response: httpx.Response) -> List[Dict[str, Any]]:
        if not response.content:
            return []
        data = response.json()
        if isinstance(data, dict):
            return [data]
        return list(data or [])

    # --- contract ---------------------------------------------------------

    async def get_all(self) -> List[Record]:
        response = await self._request("GET", params={"select": "*", "order": f"{PRIMARY_KEY}.asc"})
        rows = self._rows(response)
        LOGGER.debug("Fetched %s rows from %s", len(rows), self.table)
        return [self.codec.from_remote(row) for row in rows]

    async def get(self, identity: int) -> Optional[Record]:
        response = await self._request("GET", params={"select": "*", PRIMARY_KEY: f"eq.{identity}"})
        rows = self._rows(response)
        return self.codec.from_remote(rows[0]) if rows else None

    async def create(self, record: Mapping[str, Any]) -> Record:
        payload = dict(record)
        payload.pop(IDENTITY_FIELD, None)
        row = self.codec.to_remote(payload)
        row.pop(PRIMARY_KEY, None)
        response = await self._request("POST", json=row, prefer="return=representation")
        rows = self._rows(response)
        if not rows:
            raise StorageError(f"{self.table}: insert returned no rows")
        return self.codec.from_remote(rows[0])

    async def bulk_create(self, records: Iterable[Mapping[str, Any]]) -> List[Record]:
        rows: List[Dict[str, Any]] = []
        for record in records:
            payload = dict(record)
            payload.pop(IDENTITY_FIELD, None)
            row = self.codec.to_remote(payload)
            row.pop(PRIMARY_KEY, None)
            rows.append(row)
        if not rows:
            return []
        response = await self._request("POST", json=rows, prefer="return=representation")
        return [self.codec.from_remote(row) for row in self._rows(response)]

    async def update(self, record: Mapping[str, Any]) -> Record:
        """Update by identity with retries on network failure.

        A missing row raises :class:`NotFound` unless the adapter was built with
        ``upsert_on_update``, in which case the row is inserted with the given
        identity. ``last_trail`` keeps the diagnostic lines of the latest call.
        """
        return await self._write(record, insert_missing=self.config.upsert_on_update)

    async def upsert(self, record: Mapping[str, Any]) -> Record:
        if record.get(IDENTITY_FIELD) is None:
            return await self.create(record)
        return await self._write(record, insert_missing=True)

    async def delete(self, identity: int) -> bool:
        await self._request("DELETE", params={PRIMARY_KEY: f"eq.{identity}"})
        return True

    async def query(self, **conditions: Any) -> List[Record]:
        params: Dict[str, str] = {"select": "*", "order": f"{PRIMARY_KEY}.asc"}
        params.update(self.codec.filters_for(conditions))
        response = await self._request("GET", params=params)
        return [self.codec.from_remote(row) for row in self._rows(response)]

    # --- helpers ----------------------------------------------------------

    async def exists(self, identity: int) -> bool:
        response = await self._request("GET", params={PRIMARY_KEY: f"eq.{identity}", "select": PRIMARY_KEY})
        return bool(self._rows(response))

    async def check_connection(self) -> bool:
        """Lightweight reachability probe; raises NetworkUnavailable when unreachable.

        Any answer from the server counts as connected, including a missing
        table or a permission error.
        """
        try:
            await self._request(
                "GET",
                params={"select": PRIMARY_KEY, "limit": "1"},
                timeout=self.config.probe_timeout,
            )
        except NetworkUnavailable:
            raise
        except StorageError as exc:
            LOGGER.debug("Connection probe on %s answered with %s", self.table, exc)
        return True

    async def table_exists(self) -> bool:
        try:
            await self._request("GET", params={"select": PRIMARY_KEY, "limit": "1"})
        except TableNotFound:
            return False
        return True

    @staticmethod
    def list_known_tables() -> List[str]:
        """Remote tables the console knows how to address."""
        return sorted(set(TABLE_NAME_MAP.values()))

    async def execute_sql(self, sql: str) -> Any:
        """Run raw SQL through the configured RPC function."""
        url = f"{self.config.rest_base}/rpc/{self.config.sql_rpc}"
        response = await self._request("POST", url, json={"query": sql})
        if not response.content:
            return None
        return response.json()

    async def _write(self, record: Mapping[str, Any], insert_missing: bool) -> Record:
        identity = record.get(IDENTITY_FIELD)
        if identity is None:
            raise ValueError(f"{IDENTITY_FIELD} is required to update a record")
        trail: List[str] = [f"update {self.table} id={identity}"]
        self.last_trail = trail
        row = self.codec.to_remote(record)
        row[PRIMARY_KEY] = identity

        async def attempt() -> Record:
            await self.check_connection()
            trail.append("connection check passed")
            if await self.exists(identity):
                trail.append("row exists, issuing PATCH")
                response = await self._request(
                    "PATCH",
                    params={PRIMARY_KEY: f"eq.{identity}"},
                    json=row,
                    prefer="return=representation",
                )
            elif insert_missing:
                trail.append("row missing, issuing POST")
                response = await self._request("POST", json=row, prefer="return=representation")
            else:
                raise NotFound(f"{self.table}: no row with {PRIMARY_KEY}={identity}")
            rows = self._rows(response)
            return self.codec.from_remote(rows[0]) if rows else dict(record)

        return await with_retry(
            attempt,
            max_attempts=self.config.retry_attempts,
            backoff=LinearBackoff(self.config.retry_backoff_seconds),
            trail=trail,
            label=f"update {self.table}#{identity}",
            sleep=self._sleep,
        )


__all__ = ["RemoteAdapter", "validate_endpoint"]
