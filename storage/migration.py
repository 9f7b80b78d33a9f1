"""Copy every known collection from the local store to the remote store.

Per collection the engine reads the first non-empty source (the primary local
store, then the legacy key/value location), fetches the remote names once,
skips records whose ``name`` already exists remotely, and writes the rest with
one batched insert. When the batch fails it falls back to one insert per
record; a unique-constraint collision is retried once under a
``<name>_backup_<epoch ms>`` name. Per-record failures are logged and counted,
never raised. Only a collection's setup step (building the remote adapter,
reading either side) can fail the whole collection, and even then the engine
moves on to the next one.

The operator tools (validation, remote wipe, destructive table reset, status
check, connection test) live here too since they share the logging and
reporting shape.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Set, Tuple

from core.config_models import MigrationConfig
from core.errors import ConstraintViolation, StorageError, format_error
from core.events import CollectionReport, MigrationLogEntry, MigrationResult, Severity
from storage.app_config_store import load_legacy_collection
from storage.base import IDENTITY_FIELD, Record, StorageAdapter
from storage.codec import remote_table_name
from storage.factory import AdapterFactory
from storage.schema import CAPABILITY_TABLES, REMOTE_TABLE_DDL, create_statements, drop_statements

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]

_LOG_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.SUCCESS: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


def _noop_progress(_percent: int, _message: str) -> None:
    return None


def add_log(logs: List[MigrationLogEntry], message: str, severity: Severity = Severity.INFO) -> None:
    logs.append(MigrationLogEntry(message=message, severity=severity))
    LOGGER.log(_LOG_LEVELS[severity], message)


def normalize_legacy_record(record: Mapping[str, Any]) -> Record:
    """Clean a record read from the legacy key/value location.

    Legacy identities (string ``id`` values, stale ``NO``) are dropped since the
    target assigns its own. Timestamps are dropped so the remote default
    applies, ``active`` becomes a real boolean and a JSON-encoded ``config``
    string is decoded.
    """
    item = dict(record)
    item.pop("id", None)
    item.pop(IDENTITY_FIELD, None)
    item.pop("create_time", None)
    item.pop("created_at", None)
    if "active" in item:
        item["active"] = bool(item["active"])
    if isinstance(item.get("config"), str):
        try:
            item["config"] = json.loads(item["config"])
        except ValueError:
            pass
    return item


class SourceReader(Protocol):
    name: str

    async def read(self, collection: str) -> Optional[List[Record]]:
        """Return the records, or None when this source has nothing for the collection."""


class PrimaryStoreReader:
    name = "local store"

    def __init__(self, factory: AdapterFactory) -> None:
        self._factory = factory

    async def read(self, collection: str) -> Optional[List[Record]]:
        adapter = self._factory.local(collection)
        if not await adapter.has_collection():
            return None
        return await adapter.get_all()


class LegacyKeyValueReader:
    name = "legacy key/value store"

    def __init__(
        self,
        legacy_keys: Mapping[str, str],
        placeholder_names: Iterable[str] = (),
        db_path: Optional[str] = None,
    ) -> None:
        self._keys = dict(legacy_keys)
        self._placeholders = set(placeholder_names)
        self._db_path = db_path

    async def read(self, collection: str) -> Optional[List[Record]]:
        key = self._keys.get(collection)
        if key is None:
            return None
        raw = await asyncio.to_thread(load_legacy_collection, key, self._db_path)
        if raw is None:
            return None
        kept = [item for item in raw if item.get("name") not in self._placeholders]
        return [normalize_legacy_record(item) for item in kept]


class MigrationEngine:
    """Local-to-remote migration plus the remote maintenance operations."""

    def __init__(
        self,
        factory: AdapterFactory,
        config: Optional[MigrationConfig] = None,
        readers: Optional[Sequence[SourceReader]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.factory = factory
        self.config = config or factory.config.migration
        self.readers: List[SourceReader] = list(readers) if readers is not None else [
            PrimaryStoreReader(factory),
            LegacyKeyValueReader(self.config.legacy_keys, self.config.placeholder_names, factory.db_path),
        ]
        self._clock = clock

    @property
    def collections(self) -> List[str]:
        return list(self.config.collections)

    # --- migration --------------------------------------------------------

    async def migrate_all(
        self,
        on_progress: Optional[ProgressCallback] = None,
        skip_existing: bool = True,
    ) -> MigrationResult:
        progress = on_progress or _noop_progress
        logs: List[MigrationLogEntry] = []
        reports: Dict[str, CollectionReport] = {}
        collections = self.collections
        add_log(logs, f"Starting migration of {len(collections)} collection(s), skip existing: {skip_existing}")
        progress(0, "Starting migration")

        if not self.factory.connectivity.is_online:
            summary = "Migration failed: offline, remote store unreachable"
            add_log(logs, summary, Severity.ERROR)
            progress(100, summary)
            return MigrationResult(success=False, logs=logs, summary=summary, reports=reports)

        for index, collection in enumerate(collections):
            progress(int(index / len(collections) * 100), f"Migrating {index + 1}/{len(collections)}: {collection}")
            report = CollectionReport(collection=collection)
            reports[collection] = report
            try:
                await self._migrate_collection(collection, report, logs, skip_existing)
            except Exception as exc:
                report.success = False
                report.error = format_error(exc)
                add_log(logs, f"Migration of {collection} failed: {report.error}", Severity.ERROR)
                LOGGER.debug("Collection %s setup failure", collection, exc_info=True)

        result = self._summarize(reports, logs)
        progress(100, result.summary)
        return result

    async def _read_source(self, collection: str, logs: List[MigrationLogEntry]) -> Tuple[List[Record], str]:
        for reader in self.readers:
            records = await reader.read(collection)
            if records:
                add_log(logs, f"Read {len(records)} {collection} record(s) from {reader.name}")
                return records, reader.name
        return [], ""

    async def _migrate_collection(
        self,
        collection: str,
        report: CollectionReport,
        logs: List[MigrationLogEntry],
        skip_existing: bool,
    ) -> None:
        records, _ = await self._read_source(collection, logs)
        report.total = len(records)
        if not records:
            add_log(logs, f"{collection}: nothing to migrate", Severity.SUCCESS)
            return

        target = self.factory.remote(collection)
        existing = await target.get_all()
        existing_names: Set[str] = {row["name"] for row in existing if row.get("name")}
        if existing:
            add_log(logs, f"{collection}: remote already holds {len(existing)} record(s)", Severity.WARNING)

        pending: List[Record] = []
        for record in records:
            name = record.get("name")
            if skip_existing and name and name in existing_names:
                report.skipped += 1
                continue
            pending.append(record)
            if skip_existing and name:
                existing_names.add(name)
        if report.skipped:
            add_log(logs, f"{collection}: skipped {report.skipped} record(s) already present by name")
        if not pending:
            add_log(logs, f"{collection}: all records already present", Severity.SUCCESS)
            return

        await self._write(target, collection, pending, report, logs)
        report.success = report.failed == 0
        severity = Severity.SUCCESS if report.success else Severity.WARNING
        add_log(
            logs,
            f"{collection}: {report.migrated} migrated, {report.skipped} skipped, {report.failed} failed",
            severity,
        )

    async def _write(
        self,
        target: StorageAdapter,
        collection: str,
        pending: List[Record],
        report: CollectionReport,
        logs: List[MigrationLogEntry],
    ) -> None:
        try:
            created = await target.bulk_create(pending)
        except StorageError as exc:
            add_log(
                logs,
                f"{collection}: batch insert failed ({format_error(exc)}), writing records one by one",
                Severity.WARNING,
            )
        else:
            report.migrated += len(created)
            return

        for record in pending:
            name = record.get("name")
            try:
                await target.create(record)
            except ConstraintViolation as exc:
                if not exc.is_unique or not name:
                    report.failed += 1
                    add_log(logs, f"{collection}: record {name!r} failed: {format_error(exc)}", Severity.ERROR)
                    continue
                renamed = dict(record)
                renamed["name"] = f"{name}_backup_{int(self._clock() * 1000)}"
                try:
                    await target.create(renamed)
                except StorageError as retry_exc:
                    report.failed += 1
                    add_log(
                        logs,
                        f"{collection}: record {name!r} failed after rename: {format_error(retry_exc)}",
                        Severity.ERROR,
                    )
                else:
                    report.migrated += 1
                    add_log(
                        logs,
                        f"{collection}: {name!r} collided on a unique key, stored as {renamed['name']!r}",
                        Severity.WARNING,
                    )
            except StorageError as exc:
                report.failed += 1
                add_log(logs, f"{collection}: record {name!r} failed: {format_error(exc)}", Severity.ERROR)
            else:
                report.migrated += 1

    def _summarize(self, reports: Dict[str, CollectionReport], logs: List[MigrationLogEntry]) -> MigrationResult:
        migrated = sum(r.migrated for r in reports.values())
        skipped = sum(r.skipped for r in reports.values())
        failed = sum(r.failed for r in reports.values())
        succeeded = sum(1 for r in reports.values() if r.success)
        total = len(reports)
        counts = f"{migrated} migrated, {skipped} skipped, {failed} failed"
        if succeeded == total:
            summary = f"Migration completed: {counts}"
            severity = Severity.SUCCESS
        elif succeeded:
            summary = f"Migration partially succeeded ({succeeded}/{total} collections): {counts}"
            severity = Severity.WARNING
        else:
            summary = f"Migration failed: {counts}"
            severity = Severity.ERROR
        add_log(logs, summary, severity)
        return MigrationResult(success=succeeded == total, logs=logs, summary=summary, reports=reports)

    # --- validation -------------------------------------------------------

    async def validate_migration(self) -> MigrationResult:
        """Compare record counts; a collection fails when remote holds fewer rows than local."""
        logs: List[MigrationLogEntry] = []
        reports: Dict[str, CollectionReport] = {}
        add_log(logs, "Validating migration")
        valid = 0
        checked = 0
        for collection in self.collections:
            local = self.factory.local(collection)
            if not await local.has_collection():
                add_log(logs, f"{collection}: not present locally, skipped", Severity.WARNING)
                continue
            checked += 1
            report = CollectionReport(collection=collection)
            reports[collection] = report
            try:
                local_count = len(await local.get_all())
                remote_count = len(await self.factory.remote(collection).get_all())
            except Exception as exc:
                report.success = False
                report.error = format_error(exc)
                add_log(logs, f"{collection}: validation failed: {report.error}", Severity.ERROR)
                continue
            report.total = local_count
            report.migrated = remote_count
            if remote_count < local_count:
                report.success = False
                add_log(
                    logs,
                    f"{collection}: remote has {remote_count} record(s), local has {local_count}",
                    Severity.ERROR,
                )
            else:
                valid += 1
                add_log(logs, f"{collection}: {local_count} local / {remote_count} remote", Severity.SUCCESS)

        success = checked > 0 and valid == checked
        if success:
            summary = f"Validation passed ({valid}/{checked})"
        elif checked == 0:
            summary = "Validation failed: no local collection to validate"
        elif valid:
            summary = f"Validation partially succeeded ({valid}/{checked})"
        else:
            summary = f"Validation failed (0/{checked})"
        add_log(logs, summary, Severity.SUCCESS if success else Severity.ERROR)
        return MigrationResult(success=success, logs=logs, summary=summary, reports=reports)

    # --- remote maintenance ----------------------------------------------

    async def clear_remote_table(self, collection: str) -> bool:
        """Delete every remote row of ``collection`` and confirm the table is empty."""
        try:
            adapter = self.factory.remote(collection)
            rows = await adapter.get_all()
            for row in rows:
                identity = row.get(IDENTITY_FIELD)
                if identity is not None:
                    await adapter.delete(identity)
            return not await adapter.get_all()
        except Exception as exc:
            LOGGER.error("Clearing remote %s failed: %s", collection, format_error(exc))
            return False

    async def clear_all_remote_tables(self, on_progress: Optional[ProgressCallback] = None) -> MigrationResult:
        progress = on_progress or _noop_progress
        logs: List[MigrationLogEntry] = []
        collections = self.collections
        add_log(logs, "Clearing remote tables")
        progress(0, "Clearing remote tables")
        cleared = 0
        for index, collection in enumerate(collections):
            progress(int(index / len(collections) * 100), f"Clearing {collection}")
            if await self.clear_remote_table(collection):
                cleared += 1
                add_log(logs, f"{collection}: cleared", Severity.SUCCESS)
            else:
                add_log(logs, f"{collection}: clearing failed", Severity.ERROR)
        success = cleared == len(collections)
        if success:
            summary = "All remote tables cleared"
        elif cleared:
            summary = f"Remote wipe partially succeeded ({cleared}/{len(collections)})"
        else:
            summary = f"Remote wipe failed (0/{len(collections)})"
        add_log(logs, summary, Severity.SUCCESS if success else Severity.WARNING)
        progress(100, summary)
        return MigrationResult(success=success, logs=logs, summary=summary)

    async def _execute_sql(self, sql: str, logs: List[MigrationLogEntry]) -> bool:
        adapter = self.factory.remote(next(iter(self.collections), "ChainConfig"))
        try:
            await adapter.execute_sql(sql)
        except StorageError as exc:
            add_log(logs, f"SQL failed: {format_error(exc)}", Severity.ERROR)
            add_log(logs, f"Run manually in the database console:\n{sql}", Severity.WARNING)
            return False
        add_log(logs, f"SQL executed: {sql.splitlines()[0][:60]}", Severity.SUCCESS)
        return True

    async def drop_and_recreate_table(self, table: str, logs: Optional[List[MigrationLogEntry]] = None) -> bool:
        """Drop ``table`` with its data and recreate it empty. Operator action only."""
        entries = logs if logs is not None else []
        if table not in REMOTE_TABLE_DDL:
            add_log(entries, f"Rebuilding {table} is not supported", Severity.ERROR)
            return False
        try:
            for statement in drop_statements(table):
                add_log(entries, f"{table}: {statement.split('(')[0].strip()}", Severity.WARNING)
                if not await self._execute_sql(statement, entries):
                    return False
        except Exception as exc:
            add_log(entries, f"Rebuilding {table} failed: {format_error(exc)}", Severity.ERROR)
            return False
        add_log(entries, f"{table} rebuilt", Severity.SUCCESS)
        return True

    async def check_remote_status(self) -> MigrationResult:
        """Report which remote tables exist; create the capability tables when missing."""
        logs: List[MigrationLogEntry] = []
        add_log(logs, "Checking remote tables")
        all_exist = True
        for collection in self.collections:
            table = remote_table_name(collection)
            try:
                exists = await self.factory.remote(collection).table_exists()
            except Exception as exc:
                all_exist = False
                add_log(logs, f"{table}: check failed: {format_error(exc)}", Severity.ERROR)
                continue
            if exists:
                add_log(logs, f"{table}: present", Severity.SUCCESS)
                continue
            all_exist = False
            if table in CAPABILITY_TABLES:
                add_log(logs, f"{table}: missing, creating", Severity.WARNING)
                for statement in create_statements(table):
                    if not await self._execute_sql(statement, logs):
                        break
            else:
                add_log(logs, f"{table}: missing", Severity.ERROR)
        summary = (
            "Remote store healthy, all tables present"
            if all_exist
            else "Some remote tables are missing; tried to create the missing ones"
        )
        add_log(logs, summary, Severity.SUCCESS if all_exist else Severity.WARNING)
        return MigrationResult(success=all_exist, logs=logs, summary=summary)

    async def test_remote_connection(self) -> MigrationResult:
        logs: List[MigrationLogEntry] = []
        add_log(logs, "Testing remote connection")
        collection = next(iter(self.collections), "ChainConfig")
        try:
            await self.factory.remote(collection).get_all()
        except Exception as exc:
            add_log(logs, f"Remote connection failed: {format_error(exc)}", Severity.ERROR)
            for hint in (
                "check that the remote project is running",
                "check the endpoint URL and API key",
                "check network and DNS resolution of the endpoint host",
            ):
                add_log(logs, hint, Severity.WARNING)
            return MigrationResult(success=False, logs=logs, summary="Cannot reach the remote store")
        add_log(logs, "Remote connection OK", Severity.SUCCESS)
        return MigrationResult(success=True, logs=logs, summary="Remote connection OK")


__all__ = [
    "ProgressCallback",
    "SourceReader",
    "PrimaryStoreReader",
    "LegacyKeyValueReader",
    "MigrationEngine",
    "add_log",
    "normalize_legacy_record",
]
