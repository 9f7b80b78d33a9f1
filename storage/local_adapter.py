"""Adapter over the embedded SQLite document store."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Iterable, List, Mapping, Optional

from core.events import StorageType
from storage import sqlite_manager
from storage.base import IDENTITY_FIELD, Record, StorageAdapter

LOGGER = logging.getLogger(__name__)

CREATION_FIELD = "create_time"


def _now_ms() -> int:
    return int(time.time() * 1000)


def _prepare_new(record: Mapping[str, Any]) -> Record:
    document = dict(record)
    document.pop(IDENTITY_FIELD, None)
    if not document.get(CREATION_FIELD):
        document[CREATION_FIELD] = _now_ms()
    return document


class LocalAdapter(StorageAdapter):
    """One collection in the local store.

    The collection table is created on first write. Blocking SQLite calls run
    in a worker thread so callers can await them from the event loop.
    """

    storage_type = StorageType.LOCAL

    def __init__(self, collection: str, db_path: Optional[str] = None) -> None:
        super().__init__(collection)
        self.db_path = db_path

    async def has_collection(self) -> bool:
        return await asyncio.to_thread(sqlite_manager.collection_exists, self.collection, self.db_path)

    async def get_all(self) -> List[Record]:
        return await asyncio.to_thread(sqlite_manager.fetch_documents, self.collection, self.db_path)

    async def get(self, identity: int) -> Optional[Record]:
        return await asyncio.to_thread(sqlite_manager.fetch_document, self.collection, int(identity), self.db_path)

    async def create(self, record: Mapping[str, Any]) -> Record:
        created = await asyncio.to_thread(
            sqlite_manager.insert_documents, self.collection, [_prepare_new(record)], self.db_path
        )
        LOGGER.debug("Created %s NO=%s", self.collection, created[0][IDENTITY_FIELD])
        return created[0]

    async def bulk_create(self, records: Iterable[Mapping[str, Any]]) -> List[Record]:
        documents = [_prepare_new(record) for record in records]
        if not documents:
            return []
        return await asyncio.to_thread(sqlite_manager.insert_documents, self.collection, documents, self.db_path)

    async def update(self, record: Mapping[str, Any]) -> Record:
        if record.get(IDENTITY_FIELD) is None:
            raise ValueError(f"{IDENTITY_FIELD} is required to update a record")
        return await asyncio.to_thread(sqlite_manager.replace_document, self.collection, dict(record), self.db_path)

    async def delete(self, identity: int) -> bool:
        return await asyncio.to_thread(sqlite_manager.delete_document, self.collection, int(identity), self.db_path)

    async def clear(self) -> int:
        return await asyncio.to_thread(sqlite_manager.clear_documents, self.collection, self.db_path)


__all__ = ["LocalAdapter"]
