"""Uniform CRUD contract shared by the local and remote adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Mapping, Optional

from core.events import StorageType

Record = Dict[str, Any]

IDENTITY_FIELD = "NO"


class StorageAdapter(ABC):
    """One logical collection on one backend.

    Records are plain dicts whose identity lives under ``NO``. ``get_all``
    returns records ordered by identity; an empty or never-created collection
    yields ``[]``.
    """

    storage_type: StorageType

    def __init__(self, collection: str) -> None:
        self.collection = collection

    @abstractmethod
    async def get_all(self) -> List[Record]:
        ...

    @abstractmethod
    async def get(self, identity: int) -> Optional[Record]:
        ...

    @abstractmethod
    async def create(self, record: Mapping[str, Any]) -> Record:
        ...

    @abstractmethod
    async def update(self, record: Mapping[str, Any]) -> Record:
        ...

    @abstractmethod
    async def delete(self, identity: int) -> bool:
        ...

    async def get_by_no(self, no: int) -> Optional[Record]:
        return await self.get(no)

    async def bulk_create(self, records: Iterable[Mapping[str, Any]]) -> List[Record]:
        """Sequential fallback; not atomic."""
        created: List[Record] = []
        for record in records:
            created.append(await self.create(record))
        return created

    async def bulk_update(self, updates: Iterable[Mapping[str, Any]]) -> List[Record]:
        """Apply ``{"id": n, "data": record}`` entries one by one."""
        results: List[Record] = []
        for entry in updates:
            data = dict(entry["data"])
            data[IDENTITY_FIELD] = entry["id"]
            results.append(await self.update(data))
        return results

    async def upsert(self, record: Mapping[str, Any]) -> Record:
        """Update when the identity exists, create otherwise.

        Costs at least one extra round trip for the existence probe.
        """
        identity = record.get(IDENTITY_FIELD)
        if identity is not None and await self.get(identity) is not None:
            return await self.update(record)
        return await self.create(record)

    async def query(self, **conditions: Any) -> List[Record]:
        rows = await self.get_all()
        return [row for row in rows if all(row.get(key) == value for key, value in conditions.items())]

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.collection!r})"


__all__ = ["StorageAdapter", "Record", "IDENTITY_FIELD"]
