"""Adapter factory choosing between the local and remote backends."""

from __future__ import annotations

import logging
from typing import Optional

from core.config_models import ConsoleConfig, RemoteConfig
from core.connectivity import ConnectivityMonitor
from core.events import StorageType
from core.health_checker import HttpFactory, check_url_connectivity
from core.selection import SelectionStore
from storage.app_config_store import apply_remote_override
from storage.base import StorageAdapter
from storage.local_adapter import LocalAdapter
from storage.remote_adapter import RemoteAdapter

LOGGER = logging.getLogger(__name__)


class AdapterFactory:
    """Build adapters for a logical collection name.

    The remote endpoint is resolved on every call so an override saved from the
    settings page applies to the next adapter without a restart. Building a
    remote adapter never fails outward: any construction error falls back to
    the local backend.
    """

    def __init__(
        self,
        config: ConsoleConfig,
        connectivity: Optional[ConnectivityMonitor] = None,
        selection: Optional[SelectionStore] = None,
        http_factory: Optional[HttpFactory] = None,
    ) -> None:
        self.config = config
        self.connectivity = connectivity or ConnectivityMonitor()
        self.selection = selection
        self.http_factory = http_factory

    @property
    def db_path(self) -> Optional[str]:
        return self.config.local.db_path

    def remote_config(self) -> RemoteConfig:
        return apply_remote_override(self.config.remote, self.db_path)

    def local(self, collection: str) -> LocalAdapter:
        return LocalAdapter(collection, db_path=self.db_path)

    def remote(self, collection: str) -> RemoteAdapter:
        """Build a remote adapter without any fallback."""
        return RemoteAdapter(collection, self.remote_config(), http_factory=self.http_factory)

    def get_adapter(self, collection: str, storage_type: StorageType = StorageType.LOCAL) -> StorageAdapter:
        """Synchronous variant: no connectivity check."""
        if storage_type is StorageType.REMOTE:
            try:
                return self.remote(collection)
            except Exception as exc:
                LOGGER.warning("Remote adapter for %s unavailable (%s); using local store", collection, exc)
        return self.local(collection)

    async def get_adapter_async(
        self,
        collection: str,
        storage_type: StorageType = StorageType.LOCAL,
        force_check: bool = False,
    ) -> StorageAdapter:
        """Build an adapter, downgrading to local when the remote side cannot serve."""
        if storage_type is StorageType.REMOTE:
            if not self.connectivity.is_online:
                LOGGER.warning("Offline; serving %s from the local store", collection)
                return self.local(collection)
            if force_check and not await self._remote_reachable():
                return self.local(collection)
        return self.get_adapter(collection, storage_type)

    async def get_current_adapter(self, collection: str, force_check: bool = False) -> StorageAdapter:
        """Adapter for whichever backend the selection store currently holds."""
        current = self.selection.get() if self.selection is not None else StorageType.LOCAL
        return await self.get_adapter_async(collection, current, force_check=force_check)

    async def _remote_reachable(self) -> bool:
        remote = self.remote_config()
        if not remote.configured:
            LOGGER.warning("Remote endpoint is not configured")
            return False
        probe = await check_url_connectivity(
            remote.ping_url,
            timeout=remote.probe_timeout,
            method="GET",
            http_factory=self.http_factory,
        )
        if not probe.ok:
            LOGGER.warning("Remote probe %s failed (%s); using local store", remote.ping_url, probe.reason)
        return probe.ok


__all__ = ["AdapterFactory"]
