"""Process-wide backend selection with offline downgrade."""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from core.config_models import RemoteConfig
from core.connectivity import ConnectivityMonitor
from core.events import ConnectivityState, StorageType
from core.health import EndpointPool
from core.health_checker import HttpFactory, probe_pool
from core.selection import Listener, SelectionStore

LOGGER = logging.getLogger(__name__)


class StorageManager:
    """Source of truth for which backend is selected.

    Every downgrade to the local backend, whether triggered by a read or by a
    connectivity transition, goes through :meth:`_downgrade_if_offline`.
    """

    def __init__(
        self,
        store: SelectionStore,
        connectivity: ConnectivityMonitor,
        remote_config: Callable[[], RemoteConfig],
        http_factory: Optional[HttpFactory] = None,
    ) -> None:
        self.store = store
        self.connectivity = connectivity
        self._remote_config = remote_config
        self._http_factory = http_factory
        self._offline_unsubscribe: Optional[Callable[[], None]] = None
        self.last_probe_logs: List[str] = []

    def get_current(self, force_check: bool = False) -> StorageType:
        current = self.store.get()
        if force_check or current is StorageType.REMOTE:
            return self._downgrade_if_offline(current)
        return current

    def set_current(self, storage_type: StorageType) -> None:
        LOGGER.info("Storage backend set to %s", storage_type.value)
        self.store.set(storage_type)

    async def try_set_current(self, storage_type: StorageType) -> bool:
        """Switch backends; the remote one is committed only after a probe answers."""
        logs: List[str] = []
        self.last_probe_logs = logs
        if storage_type is StorageType.LOCAL:
            self.set_current(storage_type)
            return True
        if not self.connectivity.is_online:
            logs.append("offline: remote backend not selected")
            LOGGER.warning("Cannot switch to remote storage while offline")
            return False
        remote = self._remote_config()
        if not remote.configured:
            logs.append("remote endpoint is not configured")
            return False
        pool = EndpointPool.from_urls(remote.probe_urls())
        results = await probe_pool(
            pool, timeout=remote.probe_timeout, stop_on_first=True, http_factory=self._http_factory
        )
        for result in results:
            logs.append(f"{result.endpoint.url}: {result.reason}")
        chosen = pool.choose_healthy()
        if chosen is None:
            LOGGER.warning("Remote storage unreachable: %s", pool.snapshot())
            return False
        LOGGER.info("Remote storage reachable via %s", chosen.url)
        self.set_current(storage_type)
        return True

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        return self.store.subscribe(listener)

    def setup_offline_detection(self) -> None:
        """Subscribe to connectivity transitions; calling twice is a no-op."""
        if self._offline_unsubscribe is not None:
            return
        self._offline_unsubscribe = self.connectivity.on_offline(self._handle_offline)

    def stop_offline_detection(self) -> None:
        if self._offline_unsubscribe is not None:
            self._offline_unsubscribe()
            self._offline_unsubscribe = None

    async def watch_connectivity(self, interval: float = 30.0) -> None:
        """Poll connectivity until cancelled; offline transitions downgrade the selection."""
        self.setup_offline_detection()
        await self.connectivity.watch(interval)

    def _handle_offline(self, _state: ConnectivityState) -> None:
        self._downgrade_if_offline(self.store.get())

    def _downgrade_if_offline(self, current: StorageType) -> StorageType:
        if current is StorageType.REMOTE and not self.connectivity.is_online:
            LOGGER.warning("Offline while remote storage selected; switching to local")
            self.store.set(StorageType.LOCAL)
            return StorageType.LOCAL
        return current


__all__ = ["StorageManager"]
