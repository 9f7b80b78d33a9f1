"""Wire configuration, selection state, connectivity and adapters together."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial
from typing import Optional

from core.config_models import ConsoleConfig
from core.connectivity import ConnectivityMonitor
from core.health_checker import HttpFactory
from core.selection import SelectionStore
from storage import app_config_store
from storage.factory import AdapterFactory
from storage.manager import StorageManager
from storage.migration import MigrationEngine
from storage.schema import initialize_database

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class Console:
    """Everything the CLI and the settings page need, built once per process."""

    config: ConsoleConfig
    selection: SelectionStore
    connectivity: ConnectivityMonitor
    factory: AdapterFactory
    manager: StorageManager
    migration: MigrationEngine


def build_console(
    config: ConsoleConfig,
    http_factory: Optional[HttpFactory] = None,
    online: bool = True,
) -> Console:
    db_path = config.local.db_path
    initialize_database(db_path)
    selection = SelectionStore(
        load=partial(app_config_store.load_storage_type, db_path=db_path),
        save=partial(app_config_store.save_storage_type, db_path=db_path),
    )
    connectivity = ConnectivityMonitor(
        online=online,
        check_url=config.connectivity.check_url,
        check_timeout=config.connectivity.check_timeout,
        http_factory=http_factory,
    )
    factory = AdapterFactory(config, connectivity=connectivity, selection=selection, http_factory=http_factory)
    manager = StorageManager(selection, connectivity, factory.remote_config, http_factory=http_factory)
    manager.setup_offline_detection()
    migration = MigrationEngine(factory, config.migration)
    LOGGER.info("Console ready, current backend: %s", selection.get().value)
    return Console(
        config=config,
        selection=selection,
        connectivity=connectivity,
        factory=factory,
        manager=manager,
        migration=migration,
    )


__all__ = ["Console", "build_console"]
