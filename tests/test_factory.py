from __future__ import annotations

import asyncio
import sys
from dataclasses import replace
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from conftest import FakePostgrest
from core.config_models import ConsoleConfig
from core.connectivity import ConnectivityMonitor
from core.events import StorageType
from core.selection import SelectionStore
from storage import app_config_store
from storage.bootstrap import build_console
from storage.factory import AdapterFactory
from storage.local_adapter import LocalAdapter
from storage.remote_adapter import RemoteAdapter


def _factory(config: ConsoleConfig, fake: FakePostgrest, online: bool = True) -> AdapterFactory:
    return AdapterFactory(
        config,
        connectivity=ConnectivityMonitor(online=online),
        selection=SelectionStore(),
        http_factory=fake.http_factory,
    )


def test_sync_factory_builds_requested_backend(console_config: ConsoleConfig) -> None:
    factory = _factory(console_config, FakePostgrest())
    assert isinstance(factory.get_adapter("ChainConfig"), LocalAdapter)
    remote = factory.get_adapter("ChainConfig", StorageType.REMOTE)
    assert isinstance(remote, RemoteAdapter)
    assert remote.table == "chain_config"


def test_sync_factory_falls_back_on_bad_endpoint(console_config: ConsoleConfig) -> None:
    config = replace(console_config, remote=replace(console_config.remote, url="not a url"))
    factory = _factory(config, FakePostgrest())
    assert isinstance(factory.get_adapter("ChainConfig", StorageType.REMOTE), LocalAdapter)


def test_async_factory_falls_back_when_offline(console_config: ConsoleConfig) -> None:
    fake = FakePostgrest()
    factory = _factory(console_config, fake, online=False)
    adapter = asyncio.run(factory.get_adapter_async("ChainConfig", StorageType.REMOTE))
    assert isinstance(adapter, LocalAdapter)
    assert fake.requests == []


def test_async_factory_forced_check(console_config: ConsoleConfig) -> None:
    fake = FakePostgrest()
    factory = _factory(console_config, fake)
    adapter = asyncio.run(factory.get_adapter_async("ChainConfig", StorageType.REMOTE, force_check=True))
    assert isinstance(adapter, RemoteAdapter)
    assert fake.requests[0].url.path == "/ping"

    fake.connect_failures = 1
    adapter = asyncio.run(factory.get_adapter_async("ChainConfig", StorageType.REMOTE, force_check=True))
    assert isinstance(adapter, LocalAdapter)


def test_current_adapter_follows_selection(console_config: ConsoleConfig) -> None:
    factory = _factory(console_config, FakePostgrest())
    assert isinstance(asyncio.run(factory.get_current_adapter("TokenConfig")), LocalAdapter)
    factory.selection.set(StorageType.REMOTE)
    assert isinstance(asyncio.run(factory.get_current_adapter("TokenConfig")), RemoteAdapter)


def test_saved_override_applies_to_next_adapter(console_config: ConsoleConfig) -> None:
    factory = _factory(console_config, FakePostgrest())
    app_config_store.save_remote_override("https://other.test", "other-key", db_path=factory.db_path)
    remote = factory.remote("ChainConfig")
    assert remote.endpoint.host == "other.test"
    assert remote.config.api_key == "other-key"

    assert app_config_store.clear_remote_override(db_path=factory.db_path) is True
    assert factory.remote("ChainConfig").endpoint.host == "remote.test"


def test_build_console_wires_offline_downgrade(console_config: ConsoleConfig) -> None:
    fake = FakePostgrest()
    console = build_console(console_config, http_factory=fake.http_factory)
    assert console.manager.get_current() is StorageType.LOCAL
    console.manager.set_current(StorageType.REMOTE)
    console.connectivity.set_online(False)
    assert console.selection.get() is StorageType.LOCAL
    assert app_config_store.load_storage_type(console.factory.db_path) == "indexeddb"
