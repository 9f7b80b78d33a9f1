from __future__ import annotations

import asyncio
import sys
from dataclasses import replace
from functools import partial
from pathlib import Path
from typing import List, Optional

import httpx
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from conftest import FakePostgrest
from core.config_models import RemoteConfig
from core.connectivity import ConnectivityMonitor
from core.events import ConnectivityState, StorageType
from core.selection import SelectionStore
from storage import app_config_store
from storage.manager import StorageManager


def test_storage_type_parsing() -> None:
    assert StorageType.parse("indexeddb") is StorageType.LOCAL
    assert StorageType.parse("supabase") is StorageType.REMOTE
    assert StorageType.parse("Remote") is StorageType.REMOTE
    assert StorageType.parse("mongodb") is None
    assert StorageType.parse(None) is None


def test_selection_defaults_to_local_and_persists(temp_db: Path) -> None:
    db = str(temp_db)
    store = SelectionStore(
        load=partial(app_config_store.load_storage_type, db_path=db),
        save=partial(app_config_store.save_storage_type, db_path=db),
    )
    assert store.get() is StorageType.LOCAL
    store.set(StorageType.REMOTE)
    assert app_config_store.load_storage_type(db) == "supabase"

    reloaded = SelectionStore(load=partial(app_config_store.load_storage_type, db_path=db))
    assert reloaded.get() is StorageType.REMOTE


def test_selection_sees_changes_made_by_another_process(temp_db: Path) -> None:
    db = str(temp_db)

    def open_store() -> SelectionStore:
        return SelectionStore(
            load=partial(app_config_store.load_storage_type, db_path=db),
            save=partial(app_config_store.save_storage_type, db_path=db),
        )

    cli = open_store()
    page = open_store()
    assert page.get() is StorageType.LOCAL

    cli.set(StorageType.REMOTE)
    assert page.get() is StorageType.REMOTE

    page.set(StorageType.LOCAL)
    assert cli.get() is StorageType.LOCAL


def test_selection_tolerates_unreadable_state() -> None:
    def broken() -> Optional[str]:
        raise RuntimeError("disk gone")

    assert SelectionStore(load=broken).get() is StorageType.LOCAL
    assert SelectionStore(load=lambda: "garbage").get() is StorageType.LOCAL


def test_listeners_notified_in_order_and_isolated() -> None:
    store = SelectionStore()
    seen: List[str] = []

    def failing(_value: StorageType) -> None:
        seen.append("failing")
        raise RuntimeError("listener bug")

    store.subscribe(lambda value: seen.append(f"first:{value.value}"))
    store.subscribe(failing)
    store.subscribe(lambda value: seen.append(f"third:{value.value}"))

    store.set(StorageType.REMOTE)
    store.set(StorageType.REMOTE)
    assert seen == ["first:supabase", "failing", "third:supabase"] * 2


def test_unsubscribe_is_idempotent() -> None:
    store = SelectionStore()
    seen: List[StorageType] = []
    unsubscribe = store.subscribe(seen.append)
    unsubscribe()
    unsubscribe()
    store.set(StorageType.REMOTE)
    assert seen == []
    assert store.listener_count() == 0


def test_unsubscribe_during_notification() -> None:
    store = SelectionStore()
    seen: List[str] = []
    handles = {}

    def first(_value: StorageType) -> None:
        seen.append("first")
        handles["second"]()

    store.subscribe(first)
    handles["second"] = store.subscribe(lambda _value: seen.append("second"))
    store.set(StorageType.REMOTE)
    assert seen == ["first"]


def test_connectivity_publishes_only_on_transition() -> None:
    monitor = ConnectivityMonitor()
    events: List[ConnectivityState] = []
    monitor.on_offline(events.append)
    monitor.on_online(events.append)

    monitor.set_online(True)
    monitor.set_online(False)
    monitor.set_online(False)
    monitor.set_online(True)
    assert events == [ConnectivityState.OFFLINE, ConnectivityState.ONLINE]


def test_connectivity_refresh_counts_any_http_answer() -> None:
    statuses = iter([503])

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(next(statuses))

    monitor = ConnectivityMonitor(
        online=False,
        check_url="https://check.test/",
        http_factory=lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    assert asyncio.run(monitor.refresh()) is True

    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    monitor._http_factory = lambda: httpx.AsyncClient(transport=httpx.MockTransport(refuse))
    assert asyncio.run(monitor.refresh()) is False


def _manager(remote: RemoteConfig, fake: FakePostgrest, online: bool = True) -> StorageManager:
    return StorageManager(
        SelectionStore(),
        ConnectivityMonitor(online=online),
        lambda: remote,
        http_factory=fake.http_factory,
    )


def test_offline_transition_downgrades_remote_selection(remote_config: RemoteConfig) -> None:
    manager = _manager(remote_config, FakePostgrest())
    manager.setup_offline_detection()
    manager.setup_offline_detection()
    seen: List[StorageType] = []
    manager.add_listener(seen.append)

    manager.set_current(StorageType.REMOTE)
    manager.connectivity.set_online(False)
    assert manager.get_current() is StorageType.LOCAL
    assert seen == [StorageType.REMOTE, StorageType.LOCAL]
    assert len(manager.connectivity._bus.subscribers(ConnectivityState.OFFLINE.value)) == 1


def test_get_current_downgrades_when_offline(remote_config: RemoteConfig) -> None:
    manager = _manager(remote_config, FakePostgrest())
    manager.set_current(StorageType.REMOTE)
    manager.connectivity._online = False
    assert manager.get_current() is StorageType.LOCAL
    assert manager.store.get() is StorageType.LOCAL


def test_stop_offline_detection(remote_config: RemoteConfig) -> None:
    manager = _manager(remote_config, FakePostgrest())
    manager.setup_offline_detection()
    manager.stop_offline_detection()
    manager.set_current(StorageType.REMOTE)
    manager.connectivity.set_online(False)
    assert manager.store.get() is StorageType.REMOTE


def test_try_set_current_remote_after_probe(remote_config: RemoteConfig) -> None:
    fake = FakePostgrest()
    manager = _manager(remote_config, fake)
    assert asyncio.run(manager.try_set_current(StorageType.REMOTE)) is True
    assert manager.get_current() is StorageType.REMOTE
    assert fake.requests[0].url.path == "/rest/v1/"


def test_try_set_current_falls_through_probe_urls(remote_config: RemoteConfig) -> None:
    fake = FakePostgrest()
    fake.connect_failures = 1
    manager = _manager(remote_config, fake)
    assert asyncio.run(manager.try_set_current(StorageType.REMOTE)) is True
    assert [r.url.path for r in fake.requests] == ["/rest/v1/", "/ping"]


def test_try_set_current_rejects_unreachable_remote(remote_config: RemoteConfig) -> None:
    fake = FakePostgrest()
    fake.connect_failures = 10
    manager = _manager(remote_config, fake)
    assert asyncio.run(manager.try_set_current(StorageType.REMOTE)) is False
    assert manager.get_current() is StorageType.LOCAL
    assert len(manager.last_probe_logs) == 2


def test_try_set_current_rejects_offline_or_unconfigured(remote_config: RemoteConfig) -> None:
    offline = _manager(remote_config, FakePostgrest(), online=False)
    assert asyncio.run(offline.try_set_current(StorageType.REMOTE)) is False

    unconfigured = _manager(replace(remote_config, url=""), FakePostgrest())
    assert asyncio.run(unconfigured.try_set_current(StorageType.REMOTE)) is False
    assert asyncio.run(unconfigured.try_set_current(StorageType.LOCAL)) is True


def test_watch_connectivity_downgrades_on_lost_network(remote_config: RemoteConfig) -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    monitor = ConnectivityMonitor(
        check_url="https://check.test/",
        http_factory=lambda: httpx.AsyncClient(transport=httpx.MockTransport(refuse)),
    )
    manager = StorageManager(SelectionStore(), monitor, lambda: remote_config)
    manager.set_current(StorageType.REMOTE)

    with pytest.raises(asyncio.TimeoutError):
        asyncio.run(asyncio.wait_for(manager.watch_connectivity(0.01), timeout=0.2))
    assert manager.store.get() is StorageType.LOCAL
