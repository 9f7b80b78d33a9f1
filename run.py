from __future__ import annotations

"""Operator entry point for the console's storage layer."""

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from connectors import network_diagnostics
from core.config_loader import load_config
from core.events import MigrationResult, StorageType
from storage.bootstrap import Console, build_console

LOGGER = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Storage console controller")
    parser.add_argument("--config", type=Path, default=None, help="path to config.yaml")
    parser.add_argument("--status", action="store_true", help="show the selected backend")
    parser.add_argument("--use", choices=["local", "remote"], help="switch storage backend")
    parser.add_argument("--migrate", action="store_true", help="copy local data to the remote store")
    parser.add_argument(
        "--no-skip-existing",
        action="store_true",
        help="migrate records even when the remote store already holds the same name",
    )
    parser.add_argument("--validate", action="store_true", help="compare local and remote record counts")
    parser.add_argument("--wipe-remote", action="store_true", help="delete every row of every remote table")
    parser.add_argument("--reset-table", metavar="TABLE", help="drop and recreate one remote table")
    parser.add_argument("--check-remote", action="store_true", help="check remote tables and connection")
    parser.add_argument("--diagnose", nargs="?", const="", metavar="HOST", help="run network diagnostics")
    parser.add_argument("--watch", action="store_true", help="keep polling connectivity")
    return parser.parse_args(argv)


def _progress(percent: int, message: str) -> None:
    LOGGER.info("[%3d%%] %s", percent, message)


def _report(result: MigrationResult) -> None:
    for line in result.log_lines():
        print(line)
    print(result.summary)


async def _switch(console: Console, target: str) -> bool:
    storage_type = StorageType.parse(target) or StorageType.LOCAL
    switched = await console.manager.try_set_current(storage_type)
    for line in console.manager.last_probe_logs:
        print(line)
    print(f"backend: {console.manager.get_current().value} ({'switched' if switched else 'unchanged'})")
    return switched


async def _diagnose(console: Console, host: str) -> None:
    target = host or console.factory.remote_config().url
    if target:
        outcome = await network_diagnostics.test_connection(target)
        for line in outcome.logs:
            print(line)
        print(outcome.message)
    diagnosis = await network_diagnostics.diagnose_network_issues(online=console.connectivity.is_online)
    print(f"public ip: {diagnosis.public_ip or 'unknown'}")
    for issue in diagnosis.issues:
        print(f"issue: {issue}")
    for recommendation in diagnosis.recommendations:
        print(f"recommendation: {recommendation}")


async def _watch(console: Console) -> None:
    def _announce(storage_type: StorageType) -> None:
        LOGGER.info("Backend is now %s", storage_type.value)

    console.manager.add_listener(_announce)
    await console.manager.watch_connectivity(console.config.connectivity.poll_seconds)


async def run_commands(console: Console, args: argparse.Namespace) -> int:
    exit_code = 0
    if args.use:
        if not await _switch(console, args.use):
            exit_code = 1
    if args.migrate:
        result = await console.migration.migrate_all(_progress, skip_existing=not args.no_skip_existing)
        _report(result)
        exit_code = exit_code or (0 if result.success else 1)
    if args.validate:
        result = await console.migration.validate_migration()
        _report(result)
        exit_code = exit_code or (0 if result.success else 1)
    if args.wipe_remote:
        result = await console.migration.clear_all_remote_tables(_progress)
        _report(result)
        exit_code = exit_code or (0 if result.success else 1)
    if args.reset_table:
        logs: list = []
        ok = await console.migration.drop_and_recreate_table(args.reset_table, logs)
        _report(MigrationResult(success=ok, logs=logs, summary="table rebuilt" if ok else "table rebuild failed"))
        exit_code = exit_code or (0 if ok else 1)
    if args.check_remote:
        _report(await console.migration.test_remote_connection())
        result = await console.migration.check_remote_status()
        _report(result)
        exit_code = exit_code or (0 if result.success else 1)
    if args.diagnose is not None:
        await _diagnose(console, args.diagnose)
    if args.status:
        print(f"backend: {console.manager.get_current(force_check=True).value}")
        print(f"remote endpoint: {console.factory.remote_config().url or '(not configured)'}")
        print(f"online: {console.connectivity.is_online}")
    if args.watch:
        await _watch(console)
    return exit_code


def run_async(entry: Callable[[], Awaitable[int]]) -> int:
    try:
        return asyncio.run(entry())
    except KeyboardInterrupt:
        LOGGER.info("Interrupted by user.")
        return 130


def main(argv: Optional[List[str]] = None) -> None:
    configure_logging()
    args = parse_args(argv)
    console = build_console(load_config(args.config))
    actions = (args.status, args.use, args.migrate, args.validate, args.wipe_remote,
               args.reset_table, args.check_remote, args.diagnose is not None, args.watch)
    if not any(actions):
        raise SystemExit("Specify an action, e.g. --status or --migrate")
    raise SystemExit(run_async(lambda: run_commands(console, args)))


if __name__ == "__main__":
    main()
