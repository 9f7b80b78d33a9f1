"""Schema helpers: local database initialisation and remote table DDL."""
from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .sqlite_manager import KV_TABLE_DDL, _connect, get_db_path

LOGGER = logging.getLogger(__name__)


LOCAL_TABLE_STATEMENTS = (KV_TABLE_DDL,)

# Remote tables the console can rebuild on operator request, keyed by table name.
REMOTE_TABLE_DDL: Dict[str, str] = {
    "chain_config": """
        CREATE TABLE IF NOT EXISTS chain_config (
            id SERIAL PRIMARY KEY,
            name TEXT NOT NULL,
            chain_id INTEGER NOT NULL,
            rpc_urls JSONB NOT NULL,
            active BOOLEAN DEFAULT true,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );
    """,
    "token_config": """
        CREATE TABLE IF NOT EXISTS token_config (
            id SERIAL PRIMARY KEY,
            name TEXT NOT NULL,
            symbol TEXT,
            decimals INTEGER,
            address_list JSONB,
            active BOOLEAN DEFAULT true,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );
    """,
    "trading_pair_config": """
        CREATE TABLE IF NOT EXISTS trading_pair_config (
            id SERIAL PRIMARY KEY,
            name TEXT NOT NULL,
            pair_list JSONB,
            active BOOLEAN DEFAULT true,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );
    """,
    "exchange_config": """
        CREATE TABLE IF NOT EXISTS exchange_config (
            id SERIAL PRIMARY KEY,
            name TEXT NOT NULL,
            base_url TEXT,
            logo TEXT,
            supported_chains JSONB,
            active BOOLEAN DEFAULT true,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );
    """,
    "api_config": """
        CREATE TABLE IF NOT EXISTS api_config (
            id SERIAL PRIMARY KEY,
            name TEXT NOT NULL,
            method TEXT DEFAULT 'GET',
            url TEXT NOT NULL,
            headers JSONB,
            body TEXT,
            field_mappings JSONB,
            custom_variables JSONB,
            active BOOLEAN DEFAULT true,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );
    """,
    "alert_config": """
        CREATE TABLE IF NOT EXISTS alert_config (
            id SERIAL PRIMARY KEY,
            name TEXT NOT NULL,
            type TEXT NOT NULL,
            conditions JSONB,
            recipients JSONB,
            api_keys JSONB,
            alert_config JSONB,
            active BOOLEAN DEFAULT true,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );
    """,
    "data_collection_configs": """
        CREATE TABLE IF NOT EXISTS data_collection_configs (
            id SERIAL PRIMARY KEY,
            name TEXT NOT NULL,
            type TEXT NOT NULL,
            config JSONB,
            active BOOLEAN DEFAULT true,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );
    """,
    "data_processing_configs": """
        CREATE TABLE IF NOT EXISTS data_processing_configs (
            id SERIAL PRIMARY KEY,
            name TEXT NOT NULL,
            source_node_id INTEGER NOT NULL,
            input_params JSONB NOT NULL,
            formulas JSONB NOT NULL,
            output_params JSONB NOT NULL,
            active BOOLEAN DEFAULT true,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
        );
    """,
}

# Tables created on demand by the status check when missing.
CAPABILITY_TABLES = ("data_collection_configs", "data_processing_configs")


def drop_statements(table: str) -> List[str]:
    """Statements that remove ``table`` and rebuild it empty with a fresh id sequence."""
    if table not in REMOTE_TABLE_DDL:
        raise KeyError(table)
    return [f"DROP TABLE IF EXISTS {table} CASCADE;", REMOTE_TABLE_DDL[table].strip()]


def create_statements(table: str) -> List[str]:
    if table not in REMOTE_TABLE_DDL:
        raise KeyError(table)
    return [REMOTE_TABLE_DDL[table].strip(), f"ALTER SEQUENCE {table}_id_seq RESTART WITH 1;"]


def initialize_database(db_path: Optional[str] = None) -> None:
    """Initialize the local key/value table in the SQLite database."""
    path = Path(db_path or get_db_path())
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = _connect(str(path))
    try:
        with conn:
            for statement in LOCAL_TABLE_STATEMENTS:
                conn.execute(statement)
    finally:
        conn.close()
    LOGGER.info("Database initialized at %s", path)


def _parse_args(args: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Console schema helper")
    parser.add_argument("--init", action="store_true", help="initialize the local database")
    parser.add_argument("--db-path", help="override database path", default=None)
    parser.add_argument("--print-ddl", metavar="TABLE", help="print the remote DDL for TABLE")
    return parser.parse_args(args)


def main(argv: Iterable[str] | None = None) -> None:
    args = _parse_args(argv)
    if args.print_ddl:
        print(REMOTE_TABLE_DDL[args.print_ddl].strip())
    elif args.init:
        initialize_database(args.db_path)
    else:
        LOGGER.info("No action specified. Use --init to create tables.")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    main()
