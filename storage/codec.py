"""Bidirectional translation between console records and remote table rows.

Console records use lowerCamelCase field names and carry their identity in
``NO``; remote rows use snake_case columns and an ``id`` primary key. The
:class:`FieldCodec` translates names through a static table first and falls
back to a pure case transform for anything the table does not list. The
transform pair :func:`camel_to_snake` / :func:`snake_to_camel` is an exact
inverse for names matching ``^[a-z][A-Za-z0-9]*$``; callers can check a name
with :func:`is_round_trip_safe`.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from core.errors import TranslationAmbiguous

IDENTITY_FIELD = "NO"
PRIMARY_KEY = "id"
CREATION_FIELD = "create_time"

# 2000-01-01T00:00:00Z in epoch milliseconds; smaller numbers are not timestamps.
EPOCH_MS_FLOOR = 946684800000
TIMESTAMP_SUFFIXES = ("_time", "_date", "_at")

TABLE_NAME_MAP: Dict[str, str] = {
    "ChainConfig": "chain_config",
    "TokenConfig": "token_config",
    "TradingPairConfig": "trading_pair_config",
    "ExchangeConfig": "exchange_config",
    "ApiConfig": "api_config",
    "AlertConfig": "alert_config",
    "data_collection_configs": "data_collection_configs",
    "data_processing_configs": "data_processing_configs",
    "AlertCapability": "alert_capability",
}

FIELD_NAME_MAP: Dict[str, str] = {
    IDENTITY_FIELD: PRIMARY_KEY,
    CREATION_FIELD: "created_at",
    "apiType": "api_type",
    "baseUrl": "base_url",
    "apiKey": "api_key",
    "apiSecret": "api_secret",
    "exchangeId": "exchange_id",
    "chainId": "chain_id",
    "contractAddress": "contract_address",
    "methodName": "method_name",
    "methodParams": "method_params",
    "isProxyContract": "is_proxy_contract",
    "supportedChains": "supported_chains",
    "fieldMappings": "field_mappings",
    "customVariables": "custom_variables",
    "addressList": "address_list",
    "logoUrl": "logo_url",
    "blockExplorer": "block_explorer",
    "rpcUrls": "rpc_urls",
    "isTestNet": "is_test_net",
    "baseTokenId": "base_token_id",
    "quoteTokenId": "quote_token_id",
    "pairName": "pair_name",
    "hasVariables": "has_variables",
    "tokenId": "token_id",
    "pairId": "pair_id",
    "userId": "user_id",
    "isPublic": "is_public",
    "pairList": "pair_list",
    "sourceNodeId": "source_node_id",
    "inputParams": "input_params",
    "outputParams": "output_params",
}

# Transient fields that never leave the console, keyed by remote table.
IGNORE_FIELDS: Dict[str, List[str]] = {
    "chain_config": ["testResults", "test_results", "testRpcUrl", "test_rpc_url"],
    "api_config": ["apiData", "api_data", "requestLog", "request_log"],
    "token_config": ["tempData", "temp_data"],
    "data_collection_configs": ["tempConfig", "temp_config"],
    "data_processing_configs": ["tempConfig", "temp_config"],
    "alert_capability": ["tempConfig", "temp_config"],
}

# Defaults for NOT NULL columns the console does not always fill in.
REQUIRED_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "api_config": {"method": "GET"},
}

_SAFE_NAME_RE = re.compile(r"^[a-z][A-Za-z0-9]*$")
_UPPER_RE = re.compile(r"([A-Z])")
_SNAKE_RE = re.compile(r"_([a-z])")


def camel_to_snake(name: str) -> str:
    """``chainId`` -> ``chain_id``."""
    return _UPPER_RE.sub(r"_\1", name).lower().lstrip("_")


def snake_to_camel(name: str) -> str:
    """``chain_id`` -> ``chainId``."""
    return _SNAKE_RE.sub(lambda match: match.group(1).upper(), name)


def is_round_trip_safe(name: str) -> bool:
    return bool(_SAFE_NAME_RE.match(name))


def remote_table_name(collection: str) -> str:
    return TABLE_NAME_MAP.get(collection, collection.lower())


def epoch_ms_to_iso(value: float) -> str:
    moment = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _is_epoch_ms(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > EPOCH_MS_FLOOR


def _jsonable(value: Any) -> Any:
    """Render datetimes as ISO strings at any depth; nested timestamps are not guessed."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


class FieldCodec:
    """Translate records for one remote table.

    The reverse table is built once at construction. Construction fails with
    :class:`TranslationAmbiguous` when two table keys map to the same column.
    """

    def __init__(
        self,
        table: str,
        field_map: Optional[Mapping[str, str]] = None,
        ignore_fields: Optional[Mapping[str, Iterable[str]]] = None,
        required_defaults: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ) -> None:
        self.table = table
        self._forward: Dict[str, str] = dict(field_map if field_map is not None else FIELD_NAME_MAP)
        reverse: Dict[str, str] = {}
        for field, column in self._forward.items():
            if column in reverse:
                raise TranslationAmbiguous(column, [reverse[column], field])
            reverse[column] = field
        self._reverse = reverse
        ignore_source = ignore_fields if ignore_fields is not None else IGNORE_FIELDS
        self._ignored = frozenset(ignore_source.get(table, ()))
        defaults_source = required_defaults if required_defaults is not None else REQUIRED_DEFAULTS
        self._defaults: Dict[str, Any] = dict(defaults_source.get(table, {}))

    @classmethod
    def for_collection(cls, collection: str) -> "FieldCodec":
        return cls(remote_table_name(collection))

    @property
    def ignored_fields(self) -> frozenset:
        return self._ignored

    def column_for(self, field: str) -> str:
        """Column name for a console field; raises when the fallback lands on a reserved column."""
        mapped = self._forward.get(field)
        if mapped is not None:
            return mapped
        column = camel_to_snake(field)
        owner = self._reverse.get(column)
        if owner is not None and owner != field:
            raise TranslationAmbiguous(column, [owner, field])
        return column

    def field_for(self, column: str) -> str:
        mapped = self._reverse.get(column)
        if mapped is not None:
            return mapped
        return snake_to_camel(column)

    def to_remote(self, record: Mapping[str, Any]) -> Dict[str, Any]:
        """Translate a console record into a row payload.

        The identity becomes ``id`` (dropped when null) and the creation field
        is dropped so the table default applies.
        """
        row: Dict[str, Any] = {}
        sources: Dict[str, str] = {}
        for field, value in record.items():
            if field in self._ignored or field == CREATION_FIELD:
                continue
            column = self.column_for(field)
            if column in sources:
                raise TranslationAmbiguous(column, [sources[column], field])
            sources[column] = field
            row[column] = self._to_remote_value(column, value)
        if row.get(PRIMARY_KEY) is None:
            row.pop(PRIMARY_KEY, None)
        for column, default in self._defaults.items():
            if row.get(column) is None:
                row[column] = default
        return row

    def from_remote(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        record: Dict[str, Any] = {}
        for column, value in row.items():
            record[self.field_for(column)] = value
        return record

    def filters_for(self, conditions: Mapping[str, Any]) -> Dict[str, str]:
        """PostgREST equality filters for a caller-side condition mapping."""
        params: Dict[str, str] = {}
        for field, value in conditions.items():
            column = self.column_for(field)
            if value is None:
                params[column] = "is.null"
            elif isinstance(value, bool):
                params[column] = f"eq.{str(value).lower()}"
            else:
                params[column] = f"eq.{value}"
        return params

    @staticmethod
    def _to_remote_value(column: str, value: Any) -> Any:
        if column.endswith(TIMESTAMP_SUFFIXES) and _is_epoch_ms(value):
            return epoch_ms_to_iso(value)
        return _jsonable(value)


__all__ = [
    "IDENTITY_FIELD",
    "PRIMARY_KEY",
    "CREATION_FIELD",
    "TABLE_NAME_MAP",
    "FIELD_NAME_MAP",
    "IGNORE_FIELDS",
    "REQUIRED_DEFAULTS",
    "FieldCodec",
    "camel_to_snake",
    "snake_to_camel",
    "is_round_trip_safe",
    "remote_table_name",
    "epoch_ms_to_iso",
]
