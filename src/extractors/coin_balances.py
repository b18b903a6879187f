"""Extractor for coin balance history and current balances.

Every ``0x1::coin::CoinStore<T>`` write resource yields one immutable
``coin_balances`` row and one ``current_coin_balances`` upsert keyed by
owner and coin type hash.
"""

from __future__ import annotations

from typing import Mapping

from core.constants import COIN_TYPE_MAX_LENGTH
from core.types import ColumnSpec, ExtractedRecord, TableSpec, Transaction
from extractors.base import Extractor, build_record
from extractors.utils import (
    generic_type_argument,
    hash_text,
    optional_list,
    parse_decimal,
    require_mapping,
    require_str,
    standardize_address,
    truncate_text,
)

COIN_STORE_TYPE = "0x1::coin::CoinStore"
WRITE_RESOURCE_CHANGE = "write_resource"

COIN_BALANCES_TABLE = TableSpec(
    name="coin_balances",
    columns=(
        ColumnSpec("transaction_version", "bigint", nullable=False),
        ColumnSpec("owner_address", "text", nullable=False),
        ColumnSpec("coin_type_hash", "text", nullable=False),
        ColumnSpec("coin_type", "text", nullable=False),
        ColumnSpec("amount", "numeric", nullable=False),
        ColumnSpec("transaction_timestamp", "timestamp", nullable=False),
    ),
    key_columns=("transaction_version", "owner_address", "coin_type_hash"),
)

CURRENT_COIN_BALANCES_TABLE = TableSpec(
    name="current_coin_balances",
    columns=(
        ColumnSpec("owner_address", "text", nullable=False),
        ColumnSpec("coin_type_hash", "text", nullable=False),
        ColumnSpec("coin_type", "text", nullable=False),
        ColumnSpec("amount", "numeric", nullable=False),
        ColumnSpec("last_transaction_version", "bigint", nullable=False),
        ColumnSpec("last_transaction_timestamp", "timestamp", nullable=False),
    ),
    key_columns=("owner_address", "coin_type_hash"),
    mutation_kind="upsert",
    version_column="last_transaction_version",
)


def extract_coin_balances(transaction: Transaction) -> list[ExtractedRecord]:
    """Map coin store writes to balance history and current balance rows.

    Failed transactions produce no balance changes.

    Args:
        transaction: Source transaction.

    Returns:
        History and current records, two per coin store write.

    Raises:
        TypeError: If a change entry or its resource data is malformed.
        KeyError: If a coin store write lacks address or amount.
        ValueError: If an address or amount cannot be parsed.
    """
    if not transaction.success:
        return []
    records: list[ExtractedRecord] = []
    for change_index, change in enumerate(optional_list(transaction.payload, "changes")):
        if not isinstance(change, Mapping):
            raise TypeError(f"Write set change {change_index} must be an object")
        if change.get("type") != WRITE_RESOURCE_CHANGE:
            continue
        coin_type = generic_type_argument(require_str(change, "resource_type"), COIN_STORE_TYPE)
        if coin_type is None:
            continue
        records.extend(_balance_records(transaction, change, coin_type))
    return records


def _balance_records(
    transaction: Transaction,
    change: Mapping[str, object],
    coin_type: str,
) -> list[ExtractedRecord]:
    data = require_mapping(change, "data")
    coin = require_mapping(data, "coin")
    amount = parse_decimal(coin["value"], "coin.value")
    owner_address = standardize_address(require_str(change, "address"))
    coin_type_hash = hash_text(coin_type)
    truncated_type = truncate_text(coin_type, COIN_TYPE_MAX_LENGTH)
    history_fields = {
        "transaction_version": transaction.version,
        "owner_address": owner_address,
        "coin_type_hash": coin_type_hash,
        "coin_type": truncated_type,
        "amount": amount,
        "transaction_timestamp": transaction.timestamp,
    }
    current_fields = {
        "owner_address": owner_address,
        "coin_type_hash": coin_type_hash,
        "coin_type": truncated_type,
        "amount": amount,
        "last_transaction_version": transaction.version,
        "last_transaction_timestamp": transaction.timestamp,
    }
    return [
        build_record(COIN_BALANCES_TABLE, history_fields, transaction.version),
        build_record(CURRENT_COIN_BALANCES_TABLE, current_fields, transaction.version),
    ]


COIN_BALANCES_EXTRACTOR = Extractor(
    name="coin_balances",
    tables=(COIN_BALANCES_TABLE, CURRENT_COIN_BALANCES_TABLE),
    extract=extract_coin_balances,
)
