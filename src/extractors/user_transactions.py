"""Extractor for the ``user_transactions`` table."""

from __future__ import annotations

from core.types import ColumnSpec, ExtractedRecord, TableSpec, Transaction
from extractors.base import Extractor, build_record
from extractors.utils import optional_int, optional_str, require_int, require_str, standardize_address

USER_TRANSACTION_TYPE = "user_transaction"

USER_TRANSACTIONS_TABLE = TableSpec(
    name="user_transactions",
    columns=(
        ColumnSpec("version", "bigint", nullable=False),
        ColumnSpec("block_height", "bigint"),
        ColumnSpec("sender", "text", nullable=False),
        ColumnSpec("sequence_number", "bigint", nullable=False),
        ColumnSpec("max_gas_amount", "bigint"),
        ColumnSpec("gas_unit_price", "bigint"),
        ColumnSpec("expiration_timestamp_secs", "bigint"),
        ColumnSpec("entry_function_id_str", "text"),
        ColumnSpec("epoch", "bigint"),
        ColumnSpec("timestamp", "timestamp", nullable=False),
    ),
    key_columns=("version",),
)


def extract_user_transactions(transaction: Transaction) -> list[ExtractedRecord]:
    """Map a user transaction to its ``user_transactions`` row.

    Non-user transactions produce no records.

    Args:
        transaction: Source transaction.

    Returns:
        Zero or one record.

    Raises:
        KeyError: If a user transaction lacks ``sender`` or ``sequence_number``.
    """
    payload = transaction.payload
    if payload.get("type") != USER_TRANSACTION_TYPE:
        return []
    fields = {
        "version": transaction.version,
        "block_height": optional_int(payload, "block_height"),
        "sender": standardize_address(require_str(payload, "sender")),
        "sequence_number": require_int(payload, "sequence_number"),
        "max_gas_amount": optional_int(payload, "max_gas_amount"),
        "gas_unit_price": optional_int(payload, "gas_unit_price"),
        "expiration_timestamp_secs": optional_int(payload, "expiration_timestamp_secs"),
        "entry_function_id_str": optional_str(payload, "entry_function_id"),
        "epoch": optional_int(payload, "epoch"),
        "timestamp": transaction.timestamp,
    }
    return [build_record(USER_TRANSACTIONS_TABLE, fields, transaction.version)]


USER_TRANSACTIONS_EXTRACTOR = Extractor(
    name="user_transactions",
    tables=(USER_TRANSACTIONS_TABLE,),
    extract=extract_user_transactions,
)
