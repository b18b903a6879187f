"""Extractor for the ``transactions`` table.

Every transaction, user or system, produces exactly one immutable row.
"""

from __future__ import annotations

from core.types import ColumnSpec, ExtractedRecord, TableSpec, Transaction
from extractors.base import Extractor, build_record
from extractors.utils import optional_int, optional_list, optional_str

TRANSACTIONS_TABLE = TableSpec(
    name="transactions",
    columns=(
        ColumnSpec("version", "bigint", nullable=False),
        ColumnSpec("block_height", "bigint"),
        ColumnSpec("epoch", "bigint"),
        ColumnSpec("hash", "text"),
        ColumnSpec("type", "text"),
        ColumnSpec("success", "boolean", nullable=False),
        ColumnSpec("vm_status", "text"),
        ColumnSpec("gas_used", "bigint"),
        ColumnSpec("num_events", "bigint", nullable=False),
        ColumnSpec("num_write_set_changes", "bigint", nullable=False),
        ColumnSpec("block_timestamp", "timestamp", nullable=False),
    ),
    key_columns=("version",),
)


def extract_transactions(transaction: Transaction) -> list[ExtractedRecord]:
    """Map a transaction to its ``transactions`` row.

    Args:
        transaction: Source transaction.

    Returns:
        Single-element record list.
    """
    payload = transaction.payload
    fields = {
        "version": transaction.version,
        "block_height": optional_int(payload, "block_height"),
        "epoch": optional_int(payload, "epoch"),
        "hash": optional_str(payload, "hash"),
        "type": optional_str(payload, "type"),
        "success": transaction.success,
        "vm_status": optional_str(payload, "vm_status"),
        "gas_used": optional_int(payload, "gas_used"),
        "num_events": len(optional_list(payload, "events")),
        "num_write_set_changes": len(optional_list(payload, "changes")),
        "block_timestamp": transaction.timestamp,
    }
    return [build_record(TRANSACTIONS_TABLE, fields, transaction.version)]


TRANSACTIONS_EXTRACTOR = Extractor(
    name="transactions",
    tables=(TRANSACTIONS_TABLE,),
    extract=extract_transactions,
)
