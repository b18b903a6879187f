"""Extractor for the ``events`` table.

Each emitted event becomes one immutable row keyed by transaction version
and the event's index within the transaction.
"""

from __future__ import annotations

from typing import Mapping

from core.types import ColumnSpec, ExtractedRecord, TableSpec, Transaction
from extractors.base import Extractor, build_record
from extractors.utils import (
    optional_int,
    optional_list,
    require_int,
    require_str,
    standardize_address,
    truncate_text,
)

EVENT_TYPE_MAX_LENGTH = 300

EVENTS_TABLE = TableSpec(
    name="events",
    columns=(
        ColumnSpec("transaction_version", "bigint", nullable=False),
        ColumnSpec("event_index", "bigint", nullable=False),
        ColumnSpec("account_address", "text", nullable=False),
        ColumnSpec("creation_number", "bigint", nullable=False),
        ColumnSpec("sequence_number", "bigint", nullable=False),
        ColumnSpec("type", "text", nullable=False),
        ColumnSpec("indexed_type", "text", nullable=False),
        ColumnSpec("data", "json"),
        ColumnSpec("transaction_block_height", "bigint"),
    ),
    key_columns=("transaction_version", "event_index"),
)


def extract_events(transaction: Transaction) -> list[ExtractedRecord]:
    """Map every event of a transaction to an ``events`` row.

    Args:
        transaction: Source transaction.

    Returns:
        One record per event, in emission order.

    Raises:
        TypeError: If an event entry is not an object.
        KeyError: If an event lacks a required field.
    """
    block_height = optional_int(transaction.payload, "block_height")
    records: list[ExtractedRecord] = []
    for event_index, event in enumerate(optional_list(transaction.payload, "events")):
        if not isinstance(event, Mapping):
            raise TypeError(f"Event {event_index} must be an object")
        event_type = require_str(event, "type")
        fields = {
            "transaction_version": transaction.version,
            "event_index": event_index,
            "account_address": standardize_address(require_str(event, "account_address")),
            "creation_number": require_int(event, "creation_number"),
            "sequence_number": require_int(event, "sequence_number"),
            "type": event_type,
            "indexed_type": truncate_text(event_type, EVENT_TYPE_MAX_LENGTH),
            "data": event.get("data"),
            "transaction_block_height": block_height,
        }
        records.append(build_record(EVENTS_TABLE, fields, transaction.version))
    return records


EVENTS_EXTRACTOR = Extractor(name="events", tables=(EVENTS_TABLE,), extract=extract_events)
