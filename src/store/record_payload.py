"""Shared JSON serialization for records and checkpoints.

This module centralizes how record field values and checkpoints are
encoded. It is reused for buffer sizing and file checkpoint persistence.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
import json
from typing import Any, Mapping

from core.types import BackfillStatus, Checkpoint, ExtractedRecord, ProcessorMode


def json_default(value: object) -> object:
    """Encode values ``json`` does not handle natively.

    Args:
        value: Field value.

    Returns:
        JSON-safe representation.

    Raises:
        TypeError: If the value type is unsupported.
    """
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_fields(fields: Mapping[str, object]) -> str:
    """Encode record fields as compact, key-sorted JSON."""
    return json.dumps(fields, default=json_default, sort_keys=True, separators=(",", ":"))


def record_size(record: ExtractedRecord) -> int:
    """Return the serialized size of a record in bytes."""
    return len(encode_fields(record.fields).encode("utf-8"))


def checkpoint_to_payload(checkpoint: Checkpoint) -> dict[str, object]:
    """Serialize a checkpoint into a JSON-safe payload.

    Args:
        checkpoint: Checkpoint instance.

    Returns:
        Dictionary payload for JSON encoding.
    """
    return {
        "processor_name": checkpoint.processor_name,
        "last_success_version": checkpoint.last_success_version,
        "updated_at": checkpoint.updated_at.isoformat(),
        "mode": checkpoint.mode,
        "last_transaction_timestamp": _optional_isoformat(checkpoint.last_transaction_timestamp),
        "backfill_status": checkpoint.backfill_status,
        "backfill_start_version": checkpoint.backfill_start_version,
        "backfill_end_version": checkpoint.backfill_end_version,
    }


def checkpoint_from_payload(payload: Mapping[str, Any]) -> Checkpoint:
    """Deserialize a checkpoint payload.

    Args:
        payload: Serialized checkpoint payload.

    Returns:
        Parsed checkpoint.

    Raises:
        KeyError: If required fields are missing.
        ValueError: If timestamps or versions are invalid.
    """
    last_transaction_timestamp = payload.get("last_transaction_timestamp")
    backfill_status: BackfillStatus | None = payload.get("backfill_status")
    mode: ProcessorMode = payload.get("mode", "default")
    return Checkpoint(
        processor_name=str(payload["processor_name"]),
        last_success_version=int(payload["last_success_version"]),
        updated_at=datetime.fromisoformat(str(payload["updated_at"])),
        mode=mode,
        last_transaction_timestamp=datetime.fromisoformat(last_transaction_timestamp)
        if last_transaction_timestamp
        else None,
        backfill_status=backfill_status,
        backfill_start_version=_optional_int(payload.get("backfill_start_version")),
        backfill_end_version=_optional_int(payload.get("backfill_end_version")),
    )


def _optional_isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _optional_int(value: object) -> int | None:
    if value is None:
        return None
    return int(str(value))
