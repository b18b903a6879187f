"""Extractor for name-service lookups.

Name records are written as ``<contract>::domains::NameRecord`` resources.
A write produces an ``ans_lookup`` history row and a ``current_ans_lookup``
upsert keyed by domain and subdomain. Deleting the resource produces a
delete marker that flags the current row as deleted.
"""

from __future__ import annotations

from typing import Mapping

from core.constants import DOMAIN_LENGTH, NAME_SERVICE_SUFFIX
from core.types import ColumnSpec, ExtractedRecord, TableSpec, Transaction
from extractors.base import Extractor, build_record
from extractors.utils import (
    optional_list,
    parse_decimal,
    require_mapping,
    require_str,
    standardize_address,
    timestamp_from_seconds,
    truncate_text,
)

NAME_RECORD_SUFFIX = "::domains::NameRecord"
WRITE_RESOURCE_CHANGE = "write_resource"
DELETE_RESOURCE_CHANGE = "delete_resource"

ANS_LOOKUP_TABLE = TableSpec(
    name="ans_lookup",
    columns=(
        ColumnSpec("transaction_version", "bigint", nullable=False),
        ColumnSpec("write_set_change_index", "bigint", nullable=False),
        ColumnSpec("domain", "text", nullable=False),
        ColumnSpec("subdomain", "text", nullable=False),
        ColumnSpec("token_name", "text", nullable=False),
        ColumnSpec("registered_address", "text"),
        ColumnSpec("expiration_timestamp", "timestamp"),
        ColumnSpec("is_deleted", "boolean", nullable=False),
    ),
    key_columns=("transaction_version", "write_set_change_index"),
)

CURRENT_ANS_LOOKUP_TABLE = TableSpec(
    name="current_ans_lookup",
    columns=(
        ColumnSpec("domain", "text", nullable=False),
        ColumnSpec("subdomain", "text", nullable=False),
        ColumnSpec("token_name", "text", nullable=False),
        ColumnSpec("registered_address", "text"),
        ColumnSpec("expiration_timestamp", "timestamp"),
        ColumnSpec("last_transaction_version", "bigint", nullable=False),
        ColumnSpec("is_deleted", "boolean", nullable=False),
    ),
    key_columns=("domain", "subdomain"),
    mutation_kind="upsert",
    version_column="last_transaction_version",
)


def get_token_name(domain: str, subdomain: str) -> str:
    """Build the display name ``[subdomain.]domain.apt``.

    Args:
        domain: Domain name, truncated to the domain length limit.
        subdomain: Subdomain name, empty for a root domain.

    Returns:
        Token name.
    """
    token_name = f"{truncate_text(domain, DOMAIN_LENGTH)}.{NAME_SERVICE_SUFFIX}"
    truncated_subdomain = truncate_text(subdomain, DOMAIN_LENGTH)
    if truncated_subdomain:
        token_name = f"{truncated_subdomain}.{token_name}"
    return token_name


def extract_ans_lookups(transaction: Transaction) -> list[ExtractedRecord]:
    """Map name record writes and deletes to lookup rows.

    Args:
        transaction: Source transaction.

    Returns:
        History rows and current-row upserts or delete markers.

    Raises:
        TypeError: If a change entry or name record is malformed.
        KeyError: If a name record lacks its domain name.
    """
    if not transaction.success:
        return []
    records: list[ExtractedRecord] = []
    for change_index, change in enumerate(optional_list(transaction.payload, "changes")):
        if not isinstance(change, Mapping):
            raise TypeError(f"Write set change {change_index} must be an object")
        change_type = change.get("type")
        if change_type not in (WRITE_RESOURCE_CHANGE, DELETE_RESOURCE_CHANGE):
            continue
        if not require_str(change, "resource_type").endswith(NAME_RECORD_SUFFIX):
            continue
        is_deleted = change_type == DELETE_RESOURCE_CHANGE
        records.extend(_lookup_records(transaction, change, change_index, is_deleted))
    return records


def _lookup_records(
    transaction: Transaction,
    change: Mapping[str, object],
    change_index: int,
    is_deleted: bool,
) -> list[ExtractedRecord]:
    data = require_mapping(change, "data")
    domain = truncate_text(require_str(data, "domain_name"), DOMAIN_LENGTH)
    subdomain = truncate_text(_optional_move_string(data, "subdomain_name") or "", DOMAIN_LENGTH)
    registered_address = None
    expiration_timestamp = None
    if not is_deleted:
        target_address = _optional_move_string(data, "target_address")
        if target_address is not None:
            registered_address = standardize_address(target_address)
        if data.get("expiration_time_sec") is not None:
            seconds = parse_decimal(data["expiration_time_sec"], "expiration_time_sec")
            expiration_timestamp = timestamp_from_seconds(int(seconds))
    token_name = get_token_name(domain, subdomain)
    history_fields = {
        "transaction_version": transaction.version,
        "write_set_change_index": change_index,
        "domain": domain,
        "subdomain": subdomain,
        "token_name": token_name,
        "registered_address": registered_address,
        "expiration_timestamp": expiration_timestamp,
        "is_deleted": is_deleted,
    }
    current_fields = {
        "domain": domain,
        "subdomain": subdomain,
        "token_name": token_name,
        "registered_address": registered_address,
        "expiration_timestamp": expiration_timestamp,
        "last_transaction_version": transaction.version,
        "is_deleted": is_deleted,
    }
    return [
        build_record(ANS_LOOKUP_TABLE, history_fields, transaction.version),
        build_record(
            CURRENT_ANS_LOOKUP_TABLE,
            current_fields,
            transaction.version,
            mutation_kind="delete" if is_deleted else None,
        ),
    ]


def _optional_move_string(data: Mapping[str, object], key: str) -> str | None:
    """Read a Move ``Option<String>``, encoded as a plain string or ``{"vec": [...]}``."""
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        items = value.get("vec")
        if isinstance(items, list):
            if not items:
                return None
            if isinstance(items[0], str):
                return items[0]
    raise TypeError(f"Name record field '{key}' must be a string option")


ANS_EXTRACTOR = Extractor(
    name="ans",
    tables=(ANS_LOOKUP_TABLE, CURRENT_ANS_LOOKUP_TABLE),
    extract=extract_ans_lookups,
)
