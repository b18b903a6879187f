"""SQLAlchemy table definitions for the relational sink.

Derived tables are built from extractor ``TableSpec`` definitions; the two
status tables hold tailing and backfill checkpoints.
"""

from __future__ import annotations

from typing import Iterable

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
)
from sqlalchemy.types import TypeEngine

from core.constants import BACKFILL_STATUS_TABLE_NAME, PROCESSOR_STATUS_TABLE_NAME
from core.types import ColumnType, TableSpec

_COLUMN_TYPES: dict[ColumnType, TypeEngine] = {
    "bigint": BigInteger(),
    "text": Text(),
    "boolean": Boolean(),
    "timestamp": DateTime(timezone=True),
    "numeric": Numeric(asdecimal=True),
    "json": JSON(),
}


def build_metadata(table_specs: Iterable[TableSpec]) -> MetaData:
    """Build metadata holding derived tables plus both status tables.

    Args:
        table_specs: Derived table schemas.

    Returns:
        Metadata ready for ``create_all``.
    """
    metadata = MetaData()
    add_status_tables(metadata)
    for table_spec in table_specs:
        if table_spec.name in metadata.tables:
            continue
        _build_table(metadata, table_spec)
    return metadata


def add_status_tables(metadata: MetaData) -> tuple[Table, Table]:
    """Register the tailing and backfill status tables on ``metadata``."""
    processor_status = Table(
        PROCESSOR_STATUS_TABLE_NAME,
        metadata,
        Column("processor", String(100), primary_key=True),
        Column("last_success_version", BigInteger, nullable=False),
        Column("last_updated", DateTime(timezone=True), nullable=False),
        Column("last_transaction_timestamp", DateTime(timezone=True), nullable=True),
    )
    backfill_status = Table(
        BACKFILL_STATUS_TABLE_NAME,
        metadata,
        Column("backfill_alias", String(100), primary_key=True),
        Column("backfill_status", String(50), nullable=False),
        Column("last_success_version", BigInteger, nullable=False),
        Column("last_updated", DateTime(timezone=True), nullable=False),
        Column("last_transaction_timestamp", DateTime(timezone=True), nullable=True),
        Column("backfill_start_version", BigInteger, nullable=True),
        Column("backfill_end_version", BigInteger, nullable=True),
    )
    return processor_status, backfill_status


def _build_table(metadata: MetaData, table_spec: TableSpec) -> Table:
    columns = [
        Column(
            column_spec.name,
            _COLUMN_TYPES[column_spec.column_type],
            primary_key=column_spec.name in table_spec.key_columns,
            nullable=column_spec.nullable,
            autoincrement=False,
        )
        for column_spec in table_spec.columns
    ]
    return Table(table_spec.name, metadata, *columns)
