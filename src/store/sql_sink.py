"""Relational sink and checkpoint store backed by SQLAlchemy Core.

Each batch is written in one database transaction that also updates the
checkpoint row, so a crash leaves either the whole batch with its
checkpoint or neither. Supports PostgreSQL (psycopg) and SQLite.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from sqlalchemy import Table, create_engine, delete, inspect, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from core.constants import (
    BACKFILL_STATUS_TABLE_NAME,
    DELETED_FLAG_COLUMN,
    PROCESSOR_STATUS_TABLE_NAME,
)
from core.errors import CheckpointError, LedgerflowConfigError, SinkError
from core.logging_config import get_logger
from core.types import Batch, Checkpoint, ExtractedRecord, ProcessorMode, TableSpec
from ingest.checkpoint_store import ensure_monotonic, utc_now
from store.sql_schema import build_metadata

_LOGGER = get_logger(__name__)

SQLITE_MAX_VARIABLES = 30_000


def create_sql_engine(connection_string: str, pool_size: int, timeout_seconds: float) -> Engine:
    """Create a SQLAlchemy engine with connect and statement timeouts.

    Args:
        connection_string: Database URL. ``postgresql://`` uses psycopg.
        pool_size: Connection pool size for server databases.
        timeout_seconds: Connect and statement timeout.

    Returns:
        Configured engine.

    Raises:
        LedgerflowConfigError: If the URL uses an unsupported dialect.
    """
    if connection_string.startswith("sqlite"):
        return create_engine(connection_string, connect_args={"timeout": timeout_seconds})
    if connection_string.startswith("postgresql://"):
        connection_string = "postgresql+psycopg://" + connection_string.removeprefix(
            "postgresql://"
        )
    if not connection_string.startswith("postgresql"):
        raise LedgerflowConfigError(
            f"Unsupported db_config.connection_string '{connection_string.split(':', 1)[0]}'. "
            "Use a postgresql:// or sqlite:// URL."
        )
    statement_timeout_ms = int(timeout_seconds * 1000)
    return create_engine(
        connection_string,
        pool_size=pool_size,
        pool_pre_ping=True,
        connect_args={
            "connect_timeout": max(1, int(timeout_seconds)),
            "options": f"-c statement_timeout={statement_timeout_ms}",
        },
    )


class SqlCheckpointStore:
    """Checkpoint store using the ``processor_status`` tables.

    With ``create_tables`` off the store never issues DDL, and reads from a
    database without status tables return no checkpoint.
    """

    def __init__(
        self,
        engine: Engine,
        table_specs: Iterable[TableSpec] = (),
        create_tables: bool = True,
    ) -> None:
        self._engine = engine
        self._metadata = build_metadata(table_specs)
        self._create_tables = create_tables
        if not create_tables:
            return
        try:
            self._metadata.create_all(engine)
        except SQLAlchemyError as error:
            raise CheckpointError(
                f"Failed to prepare checkpoint tables: {error}. "
                "Check db_config.connection_string and database permissions."
            ) from error

    @property
    def engine(self) -> Engine:
        return self._engine

    def table(self, name: str) -> Table:
        return self._metadata.tables[name]

    def read_checkpoint(self, mode: ProcessorMode, name: str) -> Checkpoint | None:
        """Read a checkpoint row.

        Raises:
            CheckpointError: If the database read fails.
        """
        try:
            with self._engine.connect() as connection:
                if not self._create_tables:
                    table, _ = self._status_table(mode)
                    if not inspect(connection).has_table(table.name):
                        return None
                return self.read_with(connection, mode, name)
        except SQLAlchemyError as error:
            raise CheckpointError(
                f"Failed to read checkpoint '{name}': {error}. Check database connectivity."
            ) from error

    def write_checkpoint(self, checkpoint: Checkpoint) -> None:
        """Upsert a checkpoint row in its own transaction.

        Raises:
            CheckpointError: If the write fails or moves progress backwards.
        """
        try:
            with self._engine.begin() as connection:
                self.write_with(connection, checkpoint)
        except SQLAlchemyError as error:
            raise CheckpointError(
                f"Failed to write checkpoint '{checkpoint.processor_name}': {error}. "
                "Check database connectivity."
            ) from error

    def reset_checkpoint(self, mode: ProcessorMode, name: str) -> None:
        """Delete a checkpoint row if present."""
        table, key_column = self._status_table(mode)
        try:
            with self._engine.begin() as connection:
                connection.execute(delete(table).where(table.c[key_column] == name))
        except SQLAlchemyError as error:
            raise CheckpointError(
                f"Failed to reset checkpoint '{name}': {error}. Check database connectivity."
            ) from error

    def read_with(
        self, connection: Connection, mode: ProcessorMode, name: str
    ) -> Checkpoint | None:
        """Read a checkpoint row on an open connection."""
        table, key_column = self._status_table(mode)
        row = connection.execute(select(table).where(table.c[key_column] == name)).mappings().first()
        if row is None:
            return None
        return Checkpoint(
            processor_name=name,
            last_success_version=int(row["last_success_version"]),
            updated_at=_as_utc(row["last_updated"]),
            mode=mode,
            last_transaction_timestamp=_as_utc(row["last_transaction_timestamp"])
            if row["last_transaction_timestamp"] is not None
            else None,
            backfill_status=row.get("backfill_status"),
            backfill_start_version=row.get("backfill_start_version"),
            backfill_end_version=row.get("backfill_end_version"),
        )

    def write_with(self, connection: Connection, checkpoint: Checkpoint) -> None:
        """Upsert a checkpoint row inside the caller's transaction."""
        existing = self.read_with(connection, checkpoint.mode, checkpoint.processor_name)
        ensure_monotonic(existing, checkpoint)
        checkpoint = replace(checkpoint, updated_at=utc_now())
        table, key_column = self._status_table(checkpoint.mode)
        row: dict[str, object] = {
            key_column: checkpoint.processor_name,
            "last_success_version": checkpoint.last_success_version,
            "last_updated": checkpoint.updated_at,
            "last_transaction_timestamp": checkpoint.last_transaction_timestamp,
        }
        if checkpoint.mode == "backfill":
            row["backfill_status"] = checkpoint.backfill_status or "in_progress"
            row["backfill_start_version"] = checkpoint.backfill_start_version
            row["backfill_end_version"] = checkpoint.backfill_end_version
        statement = dialect_insert(connection, table).values(row)
        statement = statement.on_conflict_do_update(
            index_elements=[key_column],
            set_={name: statement.excluded[name] for name in row if name != key_column},
        )
        connection.execute(statement)

    def _status_table(self, mode: ProcessorMode) -> tuple[Table, str]:
        if mode == "backfill":
            return self._metadata.tables[BACKFILL_STATUS_TABLE_NAME], "backfill_alias"
        return self._metadata.tables[PROCESSOR_STATUS_TABLE_NAME], "processor"


class RelationalSink:
    """Transactional batch writer for derived tables."""

    def __init__(self, checkpoint_store: SqlCheckpointStore, table_specs: Sequence[TableSpec]) -> None:
        self._checkpoints = checkpoint_store
        self._specs = {table_spec.name: table_spec for table_spec in table_specs}

    def commit(self, batch: Batch, checkpoint: Checkpoint) -> None:
        """Write a batch and its checkpoint in a single transaction.

        Args:
            batch: Records for a contiguous version range.
            checkpoint: Checkpoint for ``batch.end_version``.

        Raises:
            SinkError: If the database transaction fails.
            CheckpointError: If the checkpoint would move backwards.
        """
        try:
            with self._checkpoints.engine.begin() as connection:
                for table_name, records in batch.records_by_table.items():
                    if records:
                        self._write_table(connection, table_name, records)
                self._checkpoints.write_with(connection, checkpoint)
        except SQLAlchemyError as error:
            raise SinkError(
                f"Failed to commit batch [{batch.start_version}, {batch.end_version}]: {error}"
            ) from error
        _LOGGER.debug(
            "relational_batch_written",
            start_version=batch.start_version,
            end_version=batch.end_version,
            record_count=batch.record_count,
        )

    def close(self) -> None:
        self._checkpoints.engine.dispose()

    def _write_table(
        self,
        connection: Connection,
        table_name: str,
        records: Sequence[ExtractedRecord],
    ) -> None:
        table_spec = self._specs.get(table_name)
        if table_spec is None:
            raise LedgerflowConfigError(
                f"Batch contains records for unregistered table '{table_name}'."
            )
        table = self._checkpoints.table(table_name)
        inserts = [record for record in records if record.mutation_kind == "insert"]
        _insert_ignore(connection, table, table_spec, inserts)
        current = _latest_per_key(record for record in records if record.mutation_kind != "insert")
        _upsert_latest(connection, table, table_spec, current)


def dialect_insert(connection: Connection, table: Table) -> Any:
    """Return an ``INSERT`` construct supporting ``ON CONFLICT`` for the dialect."""
    dialect_name = connection.dialect.name
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as postgresql_insert

        return postgresql_insert(table)
    if dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as sqlite_insert

        return sqlite_insert(table)
    raise LedgerflowConfigError(f"Unsupported database dialect '{dialect_name}'.")


def _insert_ignore(
    connection: Connection,
    table: Table,
    table_spec: TableSpec,
    records: Sequence[ExtractedRecord],
) -> None:
    """Append immutable rows; key collisions are no-ops."""
    for chunk in _chunks(records, table_spec):
        statement = dialect_insert(connection, table).values([_row(table_spec, r) for r in chunk])
        connection.execute(statement.on_conflict_do_nothing(index_elements=list(table_spec.key_columns)))


def _upsert_latest(
    connection: Connection,
    table: Table,
    table_spec: TableSpec,
    records: Sequence[ExtractedRecord],
) -> None:
    """Upsert current rows, keeping the row with the higher source version.

    Delete markers are written as rows flagged deleted, so an older upsert
    replayed later still loses to the deletion.
    """
    update_columns = [name for name in table_spec.column_names if name not in table_spec.key_columns]
    for chunk in _chunks(records, table_spec):
        statement = dialect_insert(connection, table).values(
            [_current_row(table_spec, r) for r in chunk]
        )
        where_clause = None
        if table_spec.version_column is not None:
            version_column = table_spec.version_column
            where_clause = table.c[version_column] <= statement.excluded[version_column]
        statement = statement.on_conflict_do_update(
            index_elements=list(table_spec.key_columns),
            set_={name: statement.excluded[name] for name in update_columns},
            where=where_clause,
        )
        connection.execute(statement)


def _latest_per_key(records: Iterable[ExtractedRecord]) -> list[ExtractedRecord]:
    """Collapse mutations per key to the last one in version order."""
    latest: dict[tuple[object, ...], ExtractedRecord] = {}
    for record in records:
        previous = latest.get(record.primary_key)
        if previous is None or record.version >= previous.version:
            latest.pop(record.primary_key, None)
            latest[record.primary_key] = record
    return list(latest.values())


def _row(table_spec: TableSpec, record: ExtractedRecord) -> dict[str, object]:
    return {name: record.fields.get(name) for name in table_spec.column_names}


def _current_row(table_spec: TableSpec, record: ExtractedRecord) -> dict[str, object]:
    row = _row(table_spec, record)
    if record.mutation_kind == "upsert" and DELETED_FLAG_COLUMN in row:
        row[DELETED_FLAG_COLUMN] = False
    elif record.mutation_kind == "delete":
        if DELETED_FLAG_COLUMN not in row:
            raise LedgerflowConfigError(
                f"Table '{table_spec.name}' received a delete marker but has no "
                f"'{DELETED_FLAG_COLUMN}' column."
            )
        row[DELETED_FLAG_COLUMN] = True
    return row


def _chunks(
    records: Sequence[ExtractedRecord], table_spec: TableSpec
) -> Iterable[Sequence[ExtractedRecord]]:
    chunk_size = max(1, SQLITE_MAX_VARIABLES // max(1, len(table_spec.columns)))
    for start in range(0, len(records), chunk_size):
        yield records[start : start + chunk_size]


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
