"""Columnar sink writing one Parquet object per table per batch.

Objects are keyed by table and batch start version, so replaying a batch
after a crash overwrites the objects of the interrupted commit instead of
duplicating them. The checkpoint is advanced only after every object of
the batch is written.
"""

from __future__ import annotations

import json
from typing import Any, Sequence

from core.constants import PARQUET_FILE_EXTENSION
from core.errors import (
    CheckpointError,
    CheckpointRegressionError,
    LedgerflowDependencyError,
    SinkError,
)
from core.logging_config import get_logger
from core.types import Batch, Checkpoint, ColumnType, ExtractedRecord, TableSpec
from ingest.checkpoint_store import CheckpointStore
from store.object_store import ObjectStore
from store.record_payload import json_default

_LOGGER = get_logger(__name__)

MUTATION_KIND_COLUMN = "mutation_kind"


def parquet_object_key(table_name: str, start_version: int) -> str:
    """Return the object key for a table's slice of a batch."""
    return f"{table_name}/{start_version:020d}{PARQUET_FILE_EXTENSION}"


class ParquetSink:
    """Buffered-batch writer emitting immutable Parquet objects."""

    def __init__(
        self,
        object_store: ObjectStore,
        checkpoint_store: CheckpointStore,
        table_specs: Sequence[TableSpec],
    ) -> None:
        self._objects = object_store
        self._checkpoints = checkpoint_store
        self._specs = {table_spec.name: table_spec for table_spec in table_specs}

    def commit(self, batch: Batch, checkpoint: Checkpoint) -> None:
        """Upload the batch's Parquet objects, then advance the checkpoint.

        Args:
            batch: Records for a contiguous version range.
            checkpoint: Checkpoint for ``batch.end_version``.

        Raises:
            SinkError: If encoding, upload, or the checkpoint store I/O fails.
            CheckpointRegressionError: If the checkpoint would move backwards.
        """
        for table_name, table_spec in self._specs.items():
            object_key = parquet_object_key(table_name, batch.start_version)
            records = batch.records_by_table.get(table_name, ())
            if not records:
                self._objects.delete(object_key)
                continue
            payload = encode_parquet(table_spec, records, batch)
            uri = self._objects.put_bytes(object_key, payload)
            _LOGGER.debug(
                "parquet_object_written",
                table=table_name,
                uri=uri,
                row_count=len(records),
                size_bytes=len(payload),
            )
        try:
            self._checkpoints.write_checkpoint(checkpoint)
        except CheckpointRegressionError:
            raise
        except CheckpointError as error:
            raise SinkError(
                f"Wrote batch [{batch.start_version}, {batch.end_version}] but failed to "
                f"advance its checkpoint: {error}"
            ) from error

    def close(self) -> None:
        return None


def encode_parquet(table_spec: TableSpec, records: Sequence[ExtractedRecord], batch: Batch) -> bytes:
    """Encode records into a Parquet file body.

    Args:
        table_spec: Target table schema.
        records: Records for the table, in version order.
        batch: Owning batch, recorded in the file metadata.

    Returns:
        Parquet bytes.

    Raises:
        LedgerflowDependencyError: If pyarrow is missing.
        SinkError: If values do not match the table schema.
    """
    try:
        import pyarrow as pa
        import pyarrow.parquet as pq
    except ImportError as error:
        raise LedgerflowDependencyError(
            "Parquet output requires pyarrow, but it is not installed. "
            "Install pyarrow to use db_config type 'parquet_config'."
        ) from error
    fields = [pa.field(column.name, _arrow_type(pa, column.column_type)) for column in table_spec.columns]
    columns: dict[str, list[object]] = {
        column.name: [_arrow_value(column.column_type, r.fields.get(column.name)) for r in records]
        for column in table_spec.columns
    }
    if table_spec.mutation_kind != "insert":
        fields.append(pa.field(MUTATION_KIND_COLUMN, pa.string()))
        columns[MUTATION_KIND_COLUMN] = [record.mutation_kind for record in records]
    schema = pa.schema(
        fields,
        metadata={
            "start_version": str(batch.start_version),
            "end_version": str(batch.end_version),
        },
    )
    try:
        table = pa.table(columns, schema=schema)
        sink = pa.BufferOutputStream()
        pq.write_table(table, sink)
    except (pa.ArrowException, TypeError, ValueError) as error:
        raise SinkError(
            f"Failed to encode Parquet for table '{table_spec.name}' in batch "
            f"[{batch.start_version}, {batch.end_version}]: {error}"
        ) from error
    return sink.getvalue().to_pybytes()


def _arrow_type(pa: Any, column_type: ColumnType) -> Any:
    if column_type == "bigint":
        return pa.int64()
    if column_type == "boolean":
        return pa.bool_()
    if column_type == "timestamp":
        return pa.timestamp("us", tz="UTC")
    return pa.string()


def _arrow_value(column_type: ColumnType, value: object) -> object:
    if value is None:
        return None
    if column_type == "numeric":
        return str(value)
    if column_type == "json":
        return json.dumps(value, default=json_default, sort_keys=True)
    return value
