"""Shared typed models.

This module defines immutable data models used by the source, extractors,
accumulator, sinks, and coordinator to keep interfaces explicit and stable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Mapping

MutationKind = Literal["insert", "upsert", "delete"]
ProcessorMode = Literal["default", "backfill"]
BackfillStatus = Literal["in_progress", "complete"]
ColumnType = Literal["bigint", "text", "boolean", "timestamp", "numeric", "json"]
ExtractionFailurePolicy = Literal["skip", "halt"]
RunStatus = Literal["success", "failed", "cancelled"]
PipelineState = Literal[
    "initializing",
    "streaming",
    "backfilling",
    "flushing",
    "draining",
    "stopped",
]


@dataclass(frozen=True)
class Transaction:
    """One versioned transaction delivered by the source.

    Attributes:
        version: Monotonically increasing ledger version.
        timestamp: UTC block timestamp.
        success: Whether the transaction executed successfully.
        payload: Opaque payload consumed by extractors.
    """

    version: int
    timestamp: datetime
    success: bool
    payload: Mapping[str, object] = field(default_factory=dict)


@dataclass(frozen=True)
class ColumnSpec:
    """One column of a derived table."""

    name: str
    column_type: ColumnType
    nullable: bool = True


@dataclass(frozen=True)
class TableSpec:
    """Schema and write policy for a derived table.

    Attributes:
        name: Table name.
        columns: Ordered column definitions.
        key_columns: Logical primary key column names.
        mutation_kind: Default write policy for the table.
        version_column: Column holding the source version, required for
            upsert tables to resolve last-writer-wins.
    """

    name: str
    columns: tuple[ColumnSpec, ...]
    key_columns: tuple[str, ...]
    mutation_kind: MutationKind = "insert"
    version_column: str | None = None

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(column.name for column in self.columns)


@dataclass(frozen=True)
class ExtractedRecord:
    """One normalized row produced by an extractor.

    Attributes:
        table_name: Target table.
        primary_key: Values of the table key columns, in key order.
        mutation_kind: Insert-immutable, upsert-current, or delete-marker.
        fields: Column values, including key columns.
        version: Source transaction version.
    """

    table_name: str
    primary_key: tuple[object, ...]
    mutation_kind: MutationKind
    fields: Mapping[str, object]
    version: int


@dataclass(frozen=True)
class ExtractionFailure:
    """A recorded per-extractor failure for one transaction."""

    version: int
    extractor_name: str
    message: str


@dataclass(frozen=True)
class TransactionRecords:
    """Complete record set produced by one transaction.

    Attributes:
        version: Source transaction version.
        timestamp: Source transaction timestamp.
        records: All records produced by every extractor, in extractor order.
        failures: Extractors that failed for this transaction.
    """

    version: int
    timestamp: datetime
    records: tuple[ExtractedRecord, ...] = ()
    failures: tuple[ExtractionFailure, ...] = ()


@dataclass(frozen=True)
class Batch:
    """Atomic unit of sink commit spanning a contiguous version range.

    Attributes:
        start_version: First covered version, inclusive.
        end_version: Last covered version, inclusive.
        records_by_table: Records grouped by table, in version order.
        transaction_count: Number of transactions covered.
        last_transaction_timestamp: Timestamp of ``end_version``.
    """

    start_version: int
    end_version: int
    records_by_table: Mapping[str, tuple[ExtractedRecord, ...]]
    transaction_count: int
    last_transaction_timestamp: datetime | None = None

    @property
    def record_count(self) -> int:
        return sum(len(records) for records in self.records_by_table.values())


@dataclass(frozen=True)
class Checkpoint:
    """Durable progress marker for one processor or backfill alias.

    Attributes:
        processor_name: Processor name (tailing) or backfill alias (backfill).
        last_success_version: Last version durably committed.
        updated_at: UTC time of the last update.
        mode: Checkpoint namespace.
        last_transaction_timestamp: Timestamp of ``last_success_version``.
        backfill_status: Backfill progress, backfill mode only.
        backfill_start_version: Requested backfill start, backfill mode only.
        backfill_end_version: Requested backfill end, backfill mode only.
    """

    processor_name: str
    last_success_version: int
    updated_at: datetime
    mode: ProcessorMode = "default"
    last_transaction_timestamp: datetime | None = None
    backfill_status: BackfillStatus | None = None
    backfill_start_version: int | None = None
    backfill_end_version: int | None = None


@dataclass(frozen=True)
class ProcessorRunSpec:
    """Operating mode and version bounds for one processor run.

    Attributes:
        processor_name: Processor identity, used as tailing checkpoint name.
        mode: ``default`` (tailing) or ``backfill``.
        starting_version: Requested first version.
        ending_version: Optional last version, inclusive.
        overwrite_checkpoint: Discard the stored checkpoint and start at
            ``starting_version``.
        backfill_alias: Checkpoint identity for backfill runs.
    """

    processor_name: str
    mode: ProcessorMode = "default"
    starting_version: int = 0
    ending_version: int | None = None
    overwrite_checkpoint: bool = False
    backfill_alias: str | None = None

    @property
    def checkpoint_name(self) -> str:
        if self.mode == "backfill" and self.backfill_alias:
            return self.backfill_alias
        return self.processor_name


@dataclass(frozen=True)
class RunResult:
    """Terminal report for one coordinator run.

    Attributes:
        status: ``success``, ``failed``, or ``cancelled``.
        processor_name: Checkpoint identity of the run.
        starting_version: Effective first version requested from the source.
        last_committed_version: Last durably committed version, if any.
        batches_committed: Number of batches committed in this run.
        transactions_processed: Number of transactions committed in this run.
        extraction_failures: Number of skipped per-extractor failures.
        error: Error description for failed runs.
    """

    status: RunStatus
    processor_name: str
    starting_version: int
    last_committed_version: int | None
    batches_committed: int
    transactions_processed: int
    extraction_failures: int = 0
    error: str | None = None
