"""Wire a validated processor config into a runnable coordinator.

This module resolves the processor type to its extractor set, opens the
configured sink and checkpoint store, and builds the transaction source.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from core.config import IndexerConfig
from core.constants import PARQUET_OUTPUT_DIR_NAME
from core.errors import LedgerflowConfigError
from core.processor_config import IndexerProcessorConfig
from core.types import Checkpoint
from extractors.engine import ExtractionEngine
from extractors.registry import resolve_processor
from ingest.checkpoint_store import CheckpointStore, FileCheckpointStore
from ingest.pipeline import PipelineCoordinator, PipelineSettings
from ingest.transaction_source import FileTransactionSource
from store.object_store import LocalObjectStore, ObjectStore, S3ObjectStore, create_s3_client
from store.parquet_sink import ParquetSink
from store.sink import SinkWriter
from store.sql_sink import RelationalSink, SqlCheckpointStore, create_sql_engine


@dataclass
class ProcessorComponents:
    """Sink and checkpoint store opened for one processor."""

    engine: ExtractionEngine
    sink: SinkWriter
    checkpoint_store: CheckpointStore

    def close(self) -> None:
        self.sink.close()


def build_components(
    config: IndexerProcessorConfig, runtime: IndexerConfig
) -> ProcessorComponents:
    """Open the extraction engine, sink, and checkpoint store.

    Args:
        config: Validated processor config.
        runtime: Runtime environment config.

    Returns:
        Opened components; call ``close`` when done.

    Raises:
        LedgerflowConfigError: If the processor type or sink config is invalid.
        CheckpointError: If checkpoint tables cannot be prepared.
    """
    definition = resolve_processor(config.processor.processor_type, config.db.db_type)
    try:
        engine = ExtractionEngine(
            definition.extractors,
            failure_policy=config.processor.extraction_failure_policy,
            tables_to_write=config.processor.tables_to_write,
        )
    except ValueError as error:
        raise LedgerflowConfigError(f"Invalid processor_config: {error}") from error
    table_specs = engine.tables
    db = config.db
    if db.db_type == "postgres_config":
        if db.connection_string is None:
            raise LedgerflowConfigError("db_config type 'postgres_config' requires connection_string.")
        sql_engine = create_sql_engine(
            db.connection_string, db.pool_size, runtime.request_timeout_seconds
        )
        sql_checkpoints = SqlCheckpointStore(sql_engine, table_specs)
        return ProcessorComponents(
            engine=engine,
            sink=RelationalSink(sql_checkpoints, table_specs),
            checkpoint_store=sql_checkpoints,
        )
    checkpoint_store: CheckpointStore
    if db.connection_string is not None:
        sql_engine = create_sql_engine(
            db.connection_string, db.pool_size, runtime.request_timeout_seconds
        )
        checkpoint_store = SqlCheckpointStore(sql_engine)
    else:
        checkpoint_store = FileCheckpointStore(runtime.data_root)
    sink = ParquetSink(_build_object_store(config, runtime), checkpoint_store, table_specs)
    return ProcessorComponents(engine=engine, sink=sink, checkpoint_store=checkpoint_store)


def build_coordinator(
    config: IndexerProcessorConfig,
    runtime: IndexerConfig,
    components: ProcessorComponents,
) -> PipelineCoordinator:
    """Build the coordinator for a processor config.

    Args:
        config: Validated processor config.
        runtime: Runtime environment config.
        components: Components opened by ``build_components``.

    Returns:
        Coordinator ready to ``run``.
    """
    processor = config.processor
    stream = config.transaction_stream
    settings = PipelineSettings(
        channel_size=processor.channel_size,
        max_buffer_size=processor.max_buffer_size,
        upload_interval_seconds=processor.upload_interval_seconds,
        extract_workers=processor.extract_workers,
        sink_retry=processor.sink_retry,
        fetch_retry=stream.fetch_retry,
        poll_interval_seconds=stream.poll_interval_seconds,
    )
    return PipelineCoordinator(
        run_spec=config.to_run_spec(),
        source=FileTransactionSource(stream.address, runtime),
        engine=components.engine,
        sink=components.sink,
        checkpoint_store=components.checkpoint_store,
        settings=settings,
    )


@contextmanager
def open_checkpoint_store(
    config: IndexerProcessorConfig, runtime: IndexerConfig
) -> Iterator[CheckpointStore]:
    """Open the processor's checkpoint store for reading only.

    No status tables or checkpoint directories are created.
    """
    db = config.db
    if db.connection_string is None:
        yield FileCheckpointStore(runtime.data_root, create_dirs=False)
        return
    sql_engine = create_sql_engine(db.connection_string, db.pool_size, runtime.request_timeout_seconds)
    try:
        yield SqlCheckpointStore(sql_engine, create_tables=False)
    finally:
        sql_engine.dispose()


def read_run_checkpoints(
    config: IndexerProcessorConfig, checkpoint_store: CheckpointStore
) -> dict[str, Checkpoint | None]:
    """Read the tailing checkpoint and, in backfill mode, the backfill checkpoint."""
    run_spec = config.to_run_spec()
    checkpoints: dict[str, Checkpoint | None] = {
        "default": checkpoint_store.read_checkpoint("default", run_spec.processor_name)
    }
    if run_spec.mode == "backfill":
        checkpoints["backfill"] = checkpoint_store.read_checkpoint(
            "backfill", run_spec.checkpoint_name
        )
    return checkpoints


def _build_object_store(config: IndexerProcessorConfig, runtime: IndexerConfig) -> ObjectStore:
    db = config.db
    bucket_root = db.bucket_root or config.processor_name
    if db.bucket_name is None:
        return LocalObjectStore(runtime.data_root / PARQUET_OUTPUT_DIR_NAME / bucket_root)
    return S3ObjectStore(create_s3_client(runtime), db.bucket_name, bucket_root)
