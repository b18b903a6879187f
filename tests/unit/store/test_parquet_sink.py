"""Unit tests for the Parquet sink with a local object store."""

from __future__ import annotations

import pyarrow.parquet as pq
import pytest

from core.errors import CheckpointError, CheckpointRegressionError, SinkError
from core.types import Batch, Checkpoint, ExtractedRecord
from extractors.base import build_record
from extractors.coin_balances import COIN_BALANCES_TABLE, CURRENT_COIN_BALANCES_TABLE
from ingest.checkpoint_store import FileCheckpointStore, utc_now
from store.object_store import LocalObjectStore, S3ObjectStore
from store.parquet_sink import ParquetSink, parquet_object_key
from tests.pipeline_fakes import BASE_TIME

TABLES = (COIN_BALANCES_TABLE, CURRENT_COIN_BALANCES_TABLE)


def _history(version: int) -> ExtractedRecord:
    return build_record(
        COIN_BALANCES_TABLE,
        {
            "transaction_version": version,
            "owner_address": "0xa",
            "coin_type_hash": "hash",
            "coin_type": "0x1::aptos_coin::AptosCoin",
            "amount": 10 * version,
            "transaction_timestamp": BASE_TIME,
        },
        version,
    )


def _current(version: int) -> ExtractedRecord:
    return build_record(
        CURRENT_COIN_BALANCES_TABLE,
        {
            "owner_address": "0xa",
            "coin_type_hash": "hash",
            "coin_type": "0x1::aptos_coin::AptosCoin",
            "amount": 10 * version,
            "last_transaction_version": version,
            "last_transaction_timestamp": BASE_TIME,
        },
        version,
    )


def _batch(start: int, end: int, *records: ExtractedRecord) -> Batch:
    by_table: dict[str, list[ExtractedRecord]] = {}
    for record in records:
        by_table.setdefault(record.table_name, []).append(record)
    return Batch(
        start_version=start,
        end_version=end,
        records_by_table={name: tuple(items) for name, items in by_table.items()},
        transaction_count=end - start + 1,
    )


def _checkpoint(version: int) -> Checkpoint:
    return Checkpoint(
        processor_name="parquet_fungible_asset_processor",
        last_success_version=version,
        updated_at=utc_now(),
    )


def test_parquet_object_key_is_zero_padded() -> None:
    """Object keys should sort by batch start version."""
    assert parquet_object_key("coin_balances", 42) == "coin_balances/00000000000000000042.parquet"


def test_commit_writes_one_object_per_table(tmp_path) -> None:
    """Each table with records should get one Parquet object for the batch."""
    output = tmp_path / "out"
    checkpoints = FileCheckpointStore(tmp_path)
    sink = ParquetSink(LocalObjectStore(output), checkpoints, TABLES)

    sink.commit(_batch(10, 11, _history(10), _history(11), _current(11)), _checkpoint(11))

    history = pq.read_table(output / parquet_object_key("coin_balances", 10))
    current = pq.read_table(output / parquet_object_key("current_coin_balances", 10))
    assert history.column("transaction_version").to_pylist() == [10, 11]
    assert history.column("amount").to_pylist() == ["100", "110"]
    assert current.column("mutation_kind").to_pylist() == ["upsert"]
    assert history.schema.metadata[b"end_version"] == b"11"
    assert checkpoints.read_checkpoint("default", "parquet_fungible_asset_processor").last_success_version == 11


def test_replay_overwrites_objects_of_interrupted_batch(tmp_path) -> None:
    """Replaying a batch start version should replace, not duplicate, its objects."""
    output = tmp_path / "out"
    checkpoints = FileCheckpointStore(tmp_path)
    sink = ParquetSink(LocalObjectStore(output), checkpoints, TABLES)
    sink.commit(_batch(10, 11, _history(10), _current(10)), _checkpoint(11))

    sink.commit(_batch(10, 11, _history(10), _history(11)), _checkpoint(11))

    history = pq.read_table(output / parquet_object_key("coin_balances", 10))
    assert history.num_rows == 2
    assert not (output / parquet_object_key("current_coin_balances", 10)).exists()
    assert len(list((output / "coin_balances").iterdir())) == 1


class _RecordingS3Client:
    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}

    def put_object(self, Bucket: str, Key: str, Body: bytes) -> None:
        self.objects[f"{Bucket}/{Key}"] = Body

    def delete_object(self, Bucket: str, Key: str) -> None:
        self.objects.pop(f"{Bucket}/{Key}", None)


def test_s3_object_store_prefixes_keys(tmp_path) -> None:
    """S3 output should be written under the configured bucket root."""
    client = _RecordingS3Client()
    sink = ParquetSink(S3ObjectStore(client, "bucket", "/indexer/"), FileCheckpointStore(tmp_path), TABLES)

    sink.commit(_batch(5, 5, _history(5)), _checkpoint(5))

    assert list(client.objects) == ["bucket/indexer/coin_balances/00000000000000000005.parquet"]


class _FlakyCheckpointStore(FileCheckpointStore):
    """File store whose first write fails like a dropped database connection."""

    def __init__(self, data_root) -> None:
        super().__init__(data_root)
        self.failures = 1

    def write_checkpoint(self, checkpoint: Checkpoint) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise CheckpointError(
                f"Failed to write checkpoint '{checkpoint.processor_name}': connection reset. "
                "Check database connectivity."
            )
        super().write_checkpoint(checkpoint)


def test_checkpoint_store_failure_is_reported_as_sink_error(tmp_path) -> None:
    """A failed checkpoint write should surface as a retryable sink error."""
    store = _FlakyCheckpointStore(tmp_path)
    sink = ParquetSink(LocalObjectStore(tmp_path / "out"), store, TABLES)
    batch = _batch(10, 11, _history(10), _current(11))

    with pytest.raises(SinkError, match="failed to advance its checkpoint"):
        sink.commit(batch, _checkpoint(11))
    sink.commit(batch, _checkpoint(11))

    assert store.read_checkpoint("default", "parquet_fungible_asset_processor").last_success_version == 11


def test_checkpoint_regression_stays_fatal(tmp_path) -> None:
    """A checkpoint moving backwards should not be turned into a sink error."""
    store = FileCheckpointStore(tmp_path)
    sink = ParquetSink(LocalObjectStore(tmp_path / "out"), store, TABLES)
    sink.commit(_batch(10, 12, _history(10)), _checkpoint(12))

    with pytest.raises(CheckpointRegressionError):
        sink.commit(_batch(13, 13, _history(13)), _checkpoint(5))
