"""Unit tests for the relational sink on SQLite."""

from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from core.errors import CheckpointError, LedgerflowConfigError
from core.types import Batch, Checkpoint, ExtractedRecord
from extractors.ans import ANS_LOOKUP_TABLE, CURRENT_ANS_LOOKUP_TABLE
from extractors.base import build_record
from extractors.coin_balances import COIN_BALANCES_TABLE, CURRENT_COIN_BALANCES_TABLE
from ingest.checkpoint_store import utc_now
from store.sql_sink import RelationalSink, SqlCheckpointStore, create_sql_engine
from tests.pipeline_fakes import BASE_TIME

TABLES = (
    COIN_BALANCES_TABLE,
    CURRENT_COIN_BALANCES_TABLE,
    ANS_LOOKUP_TABLE,
    CURRENT_ANS_LOOKUP_TABLE,
)


def _store(tmp_path) -> SqlCheckpointStore:
    engine = create_sql_engine(f"sqlite:///{tmp_path / 'indexer.db'}", 1, 5.0)
    return SqlCheckpointStore(engine, TABLES)


def _current_balance(version: int, amount: int) -> ExtractedRecord:
    return build_record(
        CURRENT_COIN_BALANCES_TABLE,
        {
            "owner_address": "0xa",
            "coin_type_hash": "hash",
            "coin_type": "0x1::aptos_coin::AptosCoin",
            "amount": Decimal(amount),
            "last_transaction_version": version,
            "last_transaction_timestamp": BASE_TIME,
        },
        version,
    )


def _balance_history(version: int, amount: int) -> ExtractedRecord:
    return build_record(
        COIN_BALANCES_TABLE,
        {
            "transaction_version": version,
            "owner_address": "0xa",
            "coin_type_hash": "hash",
            "coin_type": "0x1::aptos_coin::AptosCoin",
            "amount": Decimal(amount),
            "transaction_timestamp": BASE_TIME,
        },
        version,
    )


def _current_name(version: int, mutation_kind: str | None = None) -> ExtractedRecord:
    return build_record(
        CURRENT_ANS_LOOKUP_TABLE,
        {
            "domain": "alice",
            "subdomain": "",
            "token_name": "alice.apt",
            "registered_address": None,
            "expiration_timestamp": None,
            "last_transaction_version": version,
            "is_deleted": mutation_kind == "delete",
        },
        version,
        mutation_kind=mutation_kind,
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
        last_transaction_timestamp=BASE_TIME,
    )


def _checkpoint(version: int) -> Checkpoint:
    return Checkpoint(
        processor_name="fungible_asset_processor",
        last_success_version=version,
        updated_at=utc_now(),
    )


def _rows(store: SqlCheckpointStore, table_name: str) -> list[dict]:
    table = store.table(table_name)
    with store.engine.connect() as connection:
        return [dict(row) for row in connection.execute(select(table)).mappings()]


def _count(store: SqlCheckpointStore, table_name: str) -> int:
    table = store.table(table_name)
    with store.engine.connect() as connection:
        return connection.execute(select(func.count()).select_from(table)).scalar_one()


def test_commit_writes_records_and_checkpoint(tmp_path) -> None:
    """A commit should persist rows and advance the checkpoint."""
    store = _store(tmp_path)
    sink = RelationalSink(store, TABLES)

    sink.commit(_batch(10, 12, _balance_history(10, 5), _current_balance(10, 5)), _checkpoint(12))

    assert _count(store, "coin_balances") == 1
    assert store.read_checkpoint("default", "fungible_asset_processor").last_success_version == 12
    sink.close()


def test_upsert_keeps_higher_version(tmp_path) -> None:
    """An older upsert arriving later should not overwrite a newer row."""
    store = _store(tmp_path)
    sink = RelationalSink(store, TABLES)
    sink.commit(_batch(10, 12, _current_balance(12, 50)), _checkpoint(12))

    sink.commit(_batch(13, 13, _current_balance(11, 30)), _checkpoint(13))

    rows = _rows(store, "current_coin_balances")
    assert len(rows) == 1
    assert rows[0]["last_transaction_version"] == 12
    assert rows[0]["amount"] == Decimal(50)
    sink.close()


def test_upsert_within_batch_keeps_latest_version(tmp_path) -> None:
    """Several upserts of one key in a batch should collapse to the latest."""
    store = _store(tmp_path)
    sink = RelationalSink(store, TABLES)

    sink.commit(
        _batch(10, 12, _current_balance(10, 1), _current_balance(12, 3), _current_balance(11, 2)),
        _checkpoint(12),
    )

    rows = _rows(store, "current_coin_balances")
    assert rows[0]["last_transaction_version"] == 12
    assert rows[0]["amount"] == Decimal(3)
    sink.close()


def test_replayed_batch_is_idempotent(tmp_path) -> None:
    """Re-committing the same batch should not duplicate immutable rows."""
    store = _store(tmp_path)
    sink = RelationalSink(store, TABLES)
    batch = _batch(10, 11, _balance_history(10, 5), _balance_history(11, 6), _current_balance(11, 6))
    sink.commit(batch, _checkpoint(11))

    sink.commit(batch, _checkpoint(11))

    assert _count(store, "coin_balances") == 2
    assert _count(store, "current_coin_balances") == 1
    sink.close()


def test_delete_marker_flags_current_row_deleted(tmp_path) -> None:
    """A newer delete marker should leave a deleted row at its version."""
    store = _store(tmp_path)
    sink = RelationalSink(store, TABLES)
    sink.commit(_batch(10, 10, _current_name(10)), _checkpoint(10))

    sink.commit(_batch(11, 11, _current_name(11, "delete")), _checkpoint(11))

    rows = _rows(store, "current_ans_lookup")
    assert len(rows) == 1
    assert rows[0]["is_deleted"] is True
    assert rows[0]["last_transaction_version"] == 11
    sink.close()


def test_stale_delete_marker_keeps_newer_row(tmp_path) -> None:
    """A delete marker older than the stored row should be ignored."""
    store = _store(tmp_path)
    sink = RelationalSink(store, TABLES)
    sink.commit(_batch(10, 12, _current_name(12)), _checkpoint(12))

    sink.commit(_batch(13, 13, _current_name(11, "delete")), _checkpoint(13))

    rows = _rows(store, "current_ans_lookup")
    assert rows[0]["is_deleted"] is False
    assert rows[0]["last_transaction_version"] == 12
    sink.close()


def test_backfill_of_older_write_does_not_revive_deleted_row(tmp_path) -> None:
    """An older upsert committed by a backfill should lose to a newer delete."""
    store = _store(tmp_path)
    sink = RelationalSink(store, TABLES)
    sink.commit(_batch(10, 10, _current_name(10)), _checkpoint(10))
    sink.commit(_batch(20, 20, _current_name(20, "delete")), _checkpoint(20))
    backfill = Checkpoint(
        processor_name="ans_catchup",
        last_success_version=10,
        updated_at=utc_now(),
        mode="backfill",
        backfill_status="in_progress",
        backfill_start_version=10,
        backfill_end_version=15,
    )

    sink.commit(_batch(10, 10, _current_name(10)), backfill)

    rows = _rows(store, "current_ans_lookup")
    assert len(rows) == 1
    assert rows[0]["is_deleted"] is True
    assert rows[0]["last_transaction_version"] == 20
    sink.close()


def test_upsert_after_delete_restores_row(tmp_path) -> None:
    """A newer upsert should clear the deleted flag."""
    store = _store(tmp_path)
    sink = RelationalSink(store, TABLES)
    sink.commit(_batch(10, 10, _current_name(10, "delete")), _checkpoint(10))

    sink.commit(_batch(11, 11, _current_name(11)), _checkpoint(11))

    rows = _rows(store, "current_ans_lookup")
    assert rows[0]["is_deleted"] is False
    assert rows[0]["last_transaction_version"] == 11
    sink.close()


def test_failed_checkpoint_rolls_back_batch(tmp_path) -> None:
    """A rejected checkpoint should roll back the records of the same commit."""
    store = _store(tmp_path)
    sink = RelationalSink(store, TABLES)
    sink.commit(_batch(10, 12, _balance_history(10, 5)), _checkpoint(12))

    with pytest.raises(CheckpointError):
        sink.commit(_batch(13, 13, _balance_history(13, 7)), _checkpoint(5))

    assert _count(store, "coin_balances") == 1
    assert store.read_checkpoint("default", "fungible_asset_processor").last_success_version == 12
    sink.close()


def test_backfill_checkpoint_row_is_separate(tmp_path) -> None:
    """Backfill checkpoints should live in the backfill status table."""
    store = _store(tmp_path)
    store.write_checkpoint(_checkpoint(500))
    backfill = Checkpoint(
        processor_name="catchup",
        last_success_version=150,
        updated_at=utc_now(),
        mode="backfill",
        backfill_status="in_progress",
        backfill_start_version=100,
        backfill_end_version=200,
    )

    store.write_checkpoint(backfill)

    loaded = store.read_checkpoint("backfill", "catchup")
    assert loaded.backfill_status == "in_progress"
    assert loaded.backfill_end_version == 200
    assert store.read_checkpoint("default", "fungible_asset_processor").last_success_version == 500
    assert store.read_checkpoint("default", "catchup") is None


def test_reset_checkpoint_removes_row(tmp_path) -> None:
    """Resetting should delete the checkpoint row."""
    store = _store(tmp_path)
    store.write_checkpoint(_checkpoint(20))

    store.reset_checkpoint("default", "fungible_asset_processor")

    assert store.read_checkpoint("default", "fungible_asset_processor") is None


def test_create_sql_engine_rejects_unknown_dialect() -> None:
    """Only PostgreSQL and SQLite URLs should be accepted."""
    with pytest.raises(LedgerflowConfigError):
        create_sql_engine("mysql://localhost/db", 1, 5.0)
