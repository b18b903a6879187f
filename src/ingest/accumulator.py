"""Batch accumulator for extracted records.

Buffers whole transactions' records per table until a size or time
threshold is reached. A flush always covers complete transactions over a
contiguous version range.
"""

from __future__ import annotations

from datetime import datetime
import time
from typing import Callable

from core.errors import OrderingViolationError
from core.types import Batch, ExtractedRecord, TransactionRecords
from store.record_payload import record_size


class BatchAccumulator:
    """Per-table record buffers with size and interval flush triggers."""

    def __init__(
        self,
        max_buffer_size: int,
        upload_interval_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_buffer_size = max_buffer_size
        self._upload_interval_seconds = upload_interval_seconds
        self._clock = clock
        self._buffers: dict[str, list[ExtractedRecord]] = {}
        self._buffered_bytes = 0
        self._first_buffered_at: float | None = None
        self._start_version: int | None = None
        self._end_version: int | None = None
        self._last_timestamp: datetime | None = None
        self._transaction_count = 0
        self._last_seen_version: int | None = None

    @property
    def buffered_bytes(self) -> int:
        return self._buffered_bytes

    @property
    def transaction_count(self) -> int:
        return self._transaction_count

    def is_empty(self) -> bool:
        return self._transaction_count == 0

    def add(self, transaction_records: TransactionRecords) -> None:
        """Buffer every record one transaction produced.

        Args:
            transaction_records: Complete record set of one transaction.

        Raises:
            OrderingViolationError: If the version does not directly follow the
                previously added one.
        """
        version = transaction_records.version
        if self._last_seen_version is not None and version != self._last_seen_version + 1:
            raise OrderingViolationError(
                f"Accumulator received version {version} after {self._last_seen_version}. "
                "Transactions must arrive in strictly consecutive version order."
            )
        self._last_seen_version = version
        if self._first_buffered_at is None:
            self._first_buffered_at = self._clock()
            self._start_version = version
        for record in transaction_records.records:
            self._buffers.setdefault(record.table_name, []).append(record)
            self._buffered_bytes += record_size(record)
        self._end_version = version
        self._last_timestamp = transaction_records.timestamp
        self._transaction_count += 1

    def should_flush(self) -> bool:
        """Return whether the size or interval threshold has been reached."""
        if self.is_empty():
            return False
        if self._buffered_bytes >= self._max_buffer_size:
            return True
        return self.seconds_until_due() <= 0

    def seconds_until_due(self) -> float:
        """Seconds left before the interval threshold fires, or the full interval when empty."""
        if self._first_buffered_at is None:
            return self._upload_interval_seconds
        elapsed = self._clock() - self._first_buffered_at
        return max(0.0, self._upload_interval_seconds - elapsed)

    def flush(self) -> Batch | None:
        """Emit a batch of every buffered transaction and reset the buffers.

        Returns:
            Batch covering the buffered version range, or None when empty.
        """
        if self.is_empty() or self._start_version is None or self._end_version is None:
            return None
        batch = Batch(
            start_version=self._start_version,
            end_version=self._end_version,
            records_by_table={name: tuple(records) for name, records in self._buffers.items()},
            transaction_count=self._transaction_count,
            last_transaction_timestamp=self._last_timestamp,
        )
        self._buffers = {}
        self._buffered_bytes = 0
        self._first_buffered_at = None
        self._start_version = None
        self._end_version = None
        self._last_timestamp = None
        self._transaction_count = 0
        return batch
