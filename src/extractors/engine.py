"""Extraction engine that runs a processor's extractors.

The engine maps one transaction to its complete record set. A failing
extractor loses only its own records; the failure policy decides whether
that is logged and skipped or raised as ``ExtractionError``.
"""

from __future__ import annotations

from collections import deque
from concurrent.futures import Executor, Future
from typing import Iterable, Iterator, Sequence

from core.errors import ExtractionError
from core.logging_config import get_logger
from core.types import (
    ExtractedRecord,
    ExtractionFailure,
    ExtractionFailurePolicy,
    TableSpec,
    Transaction,
    TransactionRecords,
)
from extractors.base import Extractor

_LOGGER = get_logger(__name__)

MALFORMED_PAYLOAD_ERRORS = (KeyError, ValueError, TypeError, ExtractionError)


class ExtractionEngine:
    """Stateless fan-out of one transaction through a fixed extractor set."""

    def __init__(
        self,
        extractors: Sequence[Extractor],
        failure_policy: ExtractionFailurePolicy = "skip",
        tables_to_write: Sequence[str] = (),
    ) -> None:
        if not extractors:
            raise ValueError("ExtractionEngine requires at least one extractor")
        self._extractors = tuple(extractors)
        self._failure_policy = failure_policy
        known_tables = {table.name for extractor in extractors for table in extractor.tables}
        unknown_tables = sorted(set(tables_to_write) - known_tables)
        if unknown_tables:
            raise ValueError(
                f"tables_to_write references unknown tables: {', '.join(unknown_tables)}. "
                f"Known tables: {', '.join(sorted(known_tables))}."
            )
        self._tables_to_write = frozenset(tables_to_write)

    @property
    def failure_policy(self) -> ExtractionFailurePolicy:
        return self._failure_policy

    @property
    def tables(self) -> tuple[TableSpec, ...]:
        """Schemas of every table this engine emits records for."""
        return tuple(
            table
            for extractor in self._extractors
            for table in extractor.tables
            if self._writes_table(table.name)
        )

    def extract(self, transaction: Transaction) -> TransactionRecords:
        """Run every extractor against one transaction.

        Args:
            transaction: Source transaction.

        Returns:
            Records from all extractors plus recorded failures.

        Raises:
            ExtractionError: If an extractor fails and the policy is ``halt``.
        """
        records: list[ExtractedRecord] = []
        failures: list[ExtractionFailure] = []
        for extractor in self._extractors:
            try:
                extracted = extractor.extract(transaction)
            except MALFORMED_PAYLOAD_ERRORS as error:
                failure = _record_failure(transaction.version, extractor.name, error)
                if self._failure_policy == "halt":
                    raise ExtractionError(
                        f"Extractor '{extractor.name}' failed for version "
                        f"{transaction.version}: {failure.message}. "
                        "Fix the payload mapping or set extraction_failure_policy to 'skip'.",
                        version=transaction.version,
                        extractor_name=extractor.name,
                    ) from error
                failures.append(failure)
                continue
            records.extend(record for record in extracted if self._writes_table(record.table_name))
        return TransactionRecords(
            version=transaction.version,
            timestamp=transaction.timestamp,
            records=tuple(records),
            failures=tuple(failures),
        )

    def extract_ordered(
        self,
        transactions: Iterable[Transaction | None],
        executor: Executor,
        window_size: int,
    ) -> Iterator[TransactionRecords]:
        """Extract transactions concurrently, yielding results in input order.

        At most ``window_size`` extractions are in flight at once. A ``None``
        item marks an idle input and releases every pending result.

        Args:
            transactions: Transactions in version order, with optional idle marks.
            executor: Worker pool running ``extract``.
            window_size: Maximum number of pending extractions.

        Yields:
            Transaction record sets in the order of ``transactions``.
        """
        pending: deque[Future[TransactionRecords]] = deque()
        for transaction in transactions:
            if transaction is None:
                while pending:
                    yield pending.popleft().result()
                continue
            pending.append(executor.submit(self.extract, transaction))
            while len(pending) >= window_size:
                yield pending.popleft().result()
        while pending:
            yield pending.popleft().result()

    def _writes_table(self, table_name: str) -> bool:
        return not self._tables_to_write or table_name in self._tables_to_write


def _record_failure(version: int, extractor_name: str, error: Exception) -> ExtractionFailure:
    message = str(error) or type(error).__name__
    if isinstance(error, KeyError):
        message = f"missing field {error}"
    _LOGGER.warning(
        "extraction_failed",
        version=version,
        extractor=extractor_name,
        error_type=type(error).__name__,
        error=message,
    )
    return ExtractionFailure(version=version, extractor_name=extractor_name, message=message)
