"""Fetch and extract stages connected by bounded channels.

The fetch stage pulls transactions from the source and checks that
versions are consecutive. The extract stage runs the extraction engine on
a worker pool and forwards results in version order. An in-flight window
bounds how many fetched transactions are not yet accumulated.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
import queue
import threading
from typing import Iterator, Literal

from tenacity import RetryError

from core.constants import RECEIVE_POLL_SECONDS
from core.errors import OrderingViolationError, SourceTransportError
from core.logging_config import get_logger
from core.retry import RetryPolicy, build_retrying
from core.types import Transaction
from extractors.engine import ExtractionEngine
from ingest.transaction_source import TransactionSource

_LOGGER = get_logger(__name__)

StreamEndReason = Literal["exhausted", "ending_version", "shutdown"]


@dataclass(frozen=True)
class StreamEnd:
    """Terminal channel message for a cleanly finished stream."""

    reason: StreamEndReason


@dataclass(frozen=True)
class StageFailure:
    """Terminal channel message carrying a stage's fatal error."""

    stage: str
    error: BaseException


class InFlightWindow:
    """Counting window over transactions fetched but not yet accumulated."""

    def __init__(self, capacity: int) -> None:
        self._capacity = capacity
        self._condition = threading.Condition()
        self._in_flight = 0
        self._peak = 0

    @property
    def in_flight(self) -> int:
        with self._condition:
            return self._in_flight

    @property
    def peak(self) -> int:
        with self._condition:
            return self._peak

    def acquire(self, abort: threading.Event) -> bool:
        """Block until a slot is free; return False if aborted first."""
        with self._condition:
            while self._in_flight >= self._capacity:
                if abort.is_set():
                    return False
                self._condition.wait(RECEIVE_POLL_SECONDS)
            self._in_flight += 1
            self._peak = max(self._peak, self._in_flight)
            return True

    def release(self) -> None:
        with self._condition:
            self._in_flight -= 1
            self._condition.notify()


def put_until(channel: queue.Queue, item: object, abort: threading.Event) -> bool:
    """Put an item on a bounded channel, giving up when ``abort`` is set."""
    while not abort.is_set():
        try:
            channel.put(item, timeout=RECEIVE_POLL_SECONDS)
            return True
        except queue.Full:
            continue
    return False


class FetchStage(threading.Thread):
    """Pulls transactions from the source into the fetch channel."""

    def __init__(
        self,
        source: TransactionSource,
        starting_version: int,
        ending_version: int | None,
        channel: queue.Queue,
        window: InFlightWindow,
        stop_event: threading.Event,
        abort_event: threading.Event,
        retry_policy: RetryPolicy,
        poll_interval_seconds: float | None,
    ) -> None:
        super().__init__(name="ledgerflow-fetch", daemon=True)
        self._source = source
        self._next_version = starting_version
        self._ending_version = ending_version
        self._channel = channel
        self._window = window
        self._stop_event = stop_event
        self._abort_event = abort_event
        self._retry_policy = retry_policy
        self._poll_interval_seconds = poll_interval_seconds

    def run(self) -> None:
        try:
            reason = self._fetch_until_done()
        except Exception as error:
            put_until(self._channel, StageFailure("fetch", error), self._abort_event)
            return
        if reason is not None:
            put_until(self._channel, StreamEnd(reason), self._abort_event)

    def _fetch_until_done(self) -> StreamEndReason | None:
        while not self._stop_event.is_set():
            if self._ending_version is not None and self._next_version > self._ending_version:
                return "ending_version"
            if self._fetch_with_retry() is None:
                return "shutdown"
            if self._abort_event.is_set():
                return None
            if self._stop_event.is_set():
                break
            if self._ending_version is not None:
                continue
            if self._poll_interval_seconds is None:
                return "exhausted"
            if self._stop_event.wait(self._poll_interval_seconds):
                break
        return "shutdown"

    def _fetch_with_retry(self) -> bool | None:
        """Run one fetch round with backoff; return None if shutdown cut it short.

        Raises:
            SourceTransportError: If the fetch retry budget is exhausted.
        """
        retrying = build_retrying(
            self._retry_policy,
            retryable=(SourceTransportError,),
            on_retry=self._log_retry,
            sleep=self._stop_event.wait,
            stop_event=self._stop_event,
        )
        try:
            return retrying(self._fetch_round)
        except RetryError as error:
            if self._stop_event.is_set():
                return None
            last_attempt = error.last_attempt
            last_error = last_attempt.exception()
            raise SourceTransportError(
                f"Transaction fetch failed {last_attempt.attempt_number} times in a row at "
                f"version {self._next_version}: {last_error}. Check transaction_stream_config."
            ) from last_error

    def _fetch_round(self) -> bool:
        """Fetch once; a stall short of ``ending_version`` counts as transient.

        A transport error after some progress ends the round early so the
        next round starts with a fresh retry budget.
        """
        if self._stop_event.is_set():
            return False
        round_start = self._next_version
        try:
            progressed = self._fetch_once()
        except SourceTransportError as error:
            if self._next_version == round_start:
                raise
            _LOGGER.info(
                "source_fetch_interrupted",
                next_version=self._next_version,
                error=str(error),
            )
            return True
        if progressed or self._stop_event.is_set() or self._abort_event.is_set():
            return progressed
        if self._ending_version is not None and self._next_version <= self._ending_version:
            raise SourceTransportError(
                f"Stream ended at version {self._next_version} before "
                f"ending_version {self._ending_version}."
            )
        return progressed

    def _fetch_once(self) -> bool:
        """Consume one fetch call; return whether any transaction arrived."""
        progressed = False
        for transaction in self._source.fetch(self._next_version, self._ending_version):
            self._check_order(transaction)
            if not self._window.acquire(self._abort_event):
                break
            if not put_until(self._channel, transaction, self._abort_event):
                break
            self._next_version = transaction.version + 1
            progressed = True
            if self._stop_event.is_set():
                break
        return progressed

    def _check_order(self, transaction: Transaction) -> None:
        if transaction.version != self._next_version:
            kind = "out-of-order" if transaction.version < self._next_version else "gapped"
            raise OrderingViolationError(
                f"Source delivered {kind} version {transaction.version}; "
                f"expected {self._next_version}. The upstream stream is corrupt."
            )

    def _log_retry(self, attempt: int, error: BaseException, delay: float) -> None:
        _LOGGER.warning(
            "source_fetch_retry",
            next_version=self._next_version,
            attempt=attempt,
            delay_seconds=round(delay, 3),
            error=str(error),
        )


class ExtractStage(threading.Thread):
    """Runs extraction on a worker pool and forwards ordered results."""

    def __init__(
        self,
        engine: ExtractionEngine,
        input_channel: queue.Queue,
        output_channel: queue.Queue,
        abort_event: threading.Event,
        worker_count: int,
    ) -> None:
        super().__init__(name="ledgerflow-extract", daemon=True)
        self._engine = engine
        self._input = input_channel
        self._output = output_channel
        self._abort_event = abort_event
        self._worker_count = worker_count
        self._terminal: StreamEnd | StageFailure | None = None

    def run(self) -> None:
        try:
            with ThreadPoolExecutor(
                max_workers=self._worker_count, thread_name_prefix="ledgerflow-extractor"
            ) as executor:
                for result in self._engine.extract_ordered(
                    self._transactions(), executor, self._worker_count
                ):
                    if not put_until(self._output, result, self._abort_event):
                        return
        except Exception as error:
            put_until(self._output, StageFailure("extract", error), self._abort_event)
            return
        if self._terminal is not None:
            put_until(self._output, self._terminal, self._abort_event)

    def _transactions(self) -> Iterator[Transaction | None]:
        """Yield fetched transactions, or None when the fetch channel is idle."""
        while not self._abort_event.is_set():
            try:
                message = self._input.get(timeout=RECEIVE_POLL_SECONDS)
            except queue.Empty:
                yield None
                continue
            if isinstance(message, (StreamEnd, StageFailure)):
                self._terminal = message
                return
            yield message
