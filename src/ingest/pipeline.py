"""Pipeline coordinator for tailing and backfill runs.

This module resolves the resume point from the checkpoint store, runs the
fetch and extract stages, accumulates whole transactions into batches, and
commits each batch with its checkpoint. Both operating modes share one
state machine so they share the same commit guarantees.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
import queue
import threading
import time
from typing import Callable

from tenacity import RetryError

from core.constants import (
    DEFAULT_CHANNEL_SIZE,
    DEFAULT_EXTRACT_WORKERS,
    DEFAULT_MAX_BUFFER_SIZE,
    DEFAULT_UPLOAD_INTERVAL_SECONDS,
    RECEIVE_POLL_SECONDS,
)
from core.errors import (
    CheckpointError,
    LedgerflowConfigError,
    LedgerflowError,
    SinkError,
    SinkExhaustedError,
)
from core.logging_config import get_logger
from core.retry import RetryPolicy, call_with_retry
from core.types import (
    Batch,
    Checkpoint,
    PipelineState,
    ProcessorRunSpec,
    RunResult,
    RunStatus,
    TransactionRecords,
)
from extractors.engine import ExtractionEngine
from ingest.accumulator import BatchAccumulator
from ingest.checkpoint_store import CheckpointStore
from ingest.stages import (
    ExtractStage,
    FetchStage,
    InFlightWindow,
    StageFailure,
    StreamEnd,
)
from ingest.transaction_source import TransactionSource
from store.sink import SinkWriter

_LOGGER = get_logger(__name__)

STAGE_JOIN_TIMEOUT_SECONDS = 5.0


@dataclass(frozen=True)
class PipelineSettings:
    """Channel, buffering, and retry settings for one coordinator.

    Attributes:
        channel_size: Capacity of each channel and of the in-flight window.
        max_buffer_size: Serialized bytes that trigger a flush.
        upload_interval_seconds: Age of the oldest buffered transaction that
            triggers a flush.
        extract_workers: Extraction worker pool size.
        sink_retry: Retry budget for sink commits.
        fetch_retry: Retry budget for source fetches.
        poll_interval_seconds: Tailing re-fetch delay once the source is
            exhausted; None stops the run instead.
    """

    channel_size: int = DEFAULT_CHANNEL_SIZE
    max_buffer_size: int = DEFAULT_MAX_BUFFER_SIZE
    upload_interval_seconds: float = DEFAULT_UPLOAD_INTERVAL_SECONDS
    extract_workers: int = DEFAULT_EXTRACT_WORKERS
    sink_retry: RetryPolicy = RetryPolicy()
    fetch_retry: RetryPolicy = RetryPolicy()
    poll_interval_seconds: float | None = None


@dataclass(frozen=True)
class VersionRange:
    """Effective version bounds resolved at initialization."""

    starting_version: int
    ending_version: int | None


class PipelineCoordinator:
    """State machine driving source, extraction, accumulation, and sink."""

    def __init__(
        self,
        run_spec: ProcessorRunSpec,
        source: TransactionSource,
        engine: ExtractionEngine,
        sink: SinkWriter,
        checkpoint_store: CheckpointStore,
        settings: PipelineSettings,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._run_spec = run_spec
        self._source = source
        self._engine = engine
        self._sink = sink
        self._checkpoints = checkpoint_store
        self._settings = settings
        self._sleep = sleep
        self._accumulator = BatchAccumulator(
            settings.max_buffer_size, settings.upload_interval_seconds, clock=clock
        )
        self._window = InFlightWindow(settings.channel_size)
        self._stop_event = threading.Event()
        self._abort_event = threading.Event()
        self._state: PipelineState = "initializing"
        self._watermark: int | None = None
        self._ending_version: int | None = None
        self._batches_committed = 0
        self._transactions_committed = 0
        self._extraction_failures = 0

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def watermark(self) -> int | None:
        """Highest version durably committed during this run."""
        return self._watermark

    @property
    def peak_in_flight(self) -> int:
        """Most transactions fetched but not yet accumulated at any moment."""
        return self._window.peak

    def request_shutdown(self) -> None:
        """Stop fetching, drain in-flight work, flush, and stop as cancelled."""
        if not self._stop_event.is_set():
            _LOGGER.info("pipeline_shutdown_requested", processor=self._run_spec.checkpoint_name)
        self._stop_event.set()

    def run(self) -> RunResult:
        """Run the pipeline until it stops.

        Returns:
            Terminal run result. Fatal errors are reported as ``failed``
            after a final flush of complete transactions where possible.
        """
        self._transition("initializing")
        try:
            version_range = self.resolve_version_range()
        except LedgerflowError as error:
            return self._stop("failed", self._run_spec.starting_version, error)
        self._ending_version = version_range.ending_version
        if (
            version_range.ending_version is not None
            and version_range.starting_version > version_range.ending_version
        ):
            _LOGGER.info(
                "pipeline_range_already_complete",
                processor=self._run_spec.checkpoint_name,
                starting_version=version_range.starting_version,
                ending_version=version_range.ending_version,
            )
            return self._stop("success", version_range.starting_version)
        return self._run_stages(version_range)

    def resolve_version_range(self) -> VersionRange:
        """Resolve effective start and end versions from the checkpoint.

        Returns:
            Effective version range.

        Raises:
            LedgerflowConfigError: If a backfill has no ending version and no
                tailing checkpoint to default to.
            CheckpointError: If checkpoint access fails.
        """
        spec = self._run_spec
        mode = spec.mode
        name = spec.checkpoint_name
        if spec.overwrite_checkpoint:
            self._checkpoints.reset_checkpoint(mode, name)
            checkpoint = None
        else:
            checkpoint = self._checkpoints.read_checkpoint(mode, name)
        if mode == "backfill":
            starting_version = spec.starting_version
            if checkpoint is not None and checkpoint.backfill_status == "complete":
                self._checkpoints.reset_checkpoint(mode, name)
            elif checkpoint is not None:
                starting_version = checkpoint.last_success_version + 1
            ending_version = spec.ending_version
            if ending_version is None:
                ending_version = self._tailing_head()
        else:
            starting_version = spec.starting_version
            if checkpoint is not None:
                starting_version = max(checkpoint.last_success_version + 1, starting_version)
            ending_version = spec.ending_version
        _LOGGER.info(
            "pipeline_initialized",
            processor=name,
            mode=mode,
            checkpoint_version=checkpoint.last_success_version if checkpoint else None,
            starting_version=starting_version,
            ending_version=ending_version,
        )
        return VersionRange(starting_version=starting_version, ending_version=ending_version)

    def _tailing_head(self) -> int:
        tailing = self._checkpoints.read_checkpoint("default", self._run_spec.processor_name)
        if tailing is None:
            raise LedgerflowConfigError(
                f"Backfill '{self._run_spec.checkpoint_name}' has no ending_version and "
                f"processor '{self._run_spec.processor_name}' has no tailing checkpoint. "
                "Set processor_mode.ending_version."
            )
        return tailing.last_success_version

    def _run_stages(self, version_range: VersionRange) -> RunResult:
        fetch_channel: queue.Queue = queue.Queue(maxsize=self._settings.channel_size)
        extract_channel: queue.Queue = queue.Queue(maxsize=self._settings.channel_size)
        fetch_stage = FetchStage(
            source=self._source,
            starting_version=version_range.starting_version,
            ending_version=version_range.ending_version,
            channel=fetch_channel,
            window=self._window,
            stop_event=self._stop_event,
            abort_event=self._abort_event,
            retry_policy=self._settings.fetch_retry,
            poll_interval_seconds=self._settings.poll_interval_seconds,
        )
        extract_stage = ExtractStage(
            engine=self._engine,
            input_channel=fetch_channel,
            output_channel=extract_channel,
            abort_event=self._abort_event,
            worker_count=self._settings.extract_workers,
        )
        self._transition("backfilling" if self._run_spec.mode == "backfill" else "streaming")
        fetch_stage.start()
        extract_stage.start()
        try:
            end = self._consume(extract_channel)
        except LedgerflowError as error:
            self._abort_event.set()
            self._final_flush_after_failure(error)
            return self._stop("failed", version_range.starting_version, error)
        finally:
            self._abort_event.set()
            fetch_stage.join(STAGE_JOIN_TIMEOUT_SECONDS)
            extract_stage.join(STAGE_JOIN_TIMEOUT_SECONDS)
        self._transition("draining")
        try:
            self._flush()
        except LedgerflowError as error:
            return self._stop("failed", version_range.starting_version, error)
        status: RunStatus = "cancelled" if end.reason == "shutdown" else "success"
        return self._stop(status, version_range.starting_version)

    def _consume(self, channel: queue.Queue) -> StreamEnd:
        """Accumulate extracted transactions until the stream ends.

        Raises:
            LedgerflowError: For fatal stage, ordering, or sink failures.
        """
        while True:
            timeout = min(RECEIVE_POLL_SECONDS, self._accumulator.seconds_until_due())
            try:
                message = channel.get(timeout=max(timeout, 0.001))
            except queue.Empty:
                message = None
            if isinstance(message, TransactionRecords):
                self._accumulate(message)
            elif isinstance(message, StreamEnd):
                return message
            elif isinstance(message, StageFailure):
                if isinstance(message.error, LedgerflowError):
                    raise message.error
                raise LedgerflowError(
                    f"{message.stage} stage failed: {message.error}"
                ) from message.error
            if self._accumulator.should_flush():
                self._flush()

    def _accumulate(self, transaction_records: TransactionRecords) -> None:
        try:
            self._accumulator.add(transaction_records)
        finally:
            self._window.release()
        self._extraction_failures += len(transaction_records.failures)

    def _flush(self) -> None:
        """Commit every buffered transaction as one batch.

        Raises:
            SinkExhaustedError: If commit retries exceed the budget.
            CheckpointError: If the checkpoint would move backwards.
        """
        batch = self._accumulator.flush()
        if batch is None:
            return
        previous_state = self._state
        self._transition("flushing")
        self._commit(batch)
        if previous_state != "flushing":
            self._transition(previous_state)

    def _commit(self, batch: Batch) -> None:
        if self._watermark is not None and batch.start_version != self._watermark + 1:
            raise CheckpointError(
                f"Batch [{batch.start_version}, {batch.end_version}] does not follow "
                f"watermark {self._watermark}."
            )
        checkpoint = self._checkpoint_for(batch)

        def _on_retry(attempt: int, error: BaseException, delay: float) -> None:
            _LOGGER.warning(
                "sink_commit_retry",
                start_version=batch.start_version,
                end_version=batch.end_version,
                attempt=attempt,
                delay_seconds=round(delay, 3),
                error=str(error),
            )

        try:
            call_with_retry(
                lambda: self._sink.commit(batch, checkpoint),
                self._settings.sink_retry,
                retryable=(SinkError,),
                on_retry=_on_retry,
                sleep=self._sleep,
            )
        except RetryError as error:
            last_attempt = error.last_attempt
            raise SinkExhaustedError(
                f"Sink commit for batch [{batch.start_version}, {batch.end_version}] failed "
                f"after {last_attempt.attempt_number} attempts: {last_attempt.exception()}. "
                "Check sink connectivity; the processor resumes from the last checkpoint."
            ) from error
        self._watermark = batch.end_version
        self._batches_committed += 1
        self._transactions_committed += batch.transaction_count
        _LOGGER.info(
            "batch_committed",
            processor=self._run_spec.checkpoint_name,
            start_version=batch.start_version,
            end_version=batch.end_version,
            transaction_count=batch.transaction_count,
            record_count=batch.record_count,
        )

    def _checkpoint_for(self, batch: Batch) -> Checkpoint:
        spec = self._run_spec
        checkpoint = Checkpoint(
            processor_name=spec.checkpoint_name,
            last_success_version=batch.end_version,
            updated_at=datetime.now(timezone.utc),
            mode=spec.mode,
            last_transaction_timestamp=batch.last_transaction_timestamp,
        )
        if spec.mode != "backfill":
            return checkpoint
        ending_version = self._ending_version
        is_complete = ending_version is not None and batch.end_version >= ending_version
        return replace(
            checkpoint,
            backfill_status="complete" if is_complete else "in_progress",
            backfill_start_version=spec.starting_version,
            backfill_end_version=ending_version,
        )

    def _final_flush_after_failure(self, error: LedgerflowError) -> None:
        """Best-effort flush of complete transactions after a fatal error."""
        if isinstance(error, (SinkExhaustedError, CheckpointError)):
            return
        try:
            self._flush()
        except LedgerflowError as flush_error:
            _LOGGER.error(
                "final_flush_failed",
                processor=self._run_spec.checkpoint_name,
                error=str(flush_error),
            )

    def _transition(self, state: PipelineState) -> None:
        if state == "initializing" or state != self._state:
            _LOGGER.debug(
                "pipeline_state_changed",
                processor=self._run_spec.checkpoint_name,
                from_state=self._state,
                to_state=state,
            )
        self._state = state

    def _stop(
        self,
        status: RunStatus,
        starting_version: int,
        error: LedgerflowError | None = None,
    ) -> RunResult:
        self._transition("stopped")
        result = RunResult(
            status=status,
            processor_name=self._run_spec.checkpoint_name,
            starting_version=starting_version,
            last_committed_version=self._watermark,
            batches_committed=self._batches_committed,
            transactions_processed=self._transactions_committed,
            extraction_failures=self._extraction_failures,
            error=str(error) if error is not None else None,
        )
        log_method = _LOGGER.error if status == "failed" else _LOGGER.info
        log_method(
            "pipeline_stopped",
            processor=result.processor_name,
            status=result.status,
            starting_version=result.starting_version,
            last_committed_version=result.last_committed_version,
            batches_committed=result.batches_committed,
            transactions_processed=result.transactions_processed,
            extraction_failures=result.extraction_failures,
            error=result.error,
        )
        return result
