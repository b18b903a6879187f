"""Unit tests for pipeline stage primitives."""

from __future__ import annotations

import queue
import threading

from core.errors import SourceTransportError
from core.retry import RetryPolicy
from ingest.stages import FetchStage, InFlightWindow, StageFailure, StreamEnd, put_until
from tests.pipeline_fakes import ListTransactionSource, make_transactions


def _fetch_stage(
    source: ListTransactionSource,
    channel: queue.Queue,
    stop: threading.Event,
    retry_policy: RetryPolicy,
) -> FetchStage:
    return FetchStage(
        source=source,
        starting_version=10,
        ending_version=None,
        channel=channel,
        window=InFlightWindow(10),
        stop_event=stop,
        abort_event=threading.Event(),
        retry_policy=retry_policy,
        poll_interval_seconds=None,
    )


def test_in_flight_window_blocks_at_capacity() -> None:
    """Acquire should fail once full and the abort event is set."""
    window = InFlightWindow(2)
    abort = threading.Event()
    assert window.acquire(abort) and window.acquire(abort)
    abort.set()

    acquired = window.acquire(abort)

    assert not acquired
    assert window.in_flight == 2 and window.peak == 2


def test_in_flight_window_release_frees_slot() -> None:
    """Releasing a slot should let a blocked acquire proceed."""
    window = InFlightWindow(1)
    abort = threading.Event()
    window.acquire(abort)
    releaser = threading.Timer(0.05, window.release)
    releaser.start()

    acquired = window.acquire(abort)
    releaser.join()

    assert acquired
    assert window.peak == 1


def test_put_until_gives_up_when_aborted() -> None:
    """Putting on a full channel should stop once abort is set."""
    channel: queue.Queue = queue.Queue(maxsize=1)
    channel.put("first")
    abort = threading.Event()
    abort.set()

    delivered = put_until(channel, "second", abort)

    assert not delivered
    assert channel.qsize() == 1


def test_fetch_stage_reports_exhausted_fetch_budget() -> None:
    """Transport failures past the budget should end the stage with a failure."""
    source = ListTransactionSource(make_transactions(10, 12), transient_failures=10)
    channel: queue.Queue = queue.Queue(maxsize=10)
    policy = RetryPolicy(max_retries=2, initial_delay_ms=1.0, max_delay_ms=1.0, jitter=False)
    stage = _fetch_stage(source, channel, threading.Event(), policy)

    stage.run()

    message = channel.get_nowait()
    assert isinstance(message, StageFailure)
    assert isinstance(message.error, SourceTransportError)
    assert "failed 3 times in a row at version 10" in str(message.error)
    assert source.fetch_calls == [10, 10, 10]


def test_fetch_stage_shutdown_interrupts_backoff_wait() -> None:
    """Setting the stop event should end a long retry wait promptly."""
    source = ListTransactionSource(make_transactions(10, 12), transient_failures=10)
    channel: queue.Queue = queue.Queue(maxsize=10)
    stop = threading.Event()
    policy = RetryPolicy(max_retries=5, initial_delay_ms=60_000.0, max_delay_ms=60_000.0)
    stage = _fetch_stage(source, channel, stop, policy)
    stage.start()
    threading.Timer(0.05, stop.set).start()

    stage.join(timeout=5.0)

    assert not stage.is_alive()
    assert channel.get_nowait() == StreamEnd("shutdown")
    assert source.fetch_calls == [10]
