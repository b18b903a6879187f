"""Retry policy with exponential backoff.

This module turns a ``RetryPolicy`` into a tenacity ``Retrying`` controller
for operations that may fail transiently, such as source fetches and sink
commits. Exhausted budgets surface as ``tenacity.RetryError``.
"""

from __future__ import annotations

from dataclasses import dataclass
import threading
import time
from typing import Callable, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_when_event_set,
    wait_exponential,
    wait_random,
)
from tenacity.wait import wait_base

from core.constants import (
    DEFAULT_SINK_MAX_RETRIES,
    DEFAULT_SINK_MAX_RETRY_DELAY_MS,
    DEFAULT_SINK_RETRY_DELAY_MS,
)

T = TypeVar("T")

RetryCallback = Callable[[int, BaseException, float], None]


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget and backoff shape.

    Attributes:
        max_retries: Retries allowed after the first attempt.
        initial_delay_ms: Delay before the first retry.
        max_delay_ms: Upper bound for the exponential part of any delay.
        backoff_multiplier: Growth factor between consecutive delays.
        jitter: Whether to add up to half the initial delay at random.
    """

    max_retries: int = DEFAULT_SINK_MAX_RETRIES
    initial_delay_ms: float = DEFAULT_SINK_RETRY_DELAY_MS
    max_delay_ms: float = DEFAULT_SINK_MAX_RETRY_DELAY_MS
    backoff_multiplier: float = 2.0
    jitter: bool = True

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


def backoff_wait(policy: RetryPolicy) -> wait_base:
    """Build the tenacity wait strategy for a policy."""
    wait: wait_base = wait_exponential(
        multiplier=policy.initial_delay_ms / 1000.0,
        max=policy.max_delay_ms / 1000.0,
        exp_base=policy.backoff_multiplier,
    )
    if policy.jitter:
        wait = wait + wait_random(0, policy.initial_delay_ms / 2000.0)
    return wait


def build_retrying(
    policy: RetryPolicy,
    retryable: tuple[type[BaseException], ...],
    on_retry: RetryCallback | None = None,
    sleep: Callable[[float], object] = time.sleep,
    stop_event: threading.Event | None = None,
) -> Retrying:
    """Create a retry controller for one operation.

    Args:
        policy: Retry budget and backoff shape.
        retryable: Exception types treated as transient.
        on_retry: Optional callback receiving (attempt, error, delay) before
            each wait.
        sleep: Sleep function. An ``Event.wait`` makes the wait interruptible.
        stop_event: Event that ends retrying early once set.

    Returns:
        Configured ``Retrying`` instance. Errors outside ``retryable``
        propagate unchanged; an exhausted budget raises ``RetryError``.
    """
    stop = stop_after_attempt(policy.max_attempts)
    if stop_event is not None:
        stop = stop | stop_when_event_set(stop_event)

    def _before_sleep(retry_state: RetryCallState) -> None:
        if on_retry is None or retry_state.outcome is None:
            return
        delay = retry_state.next_action.sleep if retry_state.next_action is not None else 0.0
        on_retry(retry_state.attempt_number, retry_state.outcome.exception(), delay)

    return Retrying(
        stop=stop,
        wait=backoff_wait(policy),
        retry=retry_if_exception_type(retryable),
        sleep=sleep,
        before_sleep=_before_sleep,
    )


def call_with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy,
    retryable: tuple[type[BaseException], ...],
    on_retry: RetryCallback | None = None,
    sleep: Callable[[float], object] = time.sleep,
) -> T:
    """Run an operation, retrying retryable errors with backoff.

    Raises:
        tenacity.RetryError: If every attempt raised a retryable error.
    """
    return build_retrying(policy, retryable, on_retry=on_retry, sleep=sleep)(operation)
