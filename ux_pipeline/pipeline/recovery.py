"""Bounded retry of a stage's external call when the failure is a transient transport error."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

import requests
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_when_event_set,
    wait_exponential,
)

_log = logging.getLogger(__name__)

# Connection resets, timeouts and HTTP errors from the hosted functions. Unparsable model
# output and validation errors are not in this list: retrying them would repeat the same answer.
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (requests.RequestException, ConnectionError, TimeoutError)

T = TypeVar("T")


def backoff_sleep(seconds: float) -> None:
    time.sleep(seconds)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Up to max_retries extra attempts after the first one. The wait before retry n (1-based)
    is backoff_base * 2 ** (n - 1) seconds, capped at backoff_cap.
    """

    max_retries: int = 2
    backoff_base: float = 1.0
    backoff_cap: float = 5.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if self.backoff_base < 0 or self.backoff_cap < 0:
            raise ValueError("backoff times cannot be negative")


NO_RETRY = RetryPolicy(max_retries=0)


class StageRetry:
    """
    Runs one stage call under a RetryPolicy and remembers how many retries it took.

    retries is readable after call() returns or raises, so the caller can record it in the
    audit trail either way. A set cancel_event stops further attempts.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        label: str,
        cancel_event: threading.Event | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._policy = policy
        self._label = label
        self._cancel_event = cancel_event or threading.Event()
        self._sleep = sleep
        self.retries = 0

    def _log_retry(self, state: RetryCallState) -> None:
        _log.warning(
            "%s failed on attempt %s (%s); retrying in %.1fs",
            self._label,
            state.attempt_number,
            state.outcome.exception() if state.outcome is not None else "unknown error",
            state.next_action.sleep if state.next_action is not None else 0,
        )

    def call(self, fn: Callable[..., T], *args, **kwargs) -> T:
        retrying = Retrying(
            stop=stop_after_attempt(self._policy.max_retries + 1) | stop_when_event_set(self._cancel_event),
            wait=wait_exponential(multiplier=self._policy.backoff_base, max=self._policy.backoff_cap),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            sleep=self._sleep or backoff_sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                self.retries = attempt.retry_state.attempt_number - 1
                return fn(*args, **kwargs)
        raise RuntimeError(f"{self._label}: retry loop ended without a result")
