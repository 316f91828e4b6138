"""
Retrying remote calls.

A RetryPolicy is a fixed-interval, bounded-attempt wrapper around a fleet API
call. Only transient (5xx) failures are retried; everything else surfaces after
the first attempt. Two named policies cover all callers:

- READ_POLICY: listing volumes and machines (3 attempts)
- VOLUME_CREATE_POLICY: creating the builder volume (5 attempts)

Cancellation is cooperative: the CancelToken is checked before every attempt and
the pause between attempts wakes up as soon as the token is cancelled.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

from opentelemetry import trace
from tenacity import RetryCallState, RetryError, Retrying, retry_if_exception, stop_after_attempt, wait_fixed

from .errors import BuildCancelled, RetriesExhaustedError, is_transient

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancelToken:
    """Cancellation signal shared between a caller and an in-flight ensure call."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Block for up to `timeout` seconds; True if cancelled meanwhile."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self, description: str = "operation") -> None:
        if self._event.is_set():
            raise BuildCancelled(f"{description} cancelled")


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-interval retry of transient failures, bounded by a total attempt count."""

    attempts: int
    interval_sec: float = 1.0
    sleep: Optional[Callable[[float], None]] = None

    def __post_init__(self):
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")
        if self.interval_sec < 0:
            raise ValueError("interval_sec cannot be negative")

    @classmethod
    def immediate(cls, attempts: int) -> 'RetryPolicy':
        """Same budget, no pause between attempts."""
        return cls(attempts=attempts, interval_sec=0.0, sleep=lambda _seconds: None)

    def call(
        self,
        fn: Callable[..., T],
        *args: Any,
        description: str = "remote call",
        cancel: Optional[CancelToken] = None,
        **kwargs: Any,
    ) -> T:
        """
        Run fn(*args, **kwargs) under this policy.

        Raises:
            RetriesExhaustedError: every attempt failed transiently
            BuildCancelled: cancel was triggered before or between attempts
            Exception: any permanent failure, unchanged, after a single attempt
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_fixed(self.interval_sec),
            retry=retry_if_exception(is_transient),
            sleep=self._sleeper(description, cancel),
            before_sleep=self._log_retry(description),
            reraise=False,
        )

        def attempt() -> T:
            if cancel is not None:
                cancel.raise_if_cancelled(description)
            return fn(*args, **kwargs)

        try:
            return retrying(attempt)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            logger.error(f"[RETRY] {description}: giving up after {self.attempts} attempts: {last_error}")
            raise RetriesExhaustedError(description, self.attempts, last_error) from last_error

    def _sleeper(self, description: str, cancel: Optional[CancelToken]) -> Callable[[float], None]:
        sleep = self.sleep or time.sleep

        def pause(seconds: float) -> None:
            if cancel is None:
                sleep(seconds)
                return
            if self.sleep is None:
                cancelled = cancel.wait(seconds)
            else:
                sleep(seconds)
                cancelled = cancel.cancelled
            if cancelled:
                raise BuildCancelled(f"{description} cancelled")

        return pause

    def _log_retry(self, description: str) -> Callable[[RetryCallState], None]:
        def before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            status = getattr(error, "status_code", None)
            logger.warning(
                f"[RETRY] {description}: attempt {retry_state.attempt_number}/{self.attempts} "
                f"failed with server error {status}, retrying in {self.interval_sec:.1f}s"
            )
            trace.get_current_span().add_event(
                f"server error {status}",
                {"attempt": retry_state.attempt_number, "operation": description},
            )

        return before_sleep


READ_POLICY = RetryPolicy(attempts=3, interval_sec=1.0)
VOLUME_CREATE_POLICY = RetryPolicy(attempts=5, interval_sec=1.0)
