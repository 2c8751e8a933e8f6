# Overview: Retry and deadline helpers for multi-step database work.

from __future__ import annotations

import threading
import time

from ..errors import DeadlineExceededError, PersistenceError


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries PersistenceErrors flagged retryable by the repository
    (OperationalError: deadlocks, locks; StaleDataError: optimistic locking
    conflicts). Everything else propagates immediately.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except PersistenceError as exc:
            if not exc.retryable:
                raise
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


class Deadline:
    """
    Deadline and cancellation signal for commit/cancel.

    Checked between protocol steps, never in the middle of a DB write.
    `clock` is injectable for tests.
    """

    def __init__(self, seconds: float | None = None, *, clock=time.monotonic):
        self._clock = clock
        self._expires_at = clock() + seconds if seconds is not None else None
        self._cancelled = threading.Event()

    @classmethod
    def after(cls, seconds: float | None) -> "Deadline":
        return cls(seconds)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self._expires_at is not None and self._clock() >= self._expires_at

    def remaining(self) -> float | None:
        if self._expires_at is None:
            return None
        return max(self._expires_at - self._clock(), 0.0)

    def check(self, step: str) -> None:
        if self.expired:
            reason = "cancelled" if self.cancelled else "deadline exceeded"
            raise DeadlineExceededError(f"Operation {reason} before {step}", details={"step": step})


def deadline_expired(deadline: Deadline | None) -> bool:
    return deadline is not None and deadline.expired
