"""Cancellation and the sleep suspension point.

A run spends nearly all of its wall time sleeping between polls. Both
operator aborts and run deadlines therefore act at the sleep: a
``CancelToken`` wraps a ``threading.Event`` (plus an optional monotonic
deadline) and ``SystemSleeper`` waits on that event instead of calling
``time.sleep``, so an abort wakes the sleeping run immediately.

Cancellation is cooperative. An in-flight store query or HTTP call runs to
completion; loops check the token at each attempt boundary and stop before
scheduling another attempt.

Examples:
    >>> token = CancelToken(deadline_s=600)
    >>> sleeper = SystemSleeper(token)
    >>> sleeper.sleep(5000)        # returns early if token.cancel() is called
    >>> token.cancel("operator abort")
    >>> token.is_cancelled
    True

Tags:
    cancellation, deadline, sleep, threading, loanflow

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable

from loanflow.core.errors import RunCancelledError


class CancelToken:
    """Cooperative cancellation flag with an optional deadline.

    Safe to share between the thread that runs a workflow and the thread
    that aborts it. One token may be shared by every run of a batch.
    """

    def __init__(
        self,
        deadline_s: float | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._event = threading.Event()
        self._clock = clock
        self._deadline = clock() + deadline_s if deadline_s is not None else None
        self._reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        """Request cancellation. The first reason wins."""
        if self._reason is None:
            self._reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and self._clock() >= self._deadline:
            self.cancel("deadline exceeded")
            return True
        return False

    @property
    def reason(self) -> str | None:
        return self._reason

    def remaining_s(self) -> float | None:
        """Seconds until the deadline, or ``None`` without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def wait(self, timeout_s: float) -> bool:
        """Block up to ``timeout_s`` (bounded by the deadline).

        Returns True if the token was cancelled while waiting.
        """
        remaining = self.remaining_s()
        if remaining is not None:
            timeout_s = min(timeout_s, remaining)
        self._event.wait(max(0.0, timeout_s))
        return self.is_cancelled

    def raise_if_cancelled(self, **context: Any) -> None:
        """Raise ``RunCancelledError`` carrying ``context`` if cancelled."""
        if self.is_cancelled:
            raise RunCancelledError(f"Run cancelled: {self._reason}").with_context(**context)


class SystemSleeper:
    """Real sleeper. Waits on the cancel token so aborts wake it early."""

    def __init__(self, cancel: CancelToken | None = None):
        self._cancel = cancel

    def sleep(self, duration_ms: int) -> None:
        if duration_ms <= 0:
            return
        if self._cancel is not None:
            self._cancel.wait(duration_ms / 1000)
        else:
            time.sleep(duration_ms / 1000)
