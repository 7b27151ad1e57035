"""
Token bucket limiter bounding the client's outbound request rate.

The bucket starts full at ``burst`` tokens and refills continuously at
``rate`` tokens per second.  Every request takes one token.  A caller
that finds the bucket empty still takes its token at once, driving the
balance below zero, and then sleeps for exactly as long as the refill
needs to cover the debt.  Concurrent callers therefore queue up behind
one another instead of re-checking the bucket in a loop.  One limiter
is shared by every thread using a client instance.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from .exceptions import RequestCancelled
from .timing import pause

logger = logging.getLogger(__name__)


class RateLimiter:
    """Thread-safe token bucket.

    Parameters
    ----------
    rate : float
        Sustained tokens per second.
    burst : int
        Bucket capacity.
    clock, sleep : callable, optional
        Monotonic clock and sleep function.  Injected by tests.
    """

    def __init__(
        self,
        rate: float,
        burst: int,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if rate <= 0:
            raise ValueError("rate must be positive")
        if burst < 1:
            raise ValueError("burst must be at least 1")
        self.rate = float(rate)
        self.burst = int(burst)
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(burst)
        self._last_refill = clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate)
        self._last_refill = now

    def _reserve(self) -> float:
        """Take a token and return how long to wait before using it."""
        with self._lock:
            self._refill()
            self._tokens -= 1.0
            if self._tokens >= 0.0:
                return 0.0
            return -self._tokens / self.rate

    def _release(self) -> None:
        with self._lock:
            self._tokens = min(float(self.burst), self._tokens + 1.0)

    def try_acquire(self) -> bool:
        """Take a token without blocking; return whether one was taken."""
        with self._lock:
            self._refill()
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            return False

    @property
    def available(self) -> float:
        """Tokens currently in the bucket; negative while callers are queued."""
        with self._lock:
            self._refill()
            return self._tokens

    def wait(self, *, cancel: Optional[threading.Event] = None) -> None:
        """Block until this caller's token is due.

        Raises
        ------
        RequestCancelled
            If ``cancel`` is set before or during the wait.  A token
            taken for a cancelled wait is returned to the bucket.
        """
        if cancel is not None and cancel.is_set():
            raise RequestCancelled("rate limiter wait cancelled")
        delay = self._reserve()
        if delay == 0.0:
            return
        logger.debug("rate limited, waiting %.3fs for capacity", delay)
        try:
            pause(delay, sleep=self._sleep, cancel=cancel, what="rate limiter wait")
        except RequestCancelled:
            self._release()
            raise
