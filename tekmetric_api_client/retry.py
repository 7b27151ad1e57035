"""
Bounded retries with exponential backoff and jitter.

Only failures explicitly marked temporary (HTTP 429, 5xx, transport
timeouts and connection failures) are retried.  Everything else,
including exceptions that carry no marker at all, fails on the first
attempt.  The delay before retry ``n + 1`` (``n`` counted from zero) is::

    min(2 ** (n + 1) + jitter, max_backoff_seconds)

with ``jitter`` drawn uniformly from ``[0, 1)`` seconds.  No delay
follows the final attempt.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, TypeVar

from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt

from .exceptions import RequestCancelled, is_temporary
from .timing import pause

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to retry and how long any one delay may be."""

    max_retries: int = 3
    max_backoff_seconds: float = 60.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if self.max_backoff_seconds <= 0:
            raise ValueError("max_backoff_seconds must be positive")


@dataclass(frozen=True)
class Attempt:
    """One try inside a single :meth:`Retryer.do` call."""

    index: int
    outcome: str
    backoff: Optional[float] = None


def compute_backoff(
    attempt_index: int,
    max_backoff_seconds: float,
    rng: Optional[random.Random] = None,
) -> float:
    """Return the delay in seconds after the zero-based ``attempt_index``."""
    jitter = (rng or random).random()
    return min(2.0 ** (attempt_index + 1) + jitter, float(max_backoff_seconds))


class Retryer:
    """Run an operation up to ``max_retries + 1`` times.

    Parameters
    ----------
    policy : RetryPolicy
        Retry limit and backoff cap, fixed for the retryer's lifetime.
    sleep : callable, optional
        Used for backoff delays.  With a cancellation event and the
        default ``time.sleep``, the delay waits on the event instead.
    rng : random.Random, optional
        Source of jitter.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        *,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.policy = policy
        self._sleep = sleep
        self._rng = rng or random.Random()

    def backoff(self, attempt_index: int) -> float:
        return compute_backoff(attempt_index, self.policy.max_backoff_seconds, self._rng)

    def do(self, operation: Callable[[], T], *, cancel: Optional[threading.Event] = None) -> T:
        """Call ``operation`` until it succeeds or fails permanently.

        Returns the operation's result.  On a permanent failure the
        exception is raised at once; when temporary failures exhaust
        the retry budget, the last one is raised unchanged.

        Raises
        ------
        RequestCancelled
            If ``cancel`` is set while backing off.
        """
        attempts: List[Attempt] = []

        def wait(state: RetryCallState) -> float:
            return self.backoff(state.attempt_number - 1)

        def sleep(seconds: float) -> None:
            pause(seconds, sleep=self._sleep, cancel=cancel, what="retry backoff")

        def before_sleep(state: RetryCallState) -> None:
            exc = state.outcome.exception()
            delay = state.next_action.sleep if state.next_action else None
            attempt = Attempt(index=state.attempt_number - 1, outcome="temporary", backoff=delay)
            attempts.append(attempt)
            logger.warning(
                "temporary failure on attempt %d/%d (status=%s), retrying in %.2fs",
                attempt.index + 1,
                self.policy.max_retries + 1,
                getattr(exc, "status_code", None),
                delay or 0.0,
            )

        retrying = Retrying(
            stop=stop_after_attempt(self.policy.max_retries + 1),
            wait=wait,
            retry=retry_if_exception(is_temporary),
            sleep=sleep,
            before_sleep=before_sleep,
            reraise=True,
        )
        try:
            result = retrying(operation)
        except RequestCancelled:
            logger.debug("cancelled after %d attempt(s)", len(attempts))
            raise
        except Exception as exc:
            outcome = "temporary" if is_temporary(exc) else "permanent"
            attempts.append(Attempt(index=len(attempts), outcome=outcome))
            logger.debug(
                "giving up after %d attempt(s): %s (%s)",
                len(attempts),
                outcome,
                type(exc).__name__,
            )
            raise
        attempts.append(Attempt(index=len(attempts), outcome="ok"))
        logger.debug("succeeded after %d attempt(s)", len(attempts))
        return result
