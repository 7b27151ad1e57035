"""Cancellable pauses shared by the rate limiter and the retryer."""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from .exceptions import RequestCancelled


def pause(
    seconds: float,
    *,
    sleep: Callable[[float], None] = time.sleep,
    cancel: Optional[threading.Event] = None,
    what: str = "wait",
) -> None:
    """Block for ``seconds``, or until ``cancel`` is set.

    With the real ``time.sleep`` the pause waits on the event itself, so
    it ends as soon as the event fires.  An injected ``sleep`` (a fake
    clock in tests, for instance) is called as-is and the event is
    checked before and after it.

    Raises
    ------
    RequestCancelled
        If ``cancel`` is set before or during the pause.
    """
    if cancel is None:
        sleep(seconds)
        return
    if cancel.is_set():
        raise RequestCancelled(f"{what} cancelled")
    if sleep is time.sleep:
        if cancel.wait(seconds):
            raise RequestCancelled(f"{what} cancelled")
        return
    sleep(seconds)
    if cancel.is_set():
        raise RequestCancelled(f"{what} cancelled")
