"""Sleeping that can be interrupted through a threading.Event.

Retry and wait loops block on the caller's thread. A test harness that wants
to abort them (teardown, global timeout) sets the event; the sleep wakes up
and raises Cancelled instead of running another attempt.
"""

from __future__ import annotations

import threading
from typing import Callable, Optional

from tenacity import nap

from flakeguard.domain.errors import Cancelled


def raise_if_cancelled(cancel_event: Optional[threading.Event], description: str) -> None:
    """Raise Cancelled if the event has been set."""
    if cancel_event is not None and cancel_event.is_set():
        raise Cancelled(description)


def cancellable_sleep(
    seconds: float,
    cancel_event: Optional[threading.Event] = None,
    description: str = "sleep",
    sleep: Optional[Callable[[float], None]] = None,
) -> None:
    """Sleep for ``seconds`` unless cancelled first.

    Args:
        seconds: Time to sleep; non-positive values only check for cancellation
        cancel_event: Event that aborts the sleep when set
        description: Label for the Cancelled error
        sleep: Custom sleep function (tests inject a fake clock here)

    Raises:
        Cancelled: If the event is set before or during the sleep
    """
    raise_if_cancelled(cancel_event, description)
    if seconds > 0:
        if sleep is not None:
            sleep(seconds)
        elif cancel_event is not None:
            cancel_event.wait(seconds)
        else:
            nap.sleep(seconds)
    raise_if_cancelled(cancel_event, description)
