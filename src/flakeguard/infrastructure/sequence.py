"""Process-wide run identifiers for correlating retry and wait log lines."""

import itertools
import threading

_counter = itertools.count(1)
_lock = threading.Lock()


def next_sequence_id(prefix: str = "run") -> str:
    """Return a unique, monotonically increasing id such as ``retry-42``."""
    with _lock:
        value = next(_counter)
    return f"{prefix}-{value}"
