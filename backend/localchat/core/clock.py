"""
Millisecond timestamps for sessions and messages.

Messages are ordered by timestamp, so two messages created back to back
must never share one. now_ms() is strictly increasing within the process.
"""
import threading
import time

_lock = threading.Lock()
_last_ms = 0


def now_ms() -> int:
    """Return the current epoch time in milliseconds, never repeating a value."""
    global _last_ms
    with _lock:
        current = int(time.time() * 1000)
        if current <= _last_ms:
            current = _last_ms + 1
        _last_ms = current
        return current
