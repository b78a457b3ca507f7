import threading
import time
from datetime import datetime, timezone


_lock = threading.Lock()
_last_millis = 0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def now_millis() -> int:
    """Return the current unix time in milliseconds, never lower than a previously returned value."""

    global _last_millis

    with _lock:
        _last_millis = max(_last_millis, int(time.time() * 1000))
        return _last_millis
