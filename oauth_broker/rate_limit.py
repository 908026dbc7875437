"""
In-memory sliding-window rate limiting per key (e.g. per IP).
Used for POST /register and POST /token to curb registration spam and code guessing.
"""
import math
import threading
import time

from oauth_broker.errors import RateLimited


class SlidingWindowLimiter:
    def __init__(self, window_seconds: int = 60, clock=time.monotonic):
        self._window = window_seconds
        self._clock = clock
        self._hits: dict[str, list[float]] = {}
        self._lock = threading.Lock()

    def check_and_consume(self, key: str, limit: int) -> tuple[bool, int | None]:
        """
        Record a request for key if it is under limit within the window.
        Returns (allowed, retry_after_seconds); retry_after is >= 1 when not allowed.
        """
        if limit <= 0:
            return True, None
        now = self._clock()
        cutoff = now - self._window
        with self._lock:
            hits = [t for t in self._hits.get(key, []) if t > cutoff]
            if len(hits) >= limit:
                self._hits[key] = hits
                retry_after = max(1, math.ceil(self._window - (now - hits[0])))
                return False, retry_after
            hits.append(now)
            self._hits[key] = hits
            return True, None

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


limiter = SlidingWindowLimiter()


def enforce(key: str, limit: int) -> None:
    """Raise RateLimited (429 + Retry-After) when key is over limit."""
    allowed, retry_after = limiter.check_and_consume(key, limit)
    if not allowed:
        raise RateLimited(retry_after)
