from collections import deque
from time import monotonic

from cisa.core.exceptions import RateLimited


class SlidingWindowLimiter:
    """In-process limiter keyed by caller; good enough for a single API worker."""

    def __init__(self) -> None:
        self._buckets: dict[str, deque[float]] = {}

    def hit(self, key: str, limit: int, window_seconds: int) -> None:
        now = monotonic()
        bucket = self._buckets.setdefault(key, deque())
        while bucket and (now - bucket[0]) > window_seconds:
            bucket.popleft()
        if len(bucket) >= limit:
            raise RateLimited(f"Too many requests, retry in {window_seconds}s")
        bucket.append(now)

    def reset(self) -> None:
        self._buckets.clear()


limiter = SlidingWindowLimiter()
