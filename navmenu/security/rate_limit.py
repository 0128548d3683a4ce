"""
In-memory sliding-window rate limiter for the public menu API
"""
import logging
import threading
import time
from collections import deque
from typing import Deque, Dict, Optional

from fastapi import Request

from navmenu.config import settings

logger = logging.getLogger(__name__)


class RateLimitExceeded(Exception):
    def __init__(self, client: str, retry_after: int):
        super().__init__(f"Rate limit exceeded for {client}")
        self.client = client
        self.retry_after = retry_after


class SlidingWindowRateLimiter:
    """At most ``limit`` hits per ``window_seconds`` for each client key"""

    def __init__(self, limit: int, window_seconds: float = 60.0):
        self.limit = limit
        self.window_seconds = window_seconds
        self._hits: Dict[str, Deque[float]] = {}
        self._last_sweep: Optional[float] = None
        self._lock = threading.Lock()

    def __len__(self) -> int:
        """Number of clients currently tracked"""
        with self._lock:
            return len(self._hits)

    def hit(self, key: str, now: Optional[float] = None) -> int:
        """
        Record one request for ``key``.

        Returns:
            0 when allowed, otherwise the number of seconds until a slot frees up
        """
        now = time.monotonic() if now is None else now
        cutoff = now - self.window_seconds
        with self._lock:
            self._maybe_sweep(now, cutoff)
            hits = self._hits.get(key)
            if hits is not None:
                while hits and hits[0] <= cutoff:
                    hits.popleft()
                if len(hits) >= self.limit:
                    return max(1, int(hits[0] - cutoff + 0.999))
            else:
                hits = self._hits[key] = deque()
            hits.append(now)
            return 0

    def _maybe_sweep(self, now: float, cutoff: float) -> None:
        """Drop clients with no hit inside the window, at most once per window"""
        if self._last_sweep is None:
            self._last_sweep = now
            return
        if now - self._last_sweep < self.window_seconds:
            return
        expired = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in expired:
            del self._hits[key]
        self._last_sweep = now
        if expired:
            logger.debug(f"Rate limiter evicted {len(expired)} idle clients")

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
            self._last_sweep = None


public_rate_limiter = SlidingWindowRateLimiter(settings.RATE_LIMIT_PER_MINUTE, 60.0)


def enforce_public_rate_limit(request: Request) -> None:
    """Dependency for the public routes, keyed by client IP"""
    client = request.client.host if request.client else "unknown"
    retry_after = public_rate_limiter.hit(client)
    if retry_after:
        logger.warning(f"Public menu API rate limit hit by {client}")
        raise RateLimitExceeded(client, retry_after)
