"""Per-caller rate limiting for the PeerWager HTTP API.

Write endpoints call external oracles, so each caller gets a sliding window
per endpoint. Buckets live on the limiter instance and are dropped once they
fall out of the window, so idle callers cost nothing.
"""

from __future__ import annotations

import math
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

from starlette.responses import JSONResponse


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""

    allowed: bool
    key: str | None = None  # Which bucket triggered the limit
    retry_after: int = 60  # Seconds until a slot frees up


class RateLimiter:
    """Sliding-window counter keyed by ``(user_id, endpoint)``."""

    def __init__(self, limit: int, window_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._last_sweep = clock()

    def __len__(self) -> int:
        return len(self._hits)

    def check(self, user_id: str, endpoint: str) -> RateLimitResult:
        now = self._clock()
        if now - self._last_sweep >= self.window_seconds:
            self.sweep(now)

        key = f"user:{user_id}:{endpoint}"
        hits = self._hits.get(key)
        if hits is None:
            hits = self._hits[key] = deque()
        self._expire(hits, now)

        if len(hits) >= self.limit:
            wait = hits[0] + self.window_seconds - now
            return RateLimitResult(allowed=False, key=key, retry_after=max(1, math.ceil(wait)))

        hits.append(now)
        return RateLimitResult(allowed=True, retry_after=math.ceil(self.window_seconds))

    def sweep(self, now: float | None = None) -> None:
        """Drop every bucket with no hits left in the window."""
        now = self._clock() if now is None else now
        for key in list(self._hits):
            hits = self._hits[key]
            self._expire(hits, now)
            if not hits:
                del self._hits[key]
        self._last_sweep = now

    def clear(self) -> None:
        self._hits.clear()

    def _expire(self, hits: deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()


def rate_limit_response(result: RateLimitResult) -> JSONResponse:
    """Standard 429 response in the API error format."""
    return JSONResponse(
        {
            "error": "RateLimitExceeded",
            "message": "Too many requests. Please try again later.",
            "details": {"retry_after": result.retry_after},
        },
        status_code=429,
        headers={"Retry-After": str(result.retry_after)},
    )
