"""
auth/ratelimit.py -- Per-source, per-route limiter for credential submission.

Built on the `limits` library (the engine under slowapi) with the
moving-window strategy: each (source, route) key keeps the timestamps of its
allowed attempts, and a new attempt is allowed only while fewer than `limit`
of them fall inside the trailing window. A denied attempt is not recorded,
so a blocked client does not push its own recovery further out.

One RateLimiter instance is created in the app lifespan and stored on
app.state -- there is no module-level limiter. MemoryStorage guards each key
with its own lock and expires stale keys on a background timer; correctness
only depends on the window filter applied at check time.

Limitation: state is per process. Behind a load balancer with N instances a
client gets up to N * limit attempts per window. Distributed limiting is out
of scope.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
import math
import time

from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter

logger = logging.getLogger("passport.auth")


class RateLimiter:
    """Moving-window limiter keyed by (source, route).

    Usage:
        limiter = RateLimiter(limit=10, window_seconds=180)
        if not limiter.allow("203.0.113.7", "signin"):
            raise RateLimited(retry_after=limiter.retry_after("203.0.113.7", "signin"))
    """

    def __init__(self, limit: int = 10, window_seconds: int = 180) -> None:
        if limit < 1 or window_seconds < 1:
            raise ValueError("limit and window_seconds must be positive")
        self.limit = limit
        self.window_seconds = window_seconds
        self._item = RateLimitItemPerSecond(limit, window_seconds)
        self._storage = MemoryStorage()
        self._strategy = MovingWindowRateLimiter(self._storage)

    def allow(self, source: str, route: str) -> bool:
        """Record and allow one attempt, or deny it without recording."""
        allowed = self._strategy.hit(self._item, source, route)
        if not allowed:
            logger.warning("Rate limit exceeded for %s on %s", source, route)
        return allowed

    def retry_after(self, source: str, route: str) -> int:
        """Seconds until the oldest attempt in the window expires (at least 1)."""
        stats = self._strategy.get_window_stats(self._item, source, route)
        return max(1, math.ceil(stats.reset_time - time.time()))

    def reset(self) -> None:
        """Forget every bucket."""
        self._storage.reset()
