"""
Rate limiting for the TrustCore HTTP wrapper.

Sliding window limiter keyed per caller identity.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Dict, Optional


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""
    allowed: bool
    remaining: int
    reset_at: float
    retry_after: Optional[float] = None


class RateLimiter:
    """
    Sliding window rate limiter.

    Thread-safe; each key keeps a deque of hit timestamps inside the window.
    Keys with no hits left in the window are dropped, at most one sweep per
    window, so idle callers do not accumulate.
    """

    def __init__(self, rpm: int, window_seconds: int = 60, clock: Callable[[], float] = time.time):
        """
        Args:
            rpm: Maximum requests per window
            window_seconds: Window size in seconds (default 60)
        """
        self._limit = max(1, rpm)
        self._window = window_seconds
        self._clock = clock
        self._hits: Dict[str, deque] = {}
        self._lock = threading.RLock()
        self._last_sweep = clock()

    def check(self, key: str) -> RateLimitResult:
        """
        Check the limit for key and record the hit if allowed.
        """
        now = self._clock()
        window_start = now - self._window

        with self._lock:
            if now - self._last_sweep >= self._window:
                self._sweep(window_start)
                self._last_sweep = now

            q = self._hits.get(key) or deque()
            while q and q[0] < window_start:
                q.popleft()

            current_count = len(q)
            reset_at = (q[0] + self._window) if q else (now + self._window)

            if current_count >= self._limit:
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_at=reset_at,
                    retry_after=max(0, q[0] + self._window - now)
                )

            q.append(now)
            self._hits[key] = q
            return RateLimitResult(
                allowed=True,
                remaining=self._limit - current_count - 1,
                reset_at=reset_at
            )

    def _sweep(self, window_start: float) -> None:
        stale = [k for k, q in self._hits.items() if not q or q[-1] < window_start]
        for k in stale:
            del self._hits[k]

    def reset(self, key: Optional[str] = None) -> None:
        """Reset counters for one key, or all keys."""
        with self._lock:
            if key:
                self._hits.pop(key, None)
            else:
                self._hits.clear()
