"""In-memory fixed-window rate limiter.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state, so two concurrent requests
  from the same client can never both observe a stale count.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from natours.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult


@dataclass
class _WindowState:
    window_start: float
    count: int


class InMemoryFixedWindowRateLimiter(AbstractRateLimiter):
    """Rate limiter using a fixed time window per key.

    Each key gets its own window, opened by the first request of that key
    (e.g., 100 requests per hour counted from the first one). Once the window
    has elapsed the next request opens a fresh window with a zero count.

    Important:
        This limiter is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits.
    """

    def __init__(
        self,
        *,
        limit: int,
        window_seconds: float,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the in-memory rate limiter.

        Args:
            limit: Maximum number of allowed units per window.
            window_seconds: Size of the window in seconds.
            clock: Time source function returning UNIX time in seconds.

        Raises:
            ValueError: If limit or window_seconds are invalid.
        """
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")

        self._limit = limit
        self._window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.RLock()
        self._state_by_key: dict[str, _WindowState] = {}
        self._last_sweep = clock()

    @property
    def limit(self) -> int:
        return self._limit

    def _get_or_reset_state(self, key: str, now: float) -> _WindowState:
        """Get the current state for key or restart it when its window elapsed.

        Args:
            key: Rate limit key (e.g., client IP).
            now: Current UNIX time in seconds.

        Returns:
            The current window state for this key.
        """
        state = self._state_by_key.get(key)
        if state is None or now - state.window_start >= self._window_seconds:
            state = _WindowState(window_start=now, count=0)
            self._state_by_key[key] = state
        return state

    def _sweep_expired(self, now: float) -> None:
        """Drop keys whose window has elapsed, at most once per window."""
        if now - self._last_sweep < self._window_seconds:
            return
        expired = [
            key
            for key, state in self._state_by_key.items()
            if now - state.window_start >= self._window_seconds
        ]
        for key in expired:
            del self._state_by_key[key]
        self._last_sweep = now

    def _build_result(self, *, allowed: bool, now: float, state: _WindowState) -> RateLimitResult:
        reset_at = state.window_start + self._window_seconds
        retry_after = None
        if not allowed:
            retry_after = max(1, int(math.ceil(reset_at - now)))
        return RateLimitResult(
            allowed=allowed,
            limit=self._limit,
            remaining=max(0, self._limit - state.count),
            reset_at=int(math.ceil(reset_at)),
            retry_after_seconds=retry_after,
        )

    def consume(self, key: str, *, cost: int = 1) -> RateLimitResult:
        """Count a request for the provided key.

        Every call is counted, including blocked ones, so a client that keeps
        hammering stays blocked until its window elapses.

        Args:
            key: Unique identifier for rate limiting (e.g., client IP).
            cost: Units to consume (default 1).

        Returns:
            RateLimitResult with allowance decision and metadata.

        Raises:
            ValueError: If key is empty or cost is invalid.
        """
        if cost < 1:
            raise ValueError("cost must be >= 1")
        if not key:
            raise ValueError("key must be a non-empty string")

        with self._lock:
            now = self._clock()
            self._sweep_expired(now)
            state = self._get_or_reset_state(key, now)
            state.count += cost
            allowed = state.count <= self._limit
            return self._build_result(allowed=allowed, now=now, state=state)

    def reset(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._state_by_key.clear()
            else:
                self._state_by_key.pop(key, None)
