"""
Login rate limiter — per-identifier attempt throttling.

Keyed by the normalized login identifier (email), so it throttles even
for addresses that were never registered.  State is process-local and
non-durable: a restart clears every counter.  The durable per-account
counter is the lockout tracker.

One instance is created per application (see `app.main.create_app`)
and swept periodically by the scheduler.
"""

import logging
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    allowed: bool
    remaining_attempts: int = 0
    retry_after: int = 0


@dataclass(slots=True)
class _Window:
    attempts: int
    reset_at: float


class LoginRateLimiter:
    """Fixed-window attempt counter per key."""

    def __init__(
        self,
        max_attempts: int = 5,
        window_seconds: float = 15 * 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: dict[str, _Window] = {}

    @staticmethod
    def _key(identifier: str) -> str:
        return f"login:{identifier}"

    def check(self, identifier: str) -> RateLimitDecision:
        """Count one attempt for `identifier`, or deny if the window is full."""
        key = self._key(identifier)
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or now > window.reset_at:
                window = _Window(attempts=0, reset_at=now + self.window_seconds)
                self._windows[key] = window

            if window.attempts >= self.max_attempts:
                retry_after = max(1, math.ceil(window.reset_at - now))
                logger.warning("Login rate limit hit for %s (retry in %ss)", identifier, retry_after)
                return RateLimitDecision(allowed=False, retry_after=retry_after)

            window.attempts += 1
            return RateLimitDecision(
                allowed=True,
                remaining_attempts=self.max_attempts - window.attempts,
            )

    def reset(self, identifier: str) -> None:
        """Forget `identifier` entirely (called after a successful login)."""
        with self._lock:
            self._windows.pop(self._key(identifier), None)

    def sweep(self) -> int:
        """Drop windows that have already elapsed; returns how many."""
        now = self._clock()
        with self._lock:
            stale = [key for key, window in self._windows.items() if now > window.reset_at]
            for key in stale:
                del self._windows[key]
        if stale:
            logger.debug("Rate limiter sweep removed %d stale window(s)", len(stale))
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._windows.clear()

    def __len__(self) -> int:
        return len(self._windows)
