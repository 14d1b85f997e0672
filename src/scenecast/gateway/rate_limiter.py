"""Sliding-window rate limiting keyed by caller and operation type."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from scenecast.gateway.state_store import InMemoryStateStore, StateStore


logger = logging.getLogger(__name__)


# Identity used when a call is not attributed to a specific caller
PLATFORM_CALLER = "platform"


def rate_limit_key(caller_id: Optional[str], operation: str) -> str:
    """Build the limiter key for a caller and operation type.

    >>> rate_limit_key("user-1", "text")
    'user-1_text'
    >>> rate_limit_key(None, "image")
    'platform_image'
    """
    return f"{caller_id or PLATFORM_CALLER}_{operation}"


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a single limiter check.

    Attributes:
        allowed: True if the request was admitted and recorded
        remaining: Requests still available in the current window
        retry_after: Seconds until a slot frees up (0.0 when allowed)
    """
    allowed: bool
    remaining: int
    retry_after: float = 0.0


@dataclass(frozen=True)
class RateLimitStatus:
    """Read-only view of a key's window."""
    limit: int
    remaining: int
    reset_in_seconds: float


class SlidingWindowRateLimiter:
    """Counts requests per key over a trailing time window.

    Timestamps are pruned lazily on every check. Windows of keys that have
    gone idle are swept from the store at most once per
    ``sweep_interval_seconds``. Reads and writes for the same limiter are
    serialized with a lock so concurrent checks cannot admit more than
    ``limit`` requests per window.
    """

    def __init__(
        self,
        store: Optional[StateStore] = None,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval_seconds: float = 60.0
    ):
        self.store = store or InMemoryStateStore()
        self.clock = clock
        self.sweep_interval_seconds = sweep_interval_seconds
        self._lock = threading.Lock()
        self._longest_window = 0.0
        self._last_sweep: Optional[float] = None

    def check(self, key: str, limit: int, window_seconds: float) -> RateLimitDecision:
        """Admit and record a request, or reject it with a retry_after hint."""
        if limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}")
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {window_seconds}")

        with self._lock:
            now = self.clock()
            self._sweep_idle(now, window_seconds)
            timestamps = self._prune(self.store.get_window(key), now, window_seconds)

            if len(timestamps) < limit:
                timestamps.append(now)
                self.store.set_window(key, timestamps)
                return RateLimitDecision(allowed=True, remaining=limit - len(timestamps))

            self.store.set_window(key, timestamps)
            retry_after = max(0.0, window_seconds - (now - timestamps[0]))

        logger.warning(
            f"Rate limit exceeded for {key}: {limit} requests per {window_seconds:g}s, "
            f"retry in {retry_after:.2f}s"
        )
        return RateLimitDecision(allowed=False, remaining=0, retry_after=retry_after)

    def status(self, key: str, limit: int, window_seconds: float) -> RateLimitStatus:
        """Report remaining requests and time until the window frees a slot.

        Does not record a request.
        """
        with self._lock:
            now = self.clock()
            timestamps = self._prune(self.store.get_window(key), now, window_seconds)

        remaining = max(0, limit - len(timestamps))
        reset_in = window_seconds - (now - timestamps[0]) if timestamps else 0.0
        return RateLimitStatus(limit=limit, remaining=remaining, reset_in_seconds=max(0.0, reset_in))

    def reset(self, key: str) -> None:
        """Forget all requests recorded for a key."""
        with self._lock:
            self.store.set_window(key, [])

    def _sweep_idle(self, now: float, window_seconds: float) -> None:
        self._longest_window = max(self._longest_window, window_seconds)
        if self._last_sweep is None:
            self._last_sweep = now
            return
        if now - self._last_sweep < self.sweep_interval_seconds:
            return
        self._last_sweep = now
        removed = self.store.prune_windows(now - self._longest_window)
        if removed:
            logger.debug(f"Swept {removed} idle rate-limit window(s)")

    @staticmethod
    def _prune(timestamps, now: float, window_seconds: float):
        return [ts for ts in timestamps if now - ts < window_seconds]


def summarize_limits(limits: Dict[str, int]) -> str:
    """Render per-operation limits for log lines."""
    return ", ".join(f"{operation}={limit}" for operation, limit in sorted(limits.items()))
