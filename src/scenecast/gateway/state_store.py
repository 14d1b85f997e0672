"""Storage boundary for rate-limit windows and circuit breaker state.

The default store keeps everything in process memory. A shared backing store
(for example a key-value service) can be substituted by implementing
``StateStore`` without touching the limiter or breaker call sites.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass
class BreakerRecord:
    """Persisted fields of one circuit breaker channel."""
    state: str = "CLOSED"
    consecutive_failures: int = 0
    last_failure_at: Optional[float] = None


class StateStore(ABC):
    """Get/set access to limiter windows and breaker records."""

    @abstractmethod
    def get_window(self, key: str) -> List[float]:
        """Return the timestamps recorded for a rate-limit key (oldest first)."""
        pass

    @abstractmethod
    def set_window(self, key: str, timestamps: List[float]) -> None:
        pass

    @abstractmethod
    def get_breaker(self, channel: str) -> Optional[BreakerRecord]:
        pass

    @abstractmethod
    def set_breaker(self, channel: str, record: BreakerRecord) -> None:
        pass

    @abstractmethod
    def prune_windows(self, cutoff: float) -> int:
        """Drop windows whose newest timestamp is at or before ``cutoff``; returns how many."""
        pass


class InMemoryStateStore(StateStore):
    """Process-local store; safe to share between threads."""

    def __init__(self):
        self._windows: Dict[str, List[float]] = {}
        self._breakers: Dict[str, BreakerRecord] = {}
        self._lock = threading.Lock()

    def get_window(self, key: str) -> List[float]:
        with self._lock:
            return list(self._windows.get(key, ()))

    def set_window(self, key: str, timestamps: List[float]) -> None:
        with self._lock:
            if timestamps:
                self._windows[key] = list(timestamps)
            else:
                self._windows.pop(key, None)

    def get_breaker(self, channel: str) -> Optional[BreakerRecord]:
        with self._lock:
            record = self._breakers.get(channel)
            if record is None:
                return None
            return BreakerRecord(record.state, record.consecutive_failures, record.last_failure_at)

    def set_breaker(self, channel: str, record: BreakerRecord) -> None:
        with self._lock:
            self._breakers[channel] = BreakerRecord(
                record.state, record.consecutive_failures, record.last_failure_at
            )

    def prune_windows(self, cutoff: float) -> int:
        with self._lock:
            stale = [key for key, timestamps in self._windows.items() if timestamps[-1] <= cutoff]
            for key in stale:
                del self._windows[key]
        return len(stale)
