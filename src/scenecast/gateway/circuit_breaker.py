"""Three-state circuit breaker guarding a provider channel.

CLOSED passes calls through and counts consecutive failures. Reaching the
threshold opens the circuit; while OPEN every call is rejected without
invoking the wrapped operation. Once the recovery timeout has elapsed a
single probe call is let through (HALF_OPEN): success closes the circuit,
failure re-opens it with a fresh cooldown.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, TypeVar

from scenecast.gateway.errors import CircuitOpenError
from scenecast.gateway.state_store import BreakerRecord, InMemoryStateStore, StateStore


logger = logging.getLogger(__name__)


T = TypeVar('T')


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(frozen=True)
class BreakerSnapshot:
    """Point-in-time view of a breaker, for health reporting."""
    channel: str
    state: CircuitState
    consecutive_failures: int
    last_failure_at: Optional[float]


class CircuitBreaker:
    """Failure gate for one (provider, operation) channel.

    Args:
        channel: Name used in logs and rejection errors
        failure_threshold: Consecutive failures that open the circuit
        recovery_timeout: Seconds the circuit stays OPEN before a probe
        store: Where state is persisted (in-memory by default)
        clock: Monotonic time source
        on_transition: Optional callback(channel, old_state, new_state)
    """

    def __init__(
        self,
        channel: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        store: Optional[StateStore] = None,
        clock: Callable[[], float] = time.monotonic,
        on_transition: Optional[Callable[[str, CircuitState, CircuitState], None]] = None
    ):
        if failure_threshold < 1:
            raise ValueError(f"failure_threshold must be at least 1, got {failure_threshold}")
        self.channel = channel
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.store = store or InMemoryStateStore()
        self.clock = clock
        self.on_transition = on_transition
        self._lock = threading.Lock()
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        return self.snapshot().state

    @property
    def consecutive_failures(self) -> int:
        return self.snapshot().consecutive_failures

    def snapshot(self) -> BreakerSnapshot:
        with self._lock:
            record = self._load()
        return BreakerSnapshot(
            channel=self.channel,
            state=CircuitState(record.state),
            consecutive_failures=record.consecutive_failures,
            last_failure_at=record.last_failure_at
        )

    def execute(self, func: Callable[[], T]) -> T:
        """Run ``func`` through the breaker.

        Raises:
            CircuitOpenError: If the circuit rejects the call; ``func`` is
                not invoked in that case
            Exception: Whatever ``func`` raises, after recording the failure
        """
        is_probe = self._admit()
        try:
            result = func()
        except Exception:
            self._record_failure(is_probe)
            raise
        except BaseException:
            # Interrupted probe has no outcome; let the next call probe instead
            if is_probe:
                with self._lock:
                    self._probe_in_flight = False
            raise
        self._record_success(is_probe)
        return result

    def reset(self) -> None:
        """Force the breaker back to CLOSED with a zero failure count."""
        with self._lock:
            old = CircuitState(self._load().state)
            self._probe_in_flight = False
            self.store.set_breaker(self.channel, BreakerRecord())
        self._notify(old, CircuitState.CLOSED)

    def _admit(self) -> bool:
        """Decide whether a call may proceed; returns True for a probe call."""
        transition = None
        with self._lock:
            record = self._load()
            state = CircuitState(record.state)
            now = self.clock()

            if state == CircuitState.OPEN:
                elapsed = now - (record.last_failure_at or now)
                if elapsed <= self.recovery_timeout:
                    raise CircuitOpenError(self.channel, retry_after=self.recovery_timeout - elapsed)
                record.state = CircuitState.HALF_OPEN.value
                self.store.set_breaker(self.channel, record)
                transition = (CircuitState.OPEN, CircuitState.HALF_OPEN)
                state = CircuitState.HALF_OPEN

            if state == CircuitState.HALF_OPEN:
                if self._probe_in_flight:
                    raise CircuitOpenError(self.channel)
                self._probe_in_flight = True
                is_probe = True
            else:
                is_probe = False

        if transition:
            self._notify(*transition)
        return is_probe

    def _record_success(self, is_probe: bool) -> None:
        with self._lock:
            record = self._load()
            old = CircuitState(record.state)
            if is_probe:
                self._probe_in_flight = False
            self.store.set_breaker(self.channel, BreakerRecord(
                state=CircuitState.CLOSED.value,
                consecutive_failures=0,
                last_failure_at=record.last_failure_at
            ))
        self._notify(old, CircuitState.CLOSED)

    def _record_failure(self, is_probe: bool) -> None:
        with self._lock:
            record = self._load()
            old = CircuitState(record.state)
            now = self.clock()
            record.consecutive_failures += 1
            record.last_failure_at = now

            if is_probe:
                self._probe_in_flight = False
                record.state = CircuitState.OPEN.value
            elif old == CircuitState.CLOSED and record.consecutive_failures >= self.failure_threshold:
                record.state = CircuitState.OPEN.value

            self.store.set_breaker(self.channel, record)
            new = CircuitState(record.state)
        self._notify(old, new)

    def _load(self) -> BreakerRecord:
        return self.store.get_breaker(self.channel) or BreakerRecord()

    def _notify(self, old: CircuitState, new: CircuitState) -> None:
        if old == new:
            return
        log = logger.warning if new == CircuitState.OPEN else logger.info
        log(f"Circuit breaker {self.channel}: {old.value} -> {new.value}")
        if self.on_transition:
            self.on_transition(self.channel, old, new)
