"""Unit tests for the sliding-window rate limiter."""

import threading

import pytest

from scenecast.gateway.rate_limiter import SlidingWindowRateLimiter, rate_limit_key
from scenecast.gateway.state_store import InMemoryStateStore


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class TestSlidingWindowRateLimiter:
    """Test admission, rejection and window pruning."""

    def test_allows_up_to_limit(self):
        limiter = SlidingWindowRateLimiter(clock=FakeClock())

        decisions = [limiter.check("user_text", limit=3, window_seconds=60) for _ in range(3)]

        assert all(d.allowed for d in decisions)
        assert [d.remaining for d in decisions] == [2, 1, 0]

    def test_rejects_over_limit_with_retry_after(self):
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(clock=clock)

        limiter.check("user_text", 2, 60)
        clock.advance(10)
        limiter.check("user_text", 2, 60)
        clock.advance(5)
        decision = limiter.check("user_text", 2, 60)

        assert not decision.allowed
        assert decision.remaining == 0
        # oldest request was 15s ago, so a slot frees in 45s
        assert decision.retry_after == pytest.approx(45.0)

    def test_rejected_request_is_not_recorded(self):
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(clock=clock)

        limiter.check("k", 1, 60)
        for _ in range(5):
            assert not limiter.check("k", 1, 60).allowed

        clock.advance(60)
        assert limiter.check("k", 1, 60).allowed

    def test_window_slides(self):
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(clock=clock)

        limiter.check("k", 2, 60)
        clock.advance(30)
        limiter.check("k", 2, 60)
        clock.advance(31)

        # first request has aged out, second is still inside the window
        decision = limiter.check("k", 2, 60)
        assert decision.allowed
        assert decision.remaining == 0

    def test_keys_are_isolated(self):
        limiter = SlidingWindowRateLimiter(clock=FakeClock())

        limiter.check(rate_limit_key("alice", "text"), 1, 60)

        assert not limiter.check(rate_limit_key("alice", "text"), 1, 60).allowed
        assert limiter.check(rate_limit_key("bob", "text"), 1, 60).allowed
        assert limiter.check(rate_limit_key("alice", "image"), 1, 60).allowed

    def test_status_does_not_record(self):
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(clock=clock)

        limiter.check("k", 5, 60)
        clock.advance(20)
        status = limiter.status("k", 5, 60)

        assert status.remaining == 4
        assert status.limit == 5
        assert status.reset_in_seconds == pytest.approx(40.0)
        assert limiter.status("k", 5, 60).remaining == 4

    def test_status_of_unused_key(self):
        status = SlidingWindowRateLimiter(clock=FakeClock()).status("fresh", 15, 60)
        assert status.remaining == 15
        assert status.reset_in_seconds == 0.0

    def test_reset_clears_key(self):
        limiter = SlidingWindowRateLimiter(clock=FakeClock())
        limiter.check("k", 1, 60)
        limiter.reset("k")
        assert limiter.check("k", 1, 60).allowed

    def test_state_lives_in_store(self):
        store = InMemoryStateStore()
        clock = FakeClock()
        first = SlidingWindowRateLimiter(store=store, clock=clock)
        second = SlidingWindowRateLimiter(store=store, clock=clock)

        first.check("shared", 1, 60)

        assert not second.check("shared", 1, 60).allowed
        assert store.get_window("shared") == [clock.now]

    def test_idle_windows_are_swept_from_store(self):
        store = InMemoryStateStore()
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(store=store, clock=clock, sweep_interval_seconds=60)

        for caller in ("alice", "bob", "carol"):
            limiter.check(rate_limit_key(caller, "text"), 5, 60)
        clock.advance(30)
        limiter.check("dave_text", 5, 60)
        clock.advance(45)
        limiter.check("erin_text", 5, 60)

        assert store.get_window("alice_text") == []
        assert store.get_window("dave_text") == [clock.now - 45]
        assert store.get_window("erin_text") == [clock.now]

    def test_sweep_keeps_windows_of_longest_limit(self):
        store = InMemoryStateStore()
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(store=store, clock=clock, sweep_interval_seconds=10)

        limiter.check("daily", 1, 3600)
        clock.advance(120)
        limiter.check("minute", 1, 60)

        assert not limiter.check("daily", 1, 3600).allowed

    def test_invalid_arguments(self):
        limiter = SlidingWindowRateLimiter()
        with pytest.raises(ValueError):
            limiter.check("k", 0, 60)
        with pytest.raises(ValueError):
            limiter.check("k", 1, 0)

    def test_concurrent_checks_never_exceed_limit(self):
        limiter = SlidingWindowRateLimiter(clock=FakeClock())
        allowed = []
        lock = threading.Lock()

        def worker():
            for _ in range(20):
                decision = limiter.check("busy", 25, 60)
                if decision.allowed:
                    with lock:
                        allowed.append(decision)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(allowed) == 25


class TestRateLimitKey:
    """Test limiter key construction."""

    def test_caller_and_operation(self):
        assert rate_limit_key("user-1", "text") == "user-1_text"

    def test_platform_default(self):
        assert rate_limit_key(None, "speech") == "platform_speech"
