"""
Unit tests for the fixed-window rate limiter.

Tests admission counting, window reset, disabled mode, cleanup and
concurrent admission for a single actor.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

import pytest

from genai_gateway.core.rate_limiter import UNBOUNDED, RateLimiter


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestAdmission:
    """Test admission decisions inside one window."""

    def setup_method(self):
        self.clock = FakeClock()
        self.limiter = RateLimiter(limit=5, window_seconds=60, clock=self.clock)

    def test_limit_calls_admitted_then_rejected(self):
        """Five calls pass, the sixth is rejected."""
        results = [self.limiter.is_allowed("u1") for _ in range(5)]
        assert results == [True, True, True, True, True]
        assert self.limiter.is_allowed("u1") is False
        assert self.limiter.get_remaining("u1") == 0

    def test_remaining_counts_down(self):
        """Remaining equals limit minus admissions in the window."""
        assert self.limiter.get_remaining("u1") == 5
        for expected in (4, 3, 2, 1, 0):
            self.limiter.is_allowed("u1")
            assert self.limiter.get_remaining("u1") == expected

    def test_rejections_do_not_go_negative(self):
        """Remaining is clamped at zero after repeated rejections."""
        for _ in range(9):
            self.limiter.is_allowed("u1")
        assert self.limiter.get_remaining("u1") == 0

    def test_actors_are_independent(self):
        """Exhausting one actor leaves the others untouched."""
        for _ in range(5):
            self.limiter.is_allowed("u1")
        assert self.limiter.is_allowed("u1") is False
        assert self.limiter.is_allowed("u2") is True
        assert self.limiter.get_remaining("u2") == 4

    def test_missing_actor_uses_anonymous(self):
        """None and blank actors share the anonymous window."""
        self.limiter.is_allowed(None)
        self.limiter.is_allowed("")
        assert self.limiter.get_remaining("anonymous") == 3

    def test_reset_time_absent_before_first_call(self):
        """Actors without a window have no reset time."""
        assert self.limiter.get_reset_time("u1") is None

    def test_reset_time_is_window_end(self):
        """Reset time is window start plus window length."""
        start = self.clock.now
        self.limiter.is_allowed("u1")
        assert self.limiter.get_reset_time("u1") == datetime.fromtimestamp(start + 60)


class TestWindowReset:
    """Test that expired windows start over."""

    def setup_method(self):
        self.clock = FakeClock()
        self.limiter = RateLimiter(limit=2, window_seconds=60, clock=self.clock)

    def test_window_resets_after_length(self):
        """An exhausted actor is admitted again once the window elapses."""
        assert self.limiter.is_allowed("u1")
        assert self.limiter.is_allowed("u1")
        assert self.limiter.is_allowed("u1") is False

        self.clock.advance(60)

        assert self.limiter.is_allowed("u1") is True
        assert self.limiter.get_remaining("u1") == 1

    def test_window_not_reset_before_length(self):
        """The window holds until its full length has passed."""
        self.limiter.is_allowed("u1")
        self.limiter.is_allowed("u1")
        self.clock.advance(59.9)
        assert self.limiter.is_allowed("u1") is False

    def test_expired_window_reports_full_quota(self):
        """Remaining treats an expired window as a fresh one."""
        self.limiter.is_allowed("u1")
        self.limiter.is_allowed("u1")
        self.clock.advance(61)
        assert self.limiter.get_remaining("u1") == 2

    def test_boundary_burst_admits_twice_limit(self):
        """Fixed windows allow a full burst on each side of a boundary."""
        admitted = sum(self.limiter.is_allowed("u1") for _ in range(2))
        self.clock.advance(60)
        admitted += sum(self.limiter.is_allowed("u1") for _ in range(2))
        assert admitted == 4

    def test_new_window_moves_reset_time(self):
        """A reset window reports its own end time."""
        self.limiter.is_allowed("u1")
        self.clock.advance(75)
        self.limiter.is_allowed("u1")
        assert self.limiter.get_reset_time("u1") == datetime.fromtimestamp(self.clock.now + 60)


class TestDisabled:
    """Test the disabled limiter."""

    def test_always_allows(self):
        """Every call is admitted and no state is kept."""
        limiter = RateLimiter(limit=1, enabled=False)
        assert all(limiter.is_allowed("u1") for _ in range(100))
        assert len(limiter) == 0

    def test_remaining_is_unbounded(self):
        limiter = RateLimiter(limit=1, enabled=False)
        assert limiter.get_remaining("u1") == UNBOUNDED
        assert limiter.get_remaining(None) == UNBOUNDED

    def test_reset_time_is_absent(self):
        limiter = RateLimiter(limit=1, enabled=False)
        limiter.is_allowed("u1")
        assert limiter.get_reset_time("u1") is None


class TestCleanup:
    """Test removal of stale windows."""

    def setup_method(self):
        self.clock = FakeClock()
        self.limiter = RateLimiter(limit=5, window_seconds=60, clock=self.clock)

    def test_removes_only_stale_windows(self):
        """Windows older than twice the window length are dropped."""
        self.limiter.is_allowed("old")
        self.clock.advance(90)
        self.limiter.is_allowed("recent")
        self.clock.advance(40)

        removed = self.limiter.cleanup()

        assert removed == 1
        assert len(self.limiter) == 1
        assert self.limiter.get_reset_time("old") is None
        assert self.limiter.get_reset_time("recent") is not None

    def test_keeps_active_window(self):
        """An exhausted but active window survives cleanup."""
        for _ in range(5):
            self.limiter.is_allowed("u1")
        self.clock.advance(30)

        assert self.limiter.cleanup() == 0
        assert self.limiter.is_allowed("u1") is False

    def test_window_recreated_after_cleanup(self):
        """A cleaned-up actor starts with a full window."""
        self.limiter.is_allowed("u1")
        self.clock.advance(121)
        self.limiter.cleanup()

        assert self.limiter.get_remaining("u1") == 5
        assert self.limiter.is_allowed("u1") is True
        assert self.limiter.get_remaining("u1") == 4

    def test_overlapping_cleanups_keep_fresh_window(self):
        """A cleanup working from an old snapshot leaves a newer window alone.

        The second cleanup is paused on the stale window's lock while another
        cleanup removes it and the actor is admitted into a fresh window.
        """
        self.limiter.is_allowed("u1")
        self.clock.advance(121)
        stale = self.limiter._windows["u1"]
        inner = threading.RLock()
        limiter = self.limiter
        fresh = {}

        class InterleavingLock:
            ran = False

            def __enter__(self):
                if not InterleavingLock.ran:
                    InterleavingLock.ran = True
                    assert limiter.cleanup() == 1
                    assert limiter.is_allowed("u1") is True
                    fresh["window"] = limiter._windows["u1"]
                inner.acquire()

            def __exit__(self, *exc_info):
                inner.release()

        stale.lock = InterleavingLock()

        assert self.limiter.cleanup() == 0
        assert self.limiter._windows["u1"] is fresh["window"]
        assert self.limiter.get_remaining("u1") == 4

    def test_custom_stale_threshold(self):
        limiter = RateLimiter(limit=5, window_seconds=60, stale_after_seconds=300, clock=self.clock)
        limiter.is_allowed("u1")
        self.clock.advance(200)
        assert limiter.cleanup() == 0
        self.clock.advance(101)
        assert limiter.cleanup() == 1


class TestValidation:
    """Test constructor validation."""

    def test_limit_must_be_positive(self):
        with pytest.raises(ValueError, match="limit must be > 0"):
            RateLimiter(limit=0)

    def test_window_must_be_positive(self):
        with pytest.raises(ValueError, match="window_seconds must be > 0"):
            RateLimiter(limit=1, window_seconds=0)

    def test_stale_threshold_at_least_twice_window(self):
        with pytest.raises(ValueError, match="at least twice"):
            RateLimiter(limit=1, window_seconds=60, stale_after_seconds=90)


class TestConcurrency:
    """Test admission under concurrent callers."""

    def test_no_over_admission_for_one_actor(self):
        """Many threads racing on one actor never exceed the limit."""
        limiter = RateLimiter(limit=50, window_seconds=3600)
        barrier = threading.Barrier(20)

        def worker():
            barrier.wait()
            return sum(limiter.is_allowed("shared") for _ in range(20))

        with ThreadPoolExecutor(max_workers=20) as pool:
            admitted = sum(pool.map(lambda _: worker(), range(20)))

        assert admitted == 50
        assert limiter.get_remaining("shared") == 0

    def test_cleanup_racing_admissions_never_over_admits(self):
        """Admissions interleaved with cleanup stay within the limit."""
        clock = FakeClock()
        limiter = RateLimiter(limit=10, window_seconds=60, clock=clock)
        limiter.is_allowed("shared")
        clock.advance(200)

        def admit(_):
            return limiter.is_allowed("shared")

        with ThreadPoolExecutor(max_workers=8) as pool:
            futures = [pool.submit(admit, i) for i in range(40)]
            limiter.cleanup()
            admitted = sum(f.result() for f in futures)

        assert admitted <= 10
