"""
Per-actor admission control with a fixed time window.

Each actor gets a counter that starts at the actor's first request and
resets once window_seconds have passed. This is a fixed window, not a
sliding one: a burst that straddles a boundary can be admitted up to
2 * limit times in quick succession.

Windows are guarded by one lock per actor, never by a limiter-wide lock,
so unrelated actors never wait on each other.
"""

import sys
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional

import structlog

from .tasks import resolve_actor

logger = structlog.get_logger(__name__)

# Remaining-quota sentinel when rate limiting is disabled
UNBOUNDED = sys.maxsize


@dataclass
class _Window:
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    window_start: Optional[float] = None
    count: int = 0
    # Set by cleanup once the window has been unlinked from the map
    retired: bool = False


class RateLimiter:
    """Fixed-window request counter keyed by actor.

    Construct one per process and share it by reference.

    Args:
        limit: Admissions allowed per actor per window
        window_seconds: Window length
        enabled: When False every request is admitted and no state is kept
        stale_after_seconds: Age after which cleanup() drops a window;
            defaults to twice the window length
        clock: Wall-clock source in epoch seconds
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float = 60.0,
        enabled: bool = True,
        stale_after_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        if limit <= 0:
            raise ValueError("limit must be > 0")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        if stale_after_seconds is None:
            stale_after_seconds = 2 * window_seconds
        if stale_after_seconds < 2 * window_seconds:
            raise ValueError("stale_after_seconds must be at least twice window_seconds")

        self.limit = limit
        self.window_seconds = window_seconds
        self.enabled = enabled
        self.stale_after_seconds = stale_after_seconds
        self._clock = clock
        self._windows: Dict[str, _Window] = {}

    def __len__(self) -> int:
        return len(self._windows)

    def is_allowed(self, actor: Optional[str]) -> bool:
        """Admit or reject one request, counting it if admitted.

        The expiry check, the comparison against the limit and the increment
        run as one step under the actor's lock.
        """
        if not self.enabled:
            return True

        key = resolve_actor(actor)
        while True:
            window = self._windows.setdefault(key, _Window())
            with window.lock:
                if window.retired:
                    # Lost a race with cleanup(); look the actor up again
                    continue
                now = self._clock()
                if self._expired(window, now):
                    window.window_start = now
                    window.count = 0
                allowed = window.count < self.limit
                if allowed:
                    window.count += 1
                count = window.count
            break

        if allowed:
            logger.debug("rate_limit_passed", actor=key, count=count, limit=self.limit)
        else:
            logger.warning("rate_limit_exceeded", actor=key, count=count, limit=self.limit)
        return allowed

    def get_remaining(self, actor: Optional[str]) -> int:
        """Admissions left in the actor's current window."""
        if not self.enabled:
            return UNBOUNDED

        window = self._windows.get(resolve_actor(actor))
        if window is None:
            return self.limit
        with window.lock:
            if window.retired or self._expired(window, self._clock()):
                return self.limit
            return max(0, self.limit - window.count)

    def get_reset_time(self, actor: Optional[str]) -> Optional[datetime]:
        """When the actor's current window ends, or None if it has none."""
        if not self.enabled:
            return None

        window = self._windows.get(resolve_actor(actor))
        if window is None:
            return None
        with window.lock:
            if window.retired or window.window_start is None:
                return None
            return datetime.fromtimestamp(window.window_start + self.window_seconds)

    def cleanup(self) -> int:
        """Drop windows that started more than stale_after_seconds ago.

        A stale window has been expired for at least one full window length,
        so dropping it never changes an admission decision.

        Returns:
            Number of windows removed
        """
        cutoff = self._clock() - self.stale_after_seconds
        removed = 0
        for key, window in list(self._windows.items()):
            with window.lock:
                if window.retired or self._windows.get(key) is not window:
                    continue
                if window.window_start is None or window.window_start >= cutoff:
                    continue
                window.retired = True
                self._windows.pop(key, None)
                removed += 1

        logger.debug("rate_limit_cleanup", removed=removed, tracked=len(self._windows))
        return removed

    def _expired(self, window: _Window, now: float) -> bool:
        return window.window_start is None or now - window.window_start >= self.window_seconds
