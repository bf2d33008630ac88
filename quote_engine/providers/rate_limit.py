"""
Per-provider request spacing.

Providers throttle by IP/account family, not just by key, so spacing is
enforced per provider regardless of which credential is used. Each provider
has an "earliest next allowed time" watermark; a caller claims the slot at the
watermark and advances it atomically, then sleeps outside the lock until its
slot arrives. Concurrent callers thus receive strictly increasing (FIFO)
slots instead of bursting.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, Optional

from ..errors import UpstreamTimeout

logger = logging.getLogger(__name__)


class RateLimiter:
    """Minimum inter-request spacing per provider."""

    def __init__(
        self,
        intervals: Optional[Dict[str, float]] = None,
        default_interval_s: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._intervals: Dict[str, float] = dict(intervals or {})
        self._default_interval_s = default_interval_s
        self._watermarks: Dict[str, float] = {}
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()

    def configure(self, provider: str, interval_s: float) -> None:
        if interval_s < 0:
            raise ValueError("interval_s must be >= 0")
        with self._lock:
            self._intervals[provider] = float(interval_s)

    def interval_for(self, provider: str) -> float:
        with self._lock:
            return self._intervals.get(provider, self._default_interval_s)

    def next_allowed_in(self, provider: str) -> float:
        """Seconds a caller arriving now would wait. Does not claim a slot."""
        with self._lock:
            return max(0.0, self._watermarks.get(provider, 0.0) - self._clock())

    def wait(self, provider: str, deadline: Optional[float] = None) -> float:
        """
        Block until this caller's slot for `provider`. Returns seconds waited.

        `deadline` is on this limiter's clock. If the slot would land after it,
        no slot is claimed and UpstreamTimeout is raised.
        """
        with self._lock:
            now = self._clock()
            interval = self._intervals.get(provider, self._default_interval_s)
            slot = max(now, self._watermarks.get(provider, 0.0))
            if deadline is not None and slot > deadline:
                raise UpstreamTimeout(
                    provider, f"rate-limit slot in {slot - now:.2f}s exceeds deadline"
                )
            self._watermarks[provider] = slot + interval
        delay = slot - now
        if delay > 0:
            logger.debug("Rate limiter: %s waiting %.2fs", provider, delay)
            self._sleep(delay)
        return delay
