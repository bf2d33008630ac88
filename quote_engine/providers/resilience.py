"""
Circuit breaker: per-provider failure isolation.

Each breaker owns its provider's health state exclusively. The resolver only
asks allow_request() before a call and reports the outcome afterwards; the
state transitions themselves happen here, under the breaker's own lock.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from .base import BreakerState, ProviderHealth, epoch_to_iso

logger = logging.getLogger(__name__)


@dataclass
class CircuitBreaker:
    """
    Circuit breaker preventing repeated calls to a failing provider.

    States:
    - CLOSED: Normal operation, requests pass through.
    - OPEN: Provider is failing, requests are short-circuited.
    - HALF_OPEN: After cooldown, exactly one probe request is allowed.

    Transitions:
    - CLOSED -> OPEN: After `failure_threshold` consecutive failures.
    - OPEN -> HALF_OPEN: On the first allow_request() after the cooldown.
    - HALF_OPEN -> CLOSED: If the probe succeeds (cooldown reset to base).
    - HALF_OPEN -> OPEN: If the probe fails; cooldown grows by
      `backoff_factor`, capped at `max_cooldown_seconds`.
    """

    provider_name: str
    failure_threshold: int = 3
    cooldown_seconds: float = 60.0
    max_cooldown_seconds: float = 900.0
    backoff_factor: float = 2.0
    clock: Callable[[], float] = field(default=time.time, repr=False)
    _failure_count: int = field(default=0, init=False, repr=False)
    _state: BreakerState = field(default=BreakerState.CLOSED, init=False, repr=False)
    _opened_at: Optional[float] = field(default=None, init=False, repr=False)
    _current_cooldown: float = field(default=0.0, init=False, repr=False)
    _probe_in_flight: bool = field(default=False, init=False, repr=False)
    _last_error: Optional[str] = field(default=None, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self._current_cooldown = float(self.cooldown_seconds)

    @property
    def state(self) -> BreakerState:
        with self._lock:
            return self._state

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._failure_count

    @property
    def current_cooldown(self) -> float:
        with self._lock:
            return self._current_cooldown

    @property
    def last_error(self) -> Optional[str]:
        with self._lock:
            return self._last_error

    @property
    def is_open(self) -> bool:
        """True if a call made now would be rejected. Does not consume the probe."""
        with self._lock:
            if self._state == BreakerState.CLOSED:
                return False
            if self._state == BreakerState.HALF_OPEN:
                return self._probe_in_flight
            return self.clock() < self._next_probe_at_unlocked()

    def _next_probe_at_unlocked(self) -> float:
        return (self._opened_at or 0.0) + self._current_cooldown

    def allow_request(self) -> bool:
        """Gate a call. In HALF_OPEN only the caller that wins the probe gets True."""
        with self._lock:
            if self._state == BreakerState.CLOSED:
                return True
            if self._state == BreakerState.OPEN:
                if self.clock() < self._next_probe_at_unlocked():
                    return False
                self._state = BreakerState.HALF_OPEN
                self._probe_in_flight = True
                logger.info("Circuit breaker HALF_OPEN for %s, probing", self.provider_name)
                return True
            if self._probe_in_flight:
                return False
            self._probe_in_flight = True
            return True

    def retry_in(self) -> Optional[float]:
        """Seconds until the next probe is allowed, or None when not OPEN."""
        with self._lock:
            if self._state != BreakerState.OPEN:
                return None
            return max(0.0, self._next_probe_at_unlocked() - self.clock())

    def release_probe(self) -> None:
        """Hand back an unused probe slot (the caller skipped the provider without calling it)."""
        with self._lock:
            if self._state == BreakerState.HALF_OPEN:
                self._probe_in_flight = False

    def record_success(self) -> None:
        with self._lock:
            if self._state != BreakerState.CLOSED:
                logger.info("Circuit breaker CLOSED for %s after successful probe", self.provider_name)
            self._failure_count = 0
            self._state = BreakerState.CLOSED
            self._opened_at = None
            self._current_cooldown = float(self.cooldown_seconds)
            self._probe_in_flight = False
            self._last_error = None

    def record_failure(self, error: str) -> None:
        with self._lock:
            self._failure_count += 1
            self._last_error = error[:500]
            if self._state == BreakerState.HALF_OPEN:
                self._current_cooldown = min(
                    self._current_cooldown * self.backoff_factor,
                    float(self.max_cooldown_seconds),
                )
                self._open_unlocked()
                logger.warning(
                    "Circuit breaker re-OPENED for %s after failed probe (cooldown %.0fs): %s",
                    self.provider_name, self._current_cooldown, error[:200],
                )
            elif self._state == BreakerState.CLOSED and self._failure_count >= self.failure_threshold:
                self._open_unlocked()
                logger.warning(
                    "Circuit breaker OPEN for %s after %d failures: %s",
                    self.provider_name, self._failure_count, error[:200],
                )

    def _open_unlocked(self) -> None:
        self._state = BreakerState.OPEN
        self._opened_at = self.clock()
        self._probe_in_flight = False

    def force_open(self) -> None:
        """Manually trip the breaker (operator control)."""
        with self._lock:
            self._open_unlocked()
        logger.warning("Circuit breaker for %s manually OPENED", self.provider_name)

    def reset(self) -> None:
        with self._lock:
            self._failure_count = 0
            self._state = BreakerState.CLOSED
            self._opened_at = None
            self._current_cooldown = float(self.cooldown_seconds)
            self._probe_in_flight = False
            self._last_error = None

    def health(self) -> ProviderHealth:
        with self._lock:
            opened = self._opened_at
            return ProviderHealth(
                provider_name=self.provider_name,
                state=self._state,
                consecutive_failures=self._failure_count,
                opened_at=epoch_to_iso(opened) if opened is not None else None,
                next_probe_at=(
                    epoch_to_iso(self._next_probe_at_unlocked())
                    if self._state == BreakerState.OPEN
                    else None
                ),
                cooldown_s=self._current_cooldown,
                last_error=self._last_error,
            )


class BreakerRegistry:
    """
    Owns one CircuitBreaker per provider.

    Constructed once at startup and injected into every resolver, so that two
    asset-class resolvers sharing a provider also share its health.
    """

    def __init__(
        self,
        factory: Optional[Callable[[str], CircuitBreaker]] = None,
    ) -> None:
        self._factory = factory or (lambda name: CircuitBreaker(provider_name=name))
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, provider_name: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(provider_name)
            if breaker is None:
                breaker = self._factory(provider_name)
                self._breakers[provider_name] = breaker
            return breaker

    def add(self, breaker: CircuitBreaker) -> None:
        with self._lock:
            self._breakers[breaker.provider_name] = breaker

    def health(self) -> Dict[str, ProviderHealth]:
        with self._lock:
            breakers = list(self._breakers.values())
        return {b.provider_name: b.health() for b in breakers}

    def states(self) -> Dict[str, str]:
        return {name: h.state.value for name, h in self.health().items()}
