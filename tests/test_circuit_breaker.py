"""
Tests for the per-provider circuit breaker.

Verifies that:
- Breakers open after the failure threshold and short-circuit calls
- Exactly one probe is granted after the cooldown (HALF_OPEN)
- A failed probe reopens with a longer, capped cooldown
- A successful probe closes the breaker and resets the cooldown
"""
from __future__ import annotations

import threading

from quote_engine.providers.base import BreakerState
from quote_engine.providers.resilience import BreakerRegistry, CircuitBreaker
from tests.fakes.providers import FakeClock


def _breaker(clock, **kwargs) -> CircuitBreaker:
    kwargs.setdefault("failure_threshold", 3)
    kwargs.setdefault("cooldown_seconds", 10.0)
    return CircuitBreaker(provider_name="test", clock=clock, **kwargs)


class TestCircuitBreaker:
    def test_starts_closed(self):
        cb = _breaker(FakeClock())
        assert cb.state == BreakerState.CLOSED
        assert not cb.is_open
        assert cb.allow_request()

    def test_opens_after_threshold_failures(self):
        cb = _breaker(FakeClock())
        cb.record_failure("error 1")
        assert cb.state == BreakerState.CLOSED
        cb.record_failure("error 2")
        assert cb.state == BreakerState.CLOSED
        cb.record_failure("error 3")
        assert cb.state == BreakerState.OPEN
        assert cb.is_open
        assert not cb.allow_request()
        assert cb.last_error == "error 3"

    def test_success_resets_failure_count(self):
        cb = _breaker(FakeClock())
        cb.record_failure("e1")
        cb.record_failure("e2")
        cb.record_success()
        cb.record_failure("e3")
        cb.record_failure("e4")
        assert cb.state == BreakerState.CLOSED
        assert cb.consecutive_failures == 2

    def test_half_open_after_cooldown_grants_single_probe(self):
        clock = FakeClock()
        cb = _breaker(clock, failure_threshold=1)
        cb.record_failure("error")
        assert not cb.allow_request()
        assert cb.retry_in() == 10.0

        clock.advance(10.0)
        assert not cb.is_open
        assert cb.allow_request()
        assert cb.state == BreakerState.HALF_OPEN
        # Probe is taken; everyone else is rejected immediately.
        assert not cb.allow_request()
        assert cb.is_open

    def test_concurrent_callers_get_one_probe(self):
        clock = FakeClock()
        cb = _breaker(clock, failure_threshold=1)
        cb.record_failure("error")
        clock.advance(11.0)

        granted = []
        barrier = threading.Barrier(16)

        def worker():
            barrier.wait()
            if cb.allow_request():
                granted.append(1)

        threads = [threading.Thread(target=worker) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(granted) == 1

    def test_probe_success_closes_and_resets_cooldown(self):
        clock = FakeClock()
        cb = _breaker(clock, failure_threshold=1)
        cb.record_failure("error")
        clock.advance(10.0)
        assert cb.allow_request()
        cb.record_failure("probe failed")
        assert cb.current_cooldown == 20.0

        clock.advance(20.0)
        assert cb.allow_request()
        cb.record_success()
        assert cb.state == BreakerState.CLOSED
        assert cb.consecutive_failures == 0
        assert cb.current_cooldown == 10.0
        assert cb.last_error is None

    def test_probe_failure_backoff_is_capped(self):
        clock = FakeClock()
        cb = _breaker(clock, failure_threshold=1, max_cooldown_seconds=35.0)
        cb.record_failure("error")
        cooldowns = []
        for _ in range(4):
            clock.advance(cb.current_cooldown)
            assert cb.allow_request()
            cb.record_failure("probe failed")
            assert cb.state == BreakerState.OPEN
            cooldowns.append(cb.current_cooldown)
        assert cooldowns == [20.0, 35.0, 35.0, 35.0]

    def test_release_probe_returns_slot(self):
        clock = FakeClock()
        cb = _breaker(clock, failure_threshold=1)
        cb.record_failure("error")
        clock.advance(10.0)
        assert cb.allow_request()
        cb.release_probe()
        assert cb.state == BreakerState.HALF_OPEN
        assert cb.allow_request()

    def test_health_snapshot(self):
        clock = FakeClock(start=0.0)
        cb = _breaker(clock, failure_threshold=1)
        cb.record_failure("boom")
        h = cb.health()
        assert h.provider_name == "test"
        assert h.state == BreakerState.OPEN
        assert h.consecutive_failures == 1
        assert h.opened_at == "1970-01-01T00:00:00+00:00"
        assert h.next_probe_at == "1970-01-01T00:00:10+00:00"
        assert h.last_error == "boom"

    def test_force_open_and_reset(self):
        cb = _breaker(FakeClock())
        cb.force_open()
        assert cb.is_open
        cb.reset()
        assert cb.state == BreakerState.CLOSED
        assert not cb.is_open


class TestBreakerRegistry:
    def test_get_creates_once(self):
        registry = BreakerRegistry()
        assert registry.get("a") is registry.get("a")
        assert registry.states() == {"a": "CLOSED"}

    def test_add_replaces_and_health(self):
        registry = BreakerRegistry()
        cb = CircuitBreaker(provider_name="x", failure_threshold=1)
        registry.add(cb)
        cb.record_failure("down")
        assert registry.get("x") is cb
        assert registry.health()["x"].state == BreakerState.OPEN
