"""Tests for request deduplication: at most one upstream fetch per in-flight key."""
from __future__ import annotations

import threading

import pytest

from quote_engine.errors import UpstreamError, UpstreamTimeout
from quote_engine.providers.base import AssetClass
from quote_engine.providers.dedup import RequestDeduplicator
from tests.fakes.providers import FakeQuoteProvider, FakeSlowQuoteProvider, wait_until


@pytest.fixture
def dedup():
    d = RequestDeduplicator(max_workers=4)
    yield d
    d.shutdown(wait=True)


class TestRequestDeduplicator:
    def test_concurrent_callers_share_one_fetch(self, dedup):
        provider = FakeSlowQuoteProvider("slow", delay_s=5.0)
        results = []
        lock = threading.Lock()

        def caller():
            q = dedup.fetch("AAPL", AssetClass.EQUITY, lambda: provider.fetch("AAPL"), timeout=5.0)
            with lock:
                results.append(q)

        threads = [threading.Thread(target=caller) for _ in range(10)]
        for t in threads:
            t.start()
        assert provider.started.wait(2.0)
        assert wait_until(lambda: dedup.waiter_count("AAPL", AssetClass.EQUITY) == 10)
        provider.release.set()
        for t in threads:
            t.join()

        assert provider.call_count == 1
        assert len(results) == 10
        assert all(q is results[0] for q in results)
        assert dedup.pending_keys() == []

    def test_distinct_keys_fetch_independently(self, dedup):
        calls = []
        lock = threading.Lock()

        def loader_for(sym):
            def _load():
                with lock:
                    calls.append(sym)
                return FakeQuoteProvider("p").fetch(sym)
            return _load

        a = dedup.fetch("AAPL", AssetClass.EQUITY, loader_for("AAPL"), timeout=2.0)
        b = dedup.fetch("BTC", AssetClass.CRYPTO, loader_for("BTC"), timeout=2.0)
        assert a.symbol == "AAPL"
        assert b.symbol == "BTC"
        assert sorted(calls) == ["AAPL", "BTC"]

    def test_same_symbol_different_asset_class_not_merged(self, dedup):
        provider = FakeSlowQuoteProvider("slow", delay_s=0.0)
        dedup.fetch("SOL", AssetClass.EQUITY, lambda: provider.fetch("SOL"), timeout=2.0)
        dedup.fetch("SOL", AssetClass.CRYPTO, lambda: provider.fetch("SOL"), timeout=2.0)
        assert provider.call_count == 2

    def test_failure_broadcast_to_all_waiters(self, dedup):
        gate = threading.Event()
        calls = []

        def failing():
            calls.append(1)
            gate.wait(2.0)
            raise UpstreamError("p", "down")

        errors = []
        lock = threading.Lock()

        def caller():
            try:
                dedup.fetch("AAPL", AssetClass.EQUITY, failing, timeout=5.0)
            except UpstreamError as e:
                with lock:
                    errors.append(e)

        threads = [threading.Thread(target=caller) for _ in range(5)]
        for t in threads:
            t.start()
        assert wait_until(lambda: dedup.waiter_count("AAPL", AssetClass.EQUITY) == 5)
        gate.set()
        for t in threads:
            t.join()
        assert len(calls) == 1
        assert len(errors) == 5

    def test_waiter_timeout_does_not_cancel_shared_fetch(self, dedup):
        provider = FakeSlowQuoteProvider("slow", delay_s=5.0)
        patient_result = []

        def patient():
            patient_result.append(
                dedup.fetch("AAPL", AssetClass.EQUITY, lambda: provider.fetch("AAPL"), timeout=5.0)
            )

        t = threading.Thread(target=patient)
        t.start()
        assert provider.started.wait(2.0)

        with pytest.raises(UpstreamTimeout):
            dedup.fetch("AAPL", AssetClass.EQUITY, lambda: provider.fetch("AAPL"), timeout=0.05)

        provider.release.set()
        t.join()
        assert provider.call_count == 1
        assert patient_result[0].symbol == "AAPL"

    def test_new_fetch_after_completion(self, dedup):
        provider = FakeSlowQuoteProvider("slow", delay_s=0.0)
        dedup.fetch("AAPL", AssetClass.EQUITY, lambda: provider.fetch("AAPL"), timeout=2.0)
        dedup.fetch("AAPL", AssetClass.EQUITY, lambda: provider.fetch("AAPL"), timeout=2.0)
        assert provider.call_count == 2

    def test_fetch_after_shutdown_leaves_nothing_in_flight(self, dedup):
        provider = FakeQuoteProvider("fast")
        dedup.shutdown(wait=True)

        with pytest.raises(RuntimeError):
            dedup.fetch("AAPL", AssetClass.EQUITY, lambda: provider.fetch("AAPL"), timeout=1.0)
        assert dedup.pending_keys() == []
        assert dedup.waiter_count("AAPL", AssetClass.EQUITY) == 0
        # a second caller fails the same way instead of waiting on a dead entry
        with pytest.raises(RuntimeError):
            dedup.fetch("AAPL", AssetClass.EQUITY, lambda: provider.fetch("AAPL"), timeout=1.0)
        assert provider.call_count == 0
