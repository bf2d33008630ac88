"""Fake providers and fixtures for quote engine tests (no live network)."""

from .providers import (
    FakeClock,
    FakeQuotaRejectingProvider,
    FakeQuoteProvider,
    FakeQuoteProviderAlwaysFail,
    FakeQuoteProviderFailNThenSucceed,
    FakeSlowQuoteProvider,
    wait_until,
)
from .stores import FakeFailingKeyValueStore

__all__ = [
    "FakeClock",
    "FakeFailingKeyValueStore",
    "FakeQuotaRejectingProvider",
    "FakeQuoteProvider",
    "FakeQuoteProviderAlwaysFail",
    "FakeQuoteProviderFailNThenSucceed",
    "FakeSlowQuoteProvider",
    "wait_until",
]
