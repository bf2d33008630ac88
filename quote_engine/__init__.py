"""
Resilient multi-provider quote engine.

Top-level public API surface. Does not import cli.
"""

from __future__ import annotations

from ._version import __version__
from .engine import QuoteEngine, build_engine
from .errors import NoDataAvailable, QuoteEngineError
from .providers.base import AssetClass, Freshness, Quote

__all__ = [
    "__version__",
    "AssetClass",
    "Freshness",
    "NoDataAvailable",
    "Quote",
    "QuoteEngine",
    "QuoteEngineError",
    "build_engine",
]
