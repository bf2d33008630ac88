"""Equity quote providers."""
from __future__ import annotations

from .alpha_vantage import AlphaVantageEquityProvider
from .finnhub import FinnhubEquityProvider
from .yahoo import YahooChartEquityProvider

__all__ = ["AlphaVantageEquityProvider", "FinnhubEquityProvider", "YahooChartEquityProvider"]
