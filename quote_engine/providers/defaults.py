"""
Default provider registry configuration.

Registers built-in providers. To add a new provider, register it here and add
it to the priority list (config.yaml can override the order).
"""
from __future__ import annotations

from .base import AssetClass
from .crypto.coingecko import CoinGeckoCryptoProvider
from .crypto.coinpaprika import CoinPaprikaCryptoProvider
from .crypto.kraken import KrakenCryptoProvider
from .equity.alpha_vantage import AlphaVantageEquityProvider
from .equity.finnhub import FinnhubEquityProvider
from .equity.yahoo import YahooChartEquityProvider
from .registry import ProviderRegistry

# Default provider priority (config.yaml can override these)
DEFAULT_EQUITY_PRIORITY = ["alphavantage", "finnhub", "yahoo"]
DEFAULT_CRYPTO_PRIORITY = ["coingecko", "coinpaprika", "kraken"]


def create_default_registry() -> ProviderRegistry:
    """Create a registry with all built-in providers."""
    registry = ProviderRegistry()
    registry.register(AssetClass.EQUITY, "alphavantage", AlphaVantageEquityProvider)
    registry.register(AssetClass.EQUITY, "finnhub", FinnhubEquityProvider)
    registry.register(AssetClass.EQUITY, "yahoo", YahooChartEquityProvider)
    registry.register(AssetClass.CRYPTO, "coingecko", CoinGeckoCryptoProvider)
    registry.register(AssetClass.CRYPTO, "coinpaprika", CoinPaprikaCryptoProvider)
    registry.register(AssetClass.CRYPTO, "kraken", KrakenCryptoProvider)
    return registry
