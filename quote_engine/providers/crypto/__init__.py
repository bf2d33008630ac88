"""Crypto quote providers."""
from __future__ import annotations

from .coingecko import CoinGeckoCryptoProvider
from .coinpaprika import CoinPaprikaCryptoProvider
from .kraken import KrakenCryptoProvider

__all__ = ["CoinGeckoCryptoProvider", "CoinPaprikaCryptoProvider", "KrakenCryptoProvider"]
