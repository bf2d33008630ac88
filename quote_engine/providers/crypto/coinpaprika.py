"""
CoinPaprika crypto quote provider (backup).

Free tier needs no key (~25k calls/month, tracked as an anonymous daily quota):
  GET https://api.coinpaprika.com/v1/tickers/{id}
"""
from __future__ import annotations

from typing import Optional

from ...errors import UpstreamMalformed
from ..base import AssetClass, Credential, Quote
from ..http import get_json, require_price, require_timestamp, safe_get, to_float
from .coingecko import change_from_percent

COINPAPRIKA_BASE_URL = "https://api.coinpaprika.com/v1"
HTTP_TIMEOUT_S = 10.0

_SYMBOL_TO_ID = {
    "BTC": "btc-bitcoin",
    "ETH": "eth-ethereum",
    "SOL": "sol-solana",
    "ADA": "ada-cardano",
    "AVAX": "avax-avalanche",
    "LINK": "link-chainlink",
    "DOT": "dot-polkadot",
    "BNB": "bnb-binance-coin",
    "MATIC": "matic-polygon",
    "UNI": "uni-uniswap",
    "LTC": "ltc-litecoin",
    "XRP": "xrp-xrp",
}


class CoinPaprikaCryptoProvider:
    """Fetch crypto quotes from CoinPaprika tickers."""

    @property
    def provider_name(self) -> str:
        return "coinpaprika"

    @property
    def asset_class(self) -> AssetClass:
        return AssetClass.CRYPTO

    @property
    def requires_credential(self) -> bool:
        return False

    def fetch(
        self,
        symbol: str,
        credential: Optional[Credential] = None,
        timeout_s: float = HTTP_TIMEOUT_S,
    ) -> Quote:
        sym = symbol.upper()
        paprika_id = _SYMBOL_TO_ID.get(sym, f"{sym.lower()}-{sym.lower()}")
        data = get_json(
            self.provider_name,
            f"{COINPAPRIKA_BASE_URL}/tickers/{paprika_id}",
            timeout_s=timeout_s,
        )
        if not isinstance(data, dict):
            raise UpstreamMalformed(self.provider_name, f"unexpected response type {type(data).__name__}")
        usd = safe_get(data, "quotes.USD")
        if not isinstance(usd, dict):
            raise UpstreamMalformed(self.provider_name, f"missing quotes.USD for '{paprika_id}'")

        price = require_price(self.provider_name, usd.get("price"), "quotes.USD.price")
        change_pct = to_float(usd.get("percent_change_24h"))
        return Quote(
            symbol=sym,
            asset_class=AssetClass.CRYPTO,
            price=price,
            change_absolute=change_from_percent(price, change_pct),
            change_percent=change_pct,
            volume_24h=to_float(usd.get("volume_24h")),
            as_of_utc=require_timestamp(self.provider_name, data.get("last_updated"), "last_updated"),
            source=self.provider_name,
        )
