"""
CoinGecko crypto quote provider (primary).

Public API needs no key (tight per-minute limits); a pro key switches to the
pro host and lifts them:
  GET https://api.coingecko.com/api/v3/simple/price?ids={id}&vs_currencies=usd
      &include_24hr_change=true&include_24hr_vol=true&include_last_updated_at=true
"""
from __future__ import annotations

from typing import Optional

from ...errors import UpstreamMalformed
from ..base import AssetClass, Credential, Quote
from ..http import get_json, require_price, require_timestamp, to_float

COINGECKO_BASE_URL = "https://api.coingecko.com/api/v3"
COINGECKO_PRO_BASE_URL = "https://pro-api.coingecko.com/api/v3"
HTTP_TIMEOUT_S = 10.0

_SYMBOL_TO_ID = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "SOL": "solana",
    "ADA": "cardano",
    "AVAX": "avalanche-2",
    "LINK": "chainlink",
    "DOT": "polkadot",
    "BNB": "binancecoin",
    "MATIC": "matic-network",
    "UNI": "uniswap",
    "LTC": "litecoin",
    "XRP": "ripple",
    "DOGE": "dogecoin",
}


def change_from_percent(price: float, change_percent: Optional[float]) -> Optional[float]:
    """Absolute change implied by the current price and a trailing % change."""
    if change_percent is None or change_percent <= -100.0:
        return None
    return price - price / (1.0 + change_percent / 100.0)


class CoinGeckoCryptoProvider:
    """Fetch crypto quotes from CoinGecko simple/price."""

    @property
    def provider_name(self) -> str:
        return "coingecko"

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
        coin_id = _SYMBOL_TO_ID.get(sym, sym.lower())
        base_url = COINGECKO_BASE_URL
        headers = {}
        if credential is not None and credential.secret:
            base_url = COINGECKO_PRO_BASE_URL
            headers["x-cg-pro-api-key"] = credential.secret

        data = get_json(
            self.provider_name,
            f"{base_url}/simple/price",
            params={
                "ids": coin_id,
                "vs_currencies": "usd",
                "include_24hr_change": "true",
                "include_24hr_vol": "true",
                "include_last_updated_at": "true",
            },
            headers=headers,
            timeout_s=timeout_s,
        )
        if not isinstance(data, dict):
            raise UpstreamMalformed(self.provider_name, f"unexpected response type {type(data).__name__}")
        coin = data.get(coin_id)
        if not isinstance(coin, dict):
            raise UpstreamMalformed(self.provider_name, f"no data for id '{coin_id}'")

        price = require_price(self.provider_name, coin.get("usd"), "usd")
        change_pct = to_float(coin.get("usd_24h_change"))
        return Quote(
            symbol=sym,
            asset_class=AssetClass.CRYPTO,
            price=price,
            change_absolute=change_from_percent(price, change_pct),
            change_percent=change_pct,
            volume_24h=to_float(coin.get("usd_24h_vol")),
            as_of_utc=require_timestamp(self.provider_name, coin.get("last_updated_at"), "last_updated_at"),
            source=self.provider_name,
        )
