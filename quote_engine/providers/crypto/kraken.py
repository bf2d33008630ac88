"""
Kraken crypto quote provider (last-resort backup).

Uses the public Kraken API (no authentication required):
  GET https://api.kraken.com/0/public/Ticker?pair={pair}

The ticker has no 24h change field; change is measured against today's
opening price ("o"). It has no timestamp either, so quotes carry
as_of_utc=None rather than the time of receipt.
"""

from __future__ import annotations

from typing import Optional

from ...errors import QuotaRejected, UpstreamError, UpstreamMalformed
from ..base import AssetClass, Credential, Quote
from ..http import DEFAULT_THROTTLE_S, get_json, require_price, to_float

KRAKEN_BASE_URL = "https://api.kraken.com"
HTTP_TIMEOUT_S = 15.0

_SYMBOL_TO_PAIR = {
    "SOL": "SOLUSD",
    "ETH": "ETHUSD",
    "BTC": "XBTUSD",
    "DOGE": "XDGUSD",
}


class KrakenCryptoProvider:
    """Fetch crypto quotes from the Kraken public ticker."""

    @property
    def provider_name(self) -> str:
        return "kraken"

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
        pair = _SYMBOL_TO_PAIR.get(sym, f"{sym}USD")
        data = get_json(
            self.provider_name,
            f"{KRAKEN_BASE_URL}/0/public/Ticker",
            params={"pair": pair},
            timeout_s=timeout_s,
        )
        if not isinstance(data, dict):
            raise UpstreamMalformed(self.provider_name, f"unexpected response type {type(data).__name__}")

        errors = data.get("error")
        if errors:
            msg = "; ".join(str(e) for e in errors)
            if "Rate limit" in msg or "Too many requests" in msg:
                raise QuotaRejected(self.provider_name, msg[:200], retry_after_s=DEFAULT_THROTTLE_S)
            raise UpstreamError(self.provider_name, f"Kraken error: {msg[:200]}")

        result = data.get("result", {})
        if not isinstance(result, dict) or not result:
            raise UpstreamMalformed(self.provider_name, "response missing result")

        first_key = next(iter(result.keys()))
        ticker = result[first_key]
        last_trade = ticker.get("c", [None]) if isinstance(ticker, dict) else None
        if not last_trade or last_trade[0] is None:
            raise UpstreamMalformed(self.provider_name, "response missing last trade price")

        price = require_price(self.provider_name, last_trade[0], "c[0]")
        open_price = to_float(ticker.get("o"))
        change = price - open_price if open_price else None
        change_pct = change / open_price * 100.0 if change is not None and open_price else None
        volume = ticker.get("v")
        base_volume = to_float(volume[1]) if isinstance(volume, list) and len(volume) > 1 else None

        return Quote(
            symbol=sym,
            asset_class=AssetClass.CRYPTO,
            price=price,
            change_absolute=change,
            change_percent=change_pct,
            # Kraken reports volume in base units; convert to quote currency
            volume_24h=base_volume * price if base_volume is not None else None,
            # the public ticker carries no timestamp
            as_of_utc=None,
            source=self.provider_name,
        )
