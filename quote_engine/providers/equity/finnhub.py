"""
Finnhub equity quote provider (backup).

Requires an API token:
  GET https://finnhub.io/api/v1/quote?symbol={symbol}&token={token}

Response fields: c (current), d (change), dp (change %), pc (previous close),
t (unix time). Unknown symbols come back as all zeros rather than an error.
"""
from __future__ import annotations

from typing import Optional

from ...errors import UpstreamError, UpstreamMalformed
from ..base import AssetClass, Credential, Quote
from ..http import get_json, require_price, require_timestamp, to_float

FINNHUB_BASE_URL = "https://finnhub.io/api/v1"
HTTP_TIMEOUT_S = 8.0


class FinnhubEquityProvider:
    """Fetch equity quotes from the Finnhub quote endpoint."""

    @property
    def provider_name(self) -> str:
        return "finnhub"

    @property
    def asset_class(self) -> AssetClass:
        return AssetClass.EQUITY

    @property
    def requires_credential(self) -> bool:
        return True

    def fetch(
        self,
        symbol: str,
        credential: Optional[Credential] = None,
        timeout_s: float = HTTP_TIMEOUT_S,
    ) -> Quote:
        if credential is None or not credential.secret:
            raise UpstreamError(self.provider_name, "API token required")
        sym = symbol.upper()
        data = get_json(
            self.provider_name,
            f"{FINNHUB_BASE_URL}/quote",
            params={"symbol": sym, "token": credential.secret},
            timeout_s=timeout_s,
        )
        if not isinstance(data, dict):
            raise UpstreamMalformed(self.provider_name, f"unexpected response type {type(data).__name__}")
        if data.get("error"):
            raise UpstreamError(self.provider_name, str(data["error"])[:200])
        if not data.get("c") and not data.get("t"):
            raise UpstreamMalformed(self.provider_name, f"no quote for {sym} (unknown symbol?)")

        price = require_price(self.provider_name, data.get("c"), "c")
        change = to_float(data.get("d"))
        change_pct = to_float(data.get("dp"))
        prev_close = to_float(data.get("pc"))
        if change is None and prev_close:
            change = price - prev_close
        if change_pct is None and change is not None and prev_close:
            change_pct = change / prev_close * 100.0

        return Quote(
            symbol=sym,
            asset_class=AssetClass.EQUITY,
            price=price,
            change_absolute=change,
            change_percent=change_pct,
            volume_24h=to_float(data.get("v")),
            as_of_utc=require_timestamp(self.provider_name, data.get("t"), "t"),
            source=self.provider_name,
        )
