"""
Alpha Vantage equity quote provider (primary).

Requires an API key (free tier: 500 requests/day, 5/minute):
  GET https://www.alphavantage.co/query?function=GLOBAL_QUOTE&symbol={symbol}&apikey={key}

Throttling is reported in-band with HTTP 200 instead of a quote: "Note" is
the per-minute frequency limit (a short block), "Information" the daily
limit (the key is done until the reset).
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from ...errors import QuotaRejected, UpstreamError, UpstreamMalformed
from ..base import AssetClass, Credential, Quote
from ..http import DEFAULT_THROTTLE_S, get_json, require_price, to_float

ALPHA_VANTAGE_URL = "https://www.alphavantage.co/query"
HTTP_TIMEOUT_S = 15.0


def _trading_day_iso(provider: str, day: Optional[str]) -> str:
    try:
        parsed = datetime.strptime(day or "", "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError as exc:
        raise UpstreamMalformed(provider, f"missing or unparseable latest trading day: {day!r}") from exc
    return parsed.isoformat(timespec="seconds")


class AlphaVantageEquityProvider:
    """Fetch equity quotes from the Alpha Vantage GLOBAL_QUOTE endpoint."""

    @property
    def provider_name(self) -> str:
        return "alphavantage"

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
            raise UpstreamError(self.provider_name, "API key required")
        sym = symbol.upper()
        data = get_json(
            self.provider_name,
            ALPHA_VANTAGE_URL,
            params={"function": "GLOBAL_QUOTE", "symbol": sym, "apikey": credential.secret},
            timeout_s=timeout_s,
        )
        if not isinstance(data, dict):
            raise UpstreamMalformed(self.provider_name, f"unexpected response type {type(data).__name__}")

        if data.get("Note"):
            raise QuotaRejected(
                self.provider_name, str(data["Note"])[:200], retry_after_s=DEFAULT_THROTTLE_S
            )
        if data.get("Information"):
            raise QuotaRejected(self.provider_name, str(data["Information"])[:200])
        if data.get("Error Message"):
            raise UpstreamError(self.provider_name, str(data["Error Message"])[:200])

        quote = data.get("Global Quote")
        if not isinstance(quote, dict) or not quote:
            raise UpstreamMalformed(self.provider_name, f"missing 'Global Quote' for {sym}")

        return Quote(
            symbol=sym,
            asset_class=AssetClass.EQUITY,
            price=require_price(self.provider_name, quote.get("05. price"), "05. price"),
            change_absolute=to_float(quote.get("09. change")),
            change_percent=to_float(quote.get("10. change percent")),
            volume_24h=to_float(quote.get("06. volume")),
            as_of_utc=_trading_day_iso(self.provider_name, quote.get("07. latest trading day")),
            source=self.provider_name,
        )
