"""
Yahoo Finance chart provider (keyless backup for equities).

Uses the public chart API (no authentication required, unofficial):
  GET https://query1.finance.yahoo.com/v8/finance/chart/{symbol}?interval=1d&range=1d
"""
from __future__ import annotations

from typing import Optional

from ...errors import UpstreamError, UpstreamMalformed
from ..base import AssetClass, Credential, Quote
from ..http import get_json, require_price, require_timestamp, safe_get, to_float

YAHOO_BASE_URL = "https://query1.finance.yahoo.com"
HTTP_TIMEOUT_S = 8.0


class YahooChartEquityProvider:
    """Fetch equity quotes from chart metadata (regularMarketPrice)."""

    @property
    def provider_name(self) -> str:
        return "yahoo"

    @property
    def asset_class(self) -> AssetClass:
        return AssetClass.EQUITY

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
        data = get_json(
            self.provider_name,
            f"{YAHOO_BASE_URL}/v8/finance/chart/{sym}",
            params={"interval": "1d", "range": "1d"},
            timeout_s=timeout_s,
        )
        if not isinstance(data, dict):
            raise UpstreamMalformed(self.provider_name, f"unexpected response type {type(data).__name__}")

        err = safe_get(data, "chart.error")
        if err:
            desc = err.get("description") if isinstance(err, dict) else err
            raise UpstreamError(self.provider_name, str(desc)[:200])

        results = safe_get(data, "chart.result")
        if not isinstance(results, list) or not results or not isinstance(results[0], dict):
            raise UpstreamMalformed(self.provider_name, f"missing chart.result for {sym}")
        meta = results[0].get("meta")
        if not isinstance(meta, dict):
            raise UpstreamMalformed(self.provider_name, f"missing chart meta for {sym}")

        price = require_price(self.provider_name, meta.get("regularMarketPrice"), "regularMarketPrice")
        prev_close = to_float(meta.get("previousClose")) or to_float(meta.get("chartPreviousClose"))
        change = price - prev_close if prev_close else None
        change_pct = change / prev_close * 100.0 if change is not None and prev_close else None

        return Quote(
            symbol=sym,
            asset_class=AssetClass.EQUITY,
            price=price,
            change_absolute=change,
            change_percent=change_pct,
            volume_24h=to_float(meta.get("regularMarketVolume")),
            as_of_utc=require_timestamp(self.provider_name, meta.get("regularMarketTime"), "regularMarketTime"),
            source=self.provider_name,
        )
