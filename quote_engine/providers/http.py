"""
Shared HTTP and parsing helpers for provider adapters.

Adapters own their URL/query shape; this module only maps transport outcomes
onto the error taxonomy so the resolver can treat every provider alike.
"""
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

import requests

from ..errors import QuotaRejected, UpstreamError, UpstreamMalformed, UpstreamTimeout
from .base import epoch_to_iso

USER_AGENT = "quote-engine/0.1"
# Block applied to a throttled credential when the provider gives no Retry-After.
DEFAULT_THROTTLE_S = 60.0


def get_json(
    provider: str,
    url: str,
    *,
    params: Optional[Mapping[str, Any]] = None,
    headers: Optional[Mapping[str, str]] = None,
    timeout_s: float = 15.0,
) -> Any:
    """GET url and decode JSON, raising typed upstream errors."""
    hdrs = {"Accept": "application/json", "User-Agent": USER_AGENT}
    if headers:
        hdrs.update(headers)
    try:
        resp = requests.get(url, params=params, headers=hdrs, timeout=timeout_s)
    except requests.Timeout as exc:
        raise UpstreamTimeout(provider, f"timed out after {timeout_s:.1f}s") from exc
    except requests.RequestException as exc:
        raise UpstreamError(provider, f"{type(exc).__name__}: {exc}") from exc

    if resp.status_code == 429:
        raise QuotaRejected(
            provider, "rate limit (HTTP 429)", retry_after_s=retry_after(resp.headers.get("Retry-After"))
        )
    try:
        resp.raise_for_status()
    except requests.HTTPError as exc:
        raise UpstreamError(provider, f"HTTP {resp.status_code}") from exc

    try:
        return resp.json()
    except ValueError as exc:
        raise UpstreamMalformed(provider, "response is not valid JSON") from exc


def safe_get(d: Dict[str, Any], path: str, default: Any = None) -> Any:
    cur: Any = d
    for key in path.split("."):
        if not isinstance(cur, dict) or key not in cur:
            return default
        cur = cur[key]
    return cur


def to_float(x: Any) -> Optional[float]:
    if x is None:
        return None
    if isinstance(x, str):
        x = x.strip().rstrip("%")
        if not x:
            return None
    try:
        return float(x)
    except (TypeError, ValueError):
        return None


def require_price(provider: str, raw: Any, field: str) -> float:
    """Parse a mandatory price field. Missing, non-numeric or non-positive is malformed."""
    price = to_float(raw)
    if price is None or not math.isfinite(price):
        raise UpstreamMalformed(provider, f"missing or non-numeric {field}: {raw!r}")
    if price <= 0:
        raise UpstreamMalformed(provider, f"non-positive {field}: {price}")
    return price


def retry_after(raw: Any) -> float:
    """Seconds from a Retry-After header; DEFAULT_THROTTLE_S when absent or an HTTP date."""
    seconds = to_float(raw)
    if seconds is None or not math.isfinite(seconds) or seconds <= 0:
        return DEFAULT_THROTTLE_S
    return seconds


def require_timestamp(provider: str, raw: Any, field: str) -> str:
    """
    Parse the provider's own quote timestamp (epoch seconds or ISO-8601) to UTC ISO.

    Missing or unparseable is malformed; receipt time is never substituted.
    """
    seconds = raw if isinstance(raw, (int, float)) else None
    if isinstance(raw, str) and raw.strip().replace(".", "", 1).isdigit():
        seconds = float(raw)
    if seconds is not None:
        if not math.isfinite(seconds) or seconds <= 0:
            raise UpstreamMalformed(provider, f"missing or invalid {field}: {raw!r}")
        try:
            return epoch_to_iso(seconds)
        except (OverflowError, OSError, ValueError) as exc:
            raise UpstreamMalformed(provider, f"invalid {field}: {raw!r}") from exc
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
        except ValueError as exc:
            raise UpstreamMalformed(provider, f"unparseable {field}: {raw!r}") from exc
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc).isoformat(timespec="seconds")
    raise UpstreamMalformed(provider, f"missing {field}")
