"""
Load config from config.yaml with optional env overrides.
Single source of truth for DB path, cache windows, provider order and
per-provider limits.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Tuple

from .providers.base import AssetClass, Credential

# Defaults if no YAML or env
_DEFAULTS = {
    "db": {
        "path": "quote_engine.sqlite",
        "busy_timeout_ms": 5000,
    },
    "cache": {
        "normal_ttl_s": 300.0,
        "extended_ttl_s": 86_400.0,
        "sweep_interval_s": 600.0,
    },
    "resolver": {
        "equity_priority": ["alphavantage", "finnhub", "yahoo"],
        "crypto_priority": ["coingecko", "coinpaprika", "kraken"],
        "deadline_s": None,
        "max_workers": 8,
    },
    "provider_defaults": {
        "rate_limit_interval_s": 1.0,
        "timeout_s": 10.0,
        "failure_threshold": 5,
        "cooldown_s": 60.0,
        "max_cooldown_s": 900.0,
        "backoff_factor": 2.0,
        "daily_quota": None,
        "reset_hour_utc": 0,
        "normal_ttl_s": None,
        "extended_ttl_s": None,
    },
    "providers": {
        # 5 requests/minute, 500/day on the free tier
        "alphavantage": {"rate_limit_interval_s": 12.0, "daily_quota": 500},
        # 60 requests/minute
        "finnhub": {"rate_limit_interval_s": 1.0, "daily_quota": 86_400},
        "yahoo": {"rate_limit_interval_s": 2.0},
        # 50 requests/minute on the public API
        "coingecko": {"rate_limit_interval_s": 1.2, "daily_quota": 10_000, "normal_ttl_s": 120.0},
        "coinpaprika": {"rate_limit_interval_s": 0.1, "daily_quota": 833, "normal_ttl_s": 120.0},
        "kraken": {"rate_limit_interval_s": 1.0, "normal_ttl_s": 120.0},
    },
}


@dataclass(frozen=True)
class ProviderSettings:
    """Effective per-provider settings (provider_defaults <- providers.<name>)."""

    name: str
    rate_limit_interval_s: float
    timeout_s: float
    failure_threshold: int
    cooldown_s: float
    max_cooldown_s: float
    backoff_factor: float
    daily_quota: Optional[int]
    reset_hour_utc: int
    normal_ttl_s: Optional[float]
    extended_ttl_s: Optional[float]
    keys_env: str
    keys: Tuple[str, ...] = ()


def _config_yaml_path() -> Path:
    """config.yaml lives at repo root (parent of package dir) unless QUOTE_ENGINE_CONFIG points elsewhere."""
    override = os.environ.get("QUOTE_ENGINE_CONFIG")
    if override:
        return Path(override)
    return Path(__file__).resolve().parent.parent / "config.yaml"


def _load_yaml() -> dict:
    import yaml

    config_path = _config_yaml_path()
    if not config_path.exists():
        return {}
    with open(config_path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return data if isinstance(data, dict) else {}


def _deep_merge(base: dict, override: dict) -> dict:
    out = dict(base)
    for k, v in override.items():
        if k in out and isinstance(out[k], dict) and isinstance(v, dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _env_overrides() -> dict:
    overrides: dict = {}
    path = os.environ.get("QUOTE_ENGINE_DB_PATH")
    if path:
        overrides.setdefault("db", {})["path"] = path
    normal = os.environ.get("QUOTE_ENGINE_NORMAL_TTL_S")
    if normal:
        overrides.setdefault("cache", {})["normal_ttl_s"] = float(normal)
    extended = os.environ.get("QUOTE_ENGINE_EXTENDED_TTL_S")
    if extended:
        overrides.setdefault("cache", {})["extended_ttl_s"] = float(extended)
    return overrides


def get_config() -> dict:
    """Return merged config: defaults <- config.yaml <- env."""
    merged = _deep_merge(_DEFAULTS, _load_yaml())
    merged = _deep_merge(merged, _env_overrides())
    return merged


# Convenience accessors
def db_path(cfg: Optional[dict] = None) -> str:
    return str((cfg or get_config())["db"]["path"])


def busy_timeout_ms(cfg: Optional[dict] = None) -> int:
    return int((cfg or get_config())["db"]["busy_timeout_ms"])


def normal_ttl_s(cfg: Optional[dict] = None) -> float:
    return float((cfg or get_config())["cache"]["normal_ttl_s"])


def extended_ttl_s(cfg: Optional[dict] = None) -> float:
    return float((cfg or get_config())["cache"]["extended_ttl_s"])


def sweep_interval_s(cfg: Optional[dict] = None) -> float:
    return float((cfg or get_config())["cache"]["sweep_interval_s"])


def provider_priority(asset_class: AssetClass, cfg: Optional[dict] = None) -> List[str]:
    resolver = (cfg or get_config())["resolver"]
    return list(resolver.get(f"{asset_class.value}_priority") or [])


def resolver_deadline_s(cfg: Optional[dict] = None) -> Optional[float]:
    value = (cfg or get_config())["resolver"].get("deadline_s")
    return float(value) if value is not None else None


def max_workers(cfg: Optional[dict] = None) -> int:
    return int((cfg or get_config())["resolver"]["max_workers"])


def _opt(value: Any, cast):
    return cast(value) if value is not None else None


def provider_settings(name: str, cfg: Optional[dict] = None) -> ProviderSettings:
    """Settings for one provider, merged over provider_defaults."""
    cfg = cfg or get_config()
    raw = _deep_merge(cfg.get("provider_defaults", {}), cfg.get("providers", {}).get(name) or {})
    keys = raw.get("keys") or ()
    if isinstance(keys, str):
        keys = keys.split(",")
    return ProviderSettings(
        name=name,
        rate_limit_interval_s=float(raw["rate_limit_interval_s"]),
        timeout_s=float(raw["timeout_s"]),
        failure_threshold=int(raw["failure_threshold"]),
        cooldown_s=float(raw["cooldown_s"]),
        max_cooldown_s=float(raw["max_cooldown_s"]),
        backoff_factor=float(raw["backoff_factor"]),
        daily_quota=_opt(raw.get("daily_quota"), int),
        reset_hour_utc=int(raw.get("reset_hour_utc") or 0),
        normal_ttl_s=_opt(raw.get("normal_ttl_s"), float),
        extended_ttl_s=_opt(raw.get("extended_ttl_s"), float),
        keys_env=str(raw.get("keys_env") or f"QUOTE_ENGINE_{name.upper()}_KEYS"),
        keys=tuple(k.strip() for k in keys if k and k.strip()),
    )


def load_credentials(settings: ProviderSettings, requires_credential: bool) -> List[Credential]:
    """
    Credentials for a provider.

    Keys come from the provider's env var (comma-separated) or, failing that,
    the config `keys` list. A keyless provider with a daily budget but no keys
    gets one anonymous credential so its free tier is still metered. Returns
    an empty list when the provider is unmetered.
    """
    env_value = os.environ.get(settings.keys_env, "")
    secrets = [k.strip() for k in env_value.split(",") if k.strip()] or list(settings.keys)
    if secrets:
        quota = settings.daily_quota if settings.daily_quota is not None else 10**9
        return [
            Credential(
                provider=settings.name,
                credential_id=f"key{i + 1}",
                secret=secret,
                daily_quota=quota,
            )
            for i, secret in enumerate(secrets)
        ]
    if not requires_credential and settings.daily_quota is not None:
        return [
            Credential(
                provider=settings.name,
                credential_id="anonymous",
                secret=None,
                daily_quota=settings.daily_quota,
            )
        ]
    return []
