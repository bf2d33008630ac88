"""CLI smoke tests: dispatcher and subcommands against fake providers (no network, no disk)."""
from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from quote_engine.cli.main import main
from quote_engine.providers.base import AssetClass
from quote_engine.providers.registry import ProviderRegistry
from tests.fakes.providers import FakeQuoteProvider, FakeQuoteProviderAlwaysFail

REGISTRY_FACTORY = "quote_engine.engine.create_default_registry"


def _fake_registry(equity_cls=FakeQuoteProvider) -> ProviderRegistry:
    registry = ProviderRegistry()
    for name in ("alphavantage", "finnhub", "yahoo"):
        registry.register(AssetClass.EQUITY, name, equity_cls(name))
    for name in ("coingecko", "coinpaprika", "kraken"):
        registry.register(AssetClass.CRYPTO, name, FakeQuoteProvider(name, asset_class=AssetClass.CRYPTO))
    return registry


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path, monkeypatch):
    monkeypatch.setenv("QUOTE_ENGINE_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.setenv("QUOTE_ENGINE_DB_PATH", str(tmp_path / "cli.sqlite"))
    for name in ("ALPHAVANTAGE", "FINNHUB", "COINGECKO", "COINPAPRIKA"):
        monkeypatch.delenv(f"QUOTE_ENGINE_{name}_KEYS", raising=False)


def test_no_command_prints_help(capsys):
    assert main([]) == 0
    assert "quote-engine" in capsys.readouterr().out


def test_quote_prints_source_and_freshness(capsys):
    with patch(REGISTRY_FACTORY, return_value=_fake_registry()):
        rc = main(["quote", "aapl", "--no-persist"])
    out = capsys.readouterr().out
    assert rc == 0
    assert out.startswith("AAPL 189.4200")
    assert "source=alphavantage" in out
    assert "freshness=fresh" in out


def test_quote_json(capsys):
    with patch(REGISTRY_FACTORY, return_value=_fake_registry()):
        rc = main(["quote", "BTC", "--asset", "crypto", "--json", "--no-persist"])
    payload = json.loads(capsys.readouterr().out)
    assert rc == 0
    assert payload["symbol"] == "BTC"
    assert payload["assetClass"] == "crypto"
    assert payload["source"] == "coingecko"
    assert payload["price"] == 50000.0


def test_quote_no_data_exit_code(capsys):
    with patch(REGISTRY_FACTORY, return_value=_fake_registry(FakeQuoteProviderAlwaysFail)):
        rc = main(["quote", "AAPL", "--no-persist"])
    assert rc == 2
    assert "No data available for equity:AAPL" in capsys.readouterr().err


def test_quotes_json_batch(capsys):
    with patch(REGISTRY_FACTORY, return_value=_fake_registry()):
        rc = main(["quotes", "BTC", "ETH", "--asset", "crypto", "--json", "--no-persist"])
    payload = json.loads(capsys.readouterr().out)
    assert rc == 0
    assert sorted(q["symbol"] for q in payload["quotes"]) == ["BTC", "ETH"]
    assert payload["errors"] == []


def test_status_and_sweep(capsys):
    with patch(REGISTRY_FACTORY, return_value=_fake_registry()):
        assert main(["status", "--no-persist"]) == 0
        out = capsys.readouterr().out
        assert "Providers" in out
        assert "alphavantage" in out
        assert "equity: ok" in out
        assert "crypto: ok" in out

        assert main(["sweep", "--no-persist"]) == 0
        assert "Evicted 0 cache entries" in capsys.readouterr().out
