"""
Fetch quotes from the command line.
Use: quote-engine quote AAPL [--asset equity]
     quote-engine quotes BTC ETH SOL --asset crypto [--json]
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import List, Optional

from ..errors import NoDataAvailable
from ..providers.base import AssetClass, Quote
from ..read_api import quotes_frame
from . import add_engine_args, engine_from_args


def _quote_dict(q: Quote) -> dict:
    return dict(
        symbol=q.symbol,
        assetClass=q.asset_class.value,
        price=q.price,
        changeAbsolute=q.change_absolute,
        changePercent=q.change_percent,
        volume24h=q.volume_24h,
        asOf=q.as_of_utc,
        source=q.source,
        freshness=q.freshness.value,
    )


def _parser(prog: str, many: bool) -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog=prog)
    ap.add_argument("symbols", nargs="+" if many else 1, metavar="SYMBOL")
    ap.add_argument(
        "--asset",
        choices=[ac.value for ac in AssetClass],
        default=AssetClass.EQUITY.value,
        help="Asset class (default: equity)",
    )
    ap.add_argument("--json", action="store_true", help="Print JSON instead of a table")
    add_engine_args(ap)
    return ap


def main_quote(argv: Optional[List[str]] = None) -> int:
    args = _parser("quote-engine quote", many=False).parse_args(argv)
    with engine_from_args(args) as engine:
        try:
            q = engine.get_quote(args.symbols[0], args.asset)
        except NoDataAvailable as e:
            print(str(e), file=sys.stderr)
            return 2
    if args.json:
        print(json.dumps(_quote_dict(q), indent=2))
    else:
        change = f"{q.change_percent:+.2f}%" if q.change_percent is not None else "n/a"
        as_of = q.as_of_utc or "n/a"
        print(f"{q.symbol} {q.price:,.4f} ({change}) source={q.source} freshness={q.freshness.value} as_of={as_of}")
    return 0


def main_quotes(argv: Optional[List[str]] = None) -> int:
    args = _parser("quote-engine quotes", many=True).parse_args(argv)
    with engine_from_args(args) as engine:
        quotes, errors = engine.get_quotes(args.symbols, args.asset)
    if args.json:
        print(json.dumps(
            {
                "quotes": [_quote_dict(q) for q in quotes.values()],
                "errors": [{"symbol": e.symbol, "reasons": e.reasons} for e in errors],
            },
            indent=2,
        ))
    else:
        df = quotes_frame(quotes.values())
        if not df.empty:
            print(df.to_string(index=False))
        for e in errors:
            print(f"ERROR {e}", file=sys.stderr)
    return 0 if quotes else 2
