"""Command-line entry points (console script: quote-engine)."""

from __future__ import annotations

import argparse
from typing import Optional

from ..db.kv import MemoryKeyValueStore


def add_engine_args(ap: argparse.ArgumentParser) -> None:
    ap.add_argument("--db", default=None, help="DB path (default: from config or QUOTE_ENGINE_DB_PATH)")
    ap.add_argument(
        "--no-persist",
        action="store_true",
        help="Keep cache and quota state in memory only (nothing written to disk)",
    )


def engine_from_args(args: argparse.Namespace):
    """Build a QuoteEngine honoring --db / --no-persist."""
    from ..config import get_config
    from ..engine import build_engine

    cfg = get_config()
    if args.db:
        cfg = dict(cfg, db=dict(cfg["db"], path=args.db))
    store: Optional[MemoryKeyValueStore] = MemoryKeyValueStore() if args.no_persist else None
    return build_engine(cfg, store=store)
