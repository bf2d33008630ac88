"""
Provider status and cache maintenance.
Use: quote-engine status [--db PATH]
     quote-engine sweep [--db PATH]
"""

from __future__ import annotations

import argparse
from typing import List, Optional

from ..read_api import health_frame, usage_frame
from . import add_engine_args, engine_from_args


def main_status(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(prog="quote-engine status")
    add_engine_args(ap)
    args = ap.parse_args(argv)
    with engine_from_args(args) as engine:
        health = engine.provider_status()
        usage = engine.quota_usage()
        degraded = engine.degraded()
        cached = len(engine.cache)

    print("Providers")
    print(health_frame(health).to_string(index=False))
    print()
    print("Quota")
    usage_df = usage_frame(usage)
    print(usage_df.to_string(index=False) if not usage_df.empty else "(no metered credentials)")
    print()
    for asset, flag in degraded.items():
        print(f"{asset}: {'DEGRADED' if flag else 'ok'}")
    print(f"cached quotes: {cached}")
    return 0


def main_sweep(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(prog="quote-engine sweep")
    add_engine_args(ap)
    args = ap.parse_args(argv)
    with engine_from_args(args) as engine:
        evicted = engine.sweep_cache()
        remaining = len(engine.cache)
    print(f"Evicted {evicted} cache entries ({remaining} remaining)")
    return 0
