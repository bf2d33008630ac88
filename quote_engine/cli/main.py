"""
Top-level CLI dispatcher: quote-engine <command> [args...].
All commands dispatch to package CLI modules.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

_COMMANDS = {
    "quote": "Fetch one quote",
    "quotes": "Fetch quotes for several symbols",
    "status": "Provider health and quota usage",
    "sweep": "Evict cache entries past their extended TTL",
}


def main(argv: Optional[List[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    parser = argparse.ArgumentParser(
        prog="quote-engine",
        description="Resilient multi-provider market quote CLI",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0, help="-v info, -vv debug")
    subparsers = parser.add_subparsers(dest="command", help="command")
    for name, help_text in _COMMANDS.items():
        subparsers.add_parser(name, help=help_text, add_help=False)

    args, rest = parser.parse_known_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    cmd = args.command
    if cmd == "quote":
        from quote_engine.cli import quote as mod

        return mod.main_quote(rest)
    if cmd == "quotes":
        from quote_engine.cli import quote as mod

        return mod.main_quotes(rest)
    if cmd == "status":
        from quote_engine.cli import status as mod

        return mod.main_status(rest)
    if cmd == "sweep":
        from quote_engine.cli import status as mod

        return mod.main_sweep(rest)

    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
