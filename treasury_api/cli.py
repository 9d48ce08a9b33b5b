"""Command line entry points.

    python -m treasury_api.cli serve [--host 0.0.0.0] [--port 4000]
    python -m treasury_api.cli rebalance [--reason manual]
    python -m treasury_api.cli balances
"""
from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from typing import Awaitable, Callable, List, Optional

from common.errors import ConfigMissing
from common.logging import configure_logging

from .runtime import TreasuryRuntime


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(prog="treasury", description="Merchant treasury autopilot")
    sub = ap.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="run the HTTP API and the periodic rebalancer")
    serve.add_argument("--host", default=os.getenv("API_HOST", "0.0.0.0"))
    serve.add_argument("--port", type=int, default=int(os.getenv("API_PORT", "4000")))

    rebalance = sub.add_parser("rebalance", help="run one rebalance decision and exit")
    rebalance.add_argument("--reason", default="manual")

    sub.add_parser("balances", help="print cash, yield position and APY")
    return ap.parse_args(argv)


def _run(fn: Callable[[TreasuryRuntime], Awaitable[dict]]) -> int:
    async def _main() -> dict:
        runtime = TreasuryRuntime()
        try:
            runtime.controller.seed_from_ledger()
            return await fn(runtime)
        finally:
            await runtime.aclose()

    try:
        result = asyncio.run(_main())
    except ConfigMissing as exc:
        print(json.dumps({"code": "CONFIG_MISSING", "missing": exc.names}), file=sys.stderr)
        return 2
    print(json.dumps(result, indent=2, default=str))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(os.getenv("LOG_FORMAT", "text"), service_name="treasury")

    if args.command == "serve":
        import uvicorn

        from .main import create_app

        uvicorn.run(create_app(), host=args.host, port=args.port, log_config=None)
        return 0

    if args.command == "rebalance":

        async def _rebalance(runtime: TreasuryRuntime) -> dict:
            return (await runtime.controller.trigger(args.reason)).to_dict()

        return _run(_rebalance)

    async def _balances(runtime: TreasuryRuntime) -> dict:
        return await runtime.treasury.get_balances()

    return _run(_balances)


if __name__ == "__main__":
    sys.exit(main())
