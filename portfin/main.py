"""portfin — CLI entrypoint.

Serve the API or run one batch from the shell::

    python -m portfin.main --server
    python -m portfin.main --prices HDFCBANK 500325
    python -m portfin.main --fundamentals HDFCBANK:NSE 544107:BSE --deadline-ms 5000
    python -m portfin.main --resolve 544107 --hint "Bajaj Housing"
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from portfin.config import get_settings
from portfin.errors import BatchFailure, MarketDataError
from portfin.utils import setup_logging

logger = logging.getLogger("portfin")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="portfin",
        description="portfin — prices and fundamentals for NSE/BSE holdings",
    )
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--server", action="store_true", help="Run the FastAPI server (default)")
    group.add_argument("--prices", nargs="+", metavar="SYMBOL", help="Fetch a quote batch")
    group.add_argument("--fundamentals", nargs="+", metavar="SYMBOL[:EXCH]", help="Fetch a fundamentals batch")
    group.add_argument("--resolve", metavar="CODE", help="Resolve a numeric BSE scrip code")

    parser.add_argument("--hint", help="Company name hint for --resolve")
    parser.add_argument("--deadline-ms", type=int, default=None, help="Fundamentals batch deadline")
    parser.add_argument("--symbol-timeout-ms", type=int, default=None, help="Fundamentals per-item timeout")
    return parser


def _parse_item(arg: str) -> dict[str, Any]:
    symbol, _, exchange = arg.partition(":")
    return {"symbol": symbol, "exchange": exchange or None}


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def _run_batch(args: argparse.Namespace) -> int:
    from portfin.marketdata import MarketDataGateway

    gw = MarketDataGateway.from_settings()
    try:
        if args.prices:
            results = await gw.get_quotes_batch(symbols=args.prices)
            _emit([r.as_dict() for r in results])
        elif args.fundamentals:
            results = await gw.get_fundamentals_batch(
                [_parse_item(a) for a in args.fundamentals],
                deadline_ms=args.deadline_ms,
                symbol_timeout_ms=args.symbol_timeout_ms,
            )
            _emit([r.as_dict() for r in results])
        else:
            resolved = await gw.resolve_bse_code(args.resolve, args.hint)
            _emit(
                {
                    "code": args.resolve,
                    "symbol": resolved.symbol,
                    "exchange": resolved.exchange.value,
                    "resolvedVia": resolved.resolved_via.value,
                    "verified": resolved.verified,
                }
            )
        return 0
    except BatchFailure as exc:
        _emit({"error": exc.message, "details": exc.details})
        return 2
    except MarketDataError as exc:
        _emit({"error": str(exc)})
        return 1
    finally:
        await gw.close()


async def _serve() -> None:
    import uvicorn

    from portfin.api.app import create_app

    settings = get_settings()
    config = uvicorn.Config(
        create_app(),
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
    server = uvicorn.Server(config)
    await server.serve()


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(settings.log_level)

    try:
        if args.prices or args.fundamentals or args.resolve:
            sys.exit(asyncio.run(_run_batch(args)))
        asyncio.run(_serve())
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
