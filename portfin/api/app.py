"""FastAPI application factory with lifespan, CORS, error mapping, and routers."""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from portfin import __version__
from portfin.errors import BatchFailure, InvalidInput, MarketDataError
from portfin.marketdata import MarketDataGateway
from portfin.utils import now_ms

logger = logging.getLogger(__name__)

_start_time: float = 0.0


def get_uptime() -> float:
    return time.time() - _start_time if _start_time else 0.0


def create_app(gateway: MarketDataGateway | None = None) -> FastAPI:
    """Build and return the fully-configured FastAPI application.

    A prebuilt ``gateway`` is used as-is and left open on shutdown; otherwise
    one is built from settings in the lifespan and closed with it.
    """

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        global _start_time
        _start_time = time.time()

        owned = gateway is None
        app.state.gateway = gateway or MarketDataGateway.from_settings()
        logger.info("portfin API v%s starting", __version__)
        yield
        if owned:
            await app.state.gateway.close()
        logger.info("portfin API shutting down")

    app = FastAPI(
        title="portfin",
        description="Prices and valuation fundamentals for NSE/BSE holdings",
        version=__version__,
        lifespan=_lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(InvalidInput)
    async def _invalid_input(_request: Request, exc: InvalidInput) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(BatchFailure)
    async def _batch_failure(_request: Request, exc: BatchFailure) -> JSONResponse:
        return JSONResponse(status_code=502, content={"error": exc.message, "details": exc.details})

    @app.exception_handler(MarketDataError)
    async def _market_data_error(_request: Request, exc: MarketDataError) -> JSONResponse:
        logger.exception("market data route failed")
        return JSONResponse(status_code=502, content={"error": str(exc), "ts": now_ms()})

    # Routers
    from portfin.api.routes import fundamentals, prices, system

    app.include_router(prices.router, prefix="/api")
    app.include_router(fundamentals.router, prefix="/api")
    app.include_router(system.router, prefix="/api")

    return app
