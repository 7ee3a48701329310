"""System endpoints — health."""

from __future__ import annotations

from fastapi import APIRouter, Request

from portfin import __version__

router = APIRouter(tags=["system"])


@router.get("/health")
async def health(request: Request):
    from portfin.api.app import get_uptime

    gateway = request.app.state.gateway
    return {
        "status": "ok",
        "version": __version__,
        "uptime_seconds": round(get_uptime(), 1),
        "caches": gateway.cache_stats(),
    }
