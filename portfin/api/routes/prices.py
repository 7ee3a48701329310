"""Batch quote endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel

router = APIRouter(tags=["prices"])


class PricesRequest(BaseModel):
    symbols: list[Any] | None = None
    items: list[Any] | None = None


@router.post("/prices")
async def batch_prices(body: PricesRequest, request: Request):
    gateway = request.app.state.gateway
    results = await gateway.get_quotes_batch(symbols=body.symbols, items=body.items)
    return [r.as_dict() for r in results]
