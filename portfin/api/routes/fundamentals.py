"""Batch fundamentals endpoint (deadline-bounded, may return a partial set)."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel

router = APIRouter(tags=["fundamentals"])


class FundamentalsRequest(BaseModel):
    items: list[Any] | None = None


@router.post("/fundamentals")
async def batch_fundamentals(
    body: FundamentalsRequest,
    request: Request,
    deadline_ms: float | None = Query(None, alias="deadlineMs", ge=0),
    symbol_timeout_ms: float | None = Query(None, alias="symbolTimeoutMs", ge=0),
):
    gateway = request.app.state.gateway
    results = await gateway.get_fundamentals_batch(
        body.items,
        deadline_ms=deadline_ms,
        symbol_timeout_ms=symbol_timeout_ms,
    )
    return [r.as_dict() for r in results]
