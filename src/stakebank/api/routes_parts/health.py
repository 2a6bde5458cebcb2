from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse

from stakebank.api.errors import ApiError
from stakebank.api.routes_parts.common import _allocator
from stakebank.runtime import metrics

router = APIRouter()


@router.get("/health")
def health(request: Request) -> Dict[str, Any]:
    """Liveness plus the halt flag: a halted allocator is alive but not ok."""
    alloc = _allocator(request)
    return {"ok": not alloc.halted, "halted": alloc.halted, "halt_reason": alloc.halt_reason}


@router.get("/metrics")
def metrics_text(request: Request) -> PlainTextResponse:
    if not metrics.metrics_enabled():
        raise ApiError(404, "metrics_disabled", "set STAKEBANK_METRICS_ENABLED=1 to expose metrics", {})
    return PlainTextResponse(metrics.format_prometheus())
