from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from stakebank.api.routes_parts.common import _allocator
from stakebank.api.schemas import AmountRequest, WithdrawRequest
from stakebank.api.security import caller_identity

router = APIRouter()

Json = Dict[str, Any]


def _bank_view(request: Request) -> Json:
    alloc = _allocator(request)
    return {
        "owner": alloc.owner,
        "address": alloc.address,
        "total_allocated": alloc.total_allocated,
        "custody_balance": alloc.custody_balance(),
        "participants": len(alloc.participants()),
        "halted": alloc.halted,
        "halt_reason": alloc.halt_reason,
    }


@router.get("/bank")
def bank_get(request: Request) -> Json:
    return {"ok": True, "bank": _bank_view(request)}


@router.get("/bank/invariants")
def bank_invariants(request: Request) -> Json:
    report = _allocator(request).check_invariants()
    return {"ok": bool(report.get("ok")), "invariants": report}


@router.post("/bank/topup")
def bank_topup(body: AmountRequest, request: Request) -> Json:
    _allocator(request).top_up(caller_identity(request), body.amount)
    return {"ok": True, "bank": _bank_view(request)}


@router.post("/bank/withdraw")
def bank_withdraw(body: WithdrawRequest, request: Request) -> Json:
    _allocator(request).withdraw(caller_identity(request), body.amount, body.to)
    return {"ok": True, "bank": _bank_view(request)}
