from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from stakebank.api.routes_parts.common import _allocator, _participant_view
from stakebank.api.schemas import AmountRequest, CreateParticipantRequest, DepositRequest
from stakebank.api.security import caller_identity

router = APIRouter()

Json = Dict[str, Any]


@router.get("/participants")
def participants_list(request: Request) -> Json:
    alloc = _allocator(request)
    return {"ok": True, "participants": alloc.participants()}


@router.post("/participants")
def participants_create(body: CreateParticipantRequest, request: Request) -> Json:
    """Owner only. Registers a wallet and creates its ledger."""
    alloc = _allocator(request)
    caller = caller_identity(request)
    alloc.create_participant(caller, body.wallet, body.name)
    return {"ok": True, "participant": _participant_view(alloc, body.wallet)}


@router.get("/participants/{wallet}")
def participants_get(wallet: str, request: Request) -> Json:
    alloc = _allocator(request)
    return {"ok": True, "participant": _participant_view(alloc, wallet)}


@router.post("/participants/{wallet}/deactivate")
def participants_deactivate(wallet: str, request: Request) -> Json:
    alloc = _allocator(request)
    alloc.deactivate(caller_identity(request), wallet)
    return {"ok": True, "participant": _participant_view(alloc, wallet)}


@router.post("/participants/{wallet}/reactivate")
def participants_reactivate(wallet: str, request: Request) -> Json:
    alloc = _allocator(request)
    alloc.reactivate(caller_identity(request), wallet)
    return {"ok": True, "participant": _participant_view(alloc, wallet)}


@router.post("/participants/{wallet}/deposit")
def participants_deposit(wallet: str, body: DepositRequest, request: Request) -> Json:
    """Open to any caller; the attached value must match the credited amount."""
    alloc = _allocator(request)
    alloc.deposit_for(wallet, body.amount, body.incoming_funds)
    return {
        "ok": True,
        "total_allocated": alloc.total_allocated,
        "participant": _participant_view(alloc, wallet),
    }


@router.post("/participants/{wallet}/stake")
def participants_stake(wallet: str, body: AmountRequest, request: Request) -> Json:
    """The wallet itself asks its ledger to stake; the ledger relays through the allocator."""
    alloc = _allocator(request)
    caller = caller_identity(request)
    alloc.ledger_of(wallet).request_stake(caller, body.amount)
    return {"ok": True, "participant": _participant_view(alloc, wallet)}


@router.post("/participants/{wallet}/unstake")
def participants_unstake(wallet: str, body: AmountRequest, request: Request) -> Json:
    alloc = _allocator(request)
    caller = caller_identity(request)
    alloc.ledger_of(wallet).request_unstake(caller, body.amount)
    return {"ok": True, "participant": _participant_view(alloc, wallet)}
