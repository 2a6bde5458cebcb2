from __future__ import annotations

from typing import Any, Dict

from fastapi import Request

from stakebank.api.errors import ApiError
from stakebank.runtime.allocator import Allocator

Json = Dict[str, Any]


def _allocator(request: Request) -> Allocator:
    alloc = getattr(request.app.state, "allocator", None)
    if alloc is None:
        raise ApiError.internal("not_ready", "allocator not attached to app.state", {})
    return alloc


def _participant_view(alloc: Allocator, wallet: str) -> Json:
    ledger = alloc.ledger_of(wallet)
    return {
        "wallet": ledger.wallet,
        "name": alloc.name_of(wallet),
        "active": alloc.is_active(wallet),
        "ledger": ledger.read_ledger().to_json(),
    }
