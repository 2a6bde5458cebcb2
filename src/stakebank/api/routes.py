from __future__ import annotations

from fastapi import APIRouter

from stakebank.api.routes_parts.bank import router as bank_router
from stakebank.api.routes_parts.health import router as health_router
from stakebank.api.routes_parts.participants import router as participants_router

api_router = APIRouter()

api_router.include_router(health_router, prefix="/v1", tags=["health"])
api_router.include_router(bank_router, prefix="/v1", tags=["bank"])
api_router.include_router(participants_router, prefix="/v1", tags=["participants"])
