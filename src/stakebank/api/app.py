from __future__ import annotations

import logging
import os
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from stakebank.api.config import load_bank_config
from stakebank.api.errors import ApiError
from stakebank.api.routes import api_router
from stakebank.api.structured_logging import RequestLogMiddleware
from stakebank.logging_utils import log_event
from stakebank.runtime.allocator import Allocator
from stakebank.runtime.custody import InMemoryCustody
from stakebank.runtime.errors import LedgerError
from stakebank.runtime.events import LoggingEventSink

_LOG = logging.getLogger("stakebank.http")


def build_allocator() -> Allocator:
    """Build the process allocator from STAKEBANK_* config.

    Kept as a module function so tests can monkeypatch
    `stakebank.api.app.build_allocator`.
    """
    cfg = load_bank_config()
    custody = InMemoryCustody(cfg.initial_custody)
    alloc = Allocator(
        owner=cfg.owner,
        custody=custody,
        sink=LoggingEventSink(),
        address=cfg.bank_address,
    )
    log_event(_LOG, "allocator_booted", owner=cfg.owner, address=cfg.bank_address, custody=cfg.initial_custody)
    return alloc


def create_app(*, allocator: Optional[Allocator] = None, boot_runtime: bool = True) -> FastAPI:
    """Create the FastAPI application.

    allocator:
      - given: attached as-is (embedding hosts, tests)
      - None and boot_runtime=True: built from env via build_allocator()
      - None and boot_runtime=False: no allocator; routes answer 500 not_ready
    """
    mode = os.environ.get("STAKEBANK_MODE", "prod").strip().lower()

    # Disable docs in production.
    if mode == "prod":
        app = FastAPI(title="StakeBank API", docs_url=None, redoc_url=None, openapi_url=None)
    else:
        app = FastAPI(title="StakeBank API")

    if allocator is not None:
        app.state.allocator = allocator
    elif boot_runtime:
        app.state.allocator = build_allocator()
    else:
        app.state.allocator = None

    app.add_middleware(RequestLogMiddleware)

    @app.exception_handler(ApiError)
    async def _api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_json())

    @app.exception_handler(LedgerError)
    async def _ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
        err = ApiError.from_ledger_error(exc)
        return JSONResponse(status_code=err.status_code, content=err.to_json())

    app.include_router(api_router)

    return app
