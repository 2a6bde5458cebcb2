from __future__ import annotations

from fastapi import Request

from stakebank.api.errors import ApiError

CALLER_HEADER = "x-caller-id"


def caller_identity(request: Request) -> str:
    """Resolve the calling principal.

    The service does no authentication: the header is expected to be set by
    an authenticating proxy in front of it. Routes that mutate state require
    the header; comparison against stored identities happens in the ledger.
    """
    caller = (request.headers.get(CALLER_HEADER) or "").strip()
    if not caller:
        raise ApiError.unauthenticated("missing_caller", f"{CALLER_HEADER} header is required", {})
    return caller
