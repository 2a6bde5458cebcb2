# src/stakebank/runtime/access.py
from __future__ import annotations

from typing import Any, Protocol

from stakebank.runtime.errors import Unauthorized


class BoundLedger(Protocol):
    """The two identities a participant ledger is bound to at creation."""

    @property
    def bank(self) -> str: ...

    @property
    def wallet(self) -> str: ...


def _as_principal(v: Any) -> str:
    return str(v).strip() if isinstance(v, str) else ""


def _same_principal(caller: Any, expected: Any) -> bool:
    c = _as_principal(caller)
    e = _as_principal(expected)
    # The null identity never authorizes anything.
    return bool(c) and c == e


def require_owner(caller: Any, owner: str) -> None:
    if not _same_principal(caller, owner):
        raise Unauthorized("owner_required", {"caller": _as_principal(caller)})


def require_bank_caller(caller: Any, ledger: BoundLedger) -> None:
    if not _same_principal(caller, ledger.bank):
        raise Unauthorized("bank_caller_required", {"caller": _as_principal(caller), "wallet": ledger.wallet})


def require_wallet_owner(caller: Any, ledger: BoundLedger) -> None:
    if not _same_principal(caller, ledger.wallet):
        raise Unauthorized("wallet_owner_required", {"caller": _as_principal(caller), "wallet": ledger.wallet})
