from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Optional

Json = Dict[str, Any]


@dataclass
class LedgerError(Exception):
    """Canonical error type for allocator and participant-ledger failures.

    Subclasses fix `code`; `reason` is a short machine-readable slug and
    `details` carries the identities/amounts involved.
    """

    reason: str
    details: Optional[Json] = None

    code: ClassVar[str] = "ledger_error"
    fatal: ClassVar[bool] = False

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"

    def to_json(self) -> Json:
        return {"code": self.code, "reason": self.reason, "details": dict(self.details or {})}


class Unauthorized(LedgerError):
    code = "unauthorized"


class InvalidArgument(LedgerError):
    code = "invalid_argument"


class NotFound(LedgerError):
    code = "not_found"


class AlreadyExists(LedgerError):
    code = "already_exists"


class AlreadyActive(LedgerError):
    code = "already_active"


class AlreadyInactive(LedgerError):
    code = "already_inactive"


class Inactive(LedgerError):
    code = "inactive"


class InsufficientBalance(LedgerError):
    code = "insufficient_balance"


class Overflow(LedgerError):
    code = "overflow"


class TransferFailed(LedgerError):
    code = "transfer_failed"


class InvariantViolation(LedgerError):
    """Coverage invariant (custody >= total allocated) broken or about to break.

    When raised from a post-commit check it signals a bookkeeping bug; the
    allocator halts further mutating operations.
    """

    code = "invariant_violation"
    fatal = True
