from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Type

from stakebank.runtime import errors as ledger_errors

_STATUS_BY_ERROR: Dict[Type[ledger_errors.LedgerError], int] = {
    ledger_errors.Unauthorized: 403,
    ledger_errors.InvalidArgument: 400,
    ledger_errors.NotFound: 404,
    ledger_errors.AlreadyExists: 409,
    ledger_errors.AlreadyActive: 409,
    ledger_errors.AlreadyInactive: 409,
    ledger_errors.Inactive: 409,
    ledger_errors.InsufficientBalance: 409,
    ledger_errors.Overflow: 422,
    ledger_errors.TransferFailed: 502,
    ledger_errors.InvariantViolation: 500,
}


@dataclass
class ApiError(Exception):
    status_code: int
    code: str
    message: str
    details: Dict[str, Any]

    @staticmethod
    def bad_request(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(400, code, message, details or {})

    @staticmethod
    def unauthenticated(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(401, code, message, details or {})

    @staticmethod
    def internal(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(500, code, message, details or {})

    @staticmethod
    def from_ledger_error(err: ledger_errors.LedgerError) -> "ApiError":
        status = _STATUS_BY_ERROR.get(type(err), 500)
        return ApiError(status, err.code, err.reason, dict(err.details or {}))

    def to_json(self) -> Dict[str, Any]:
        return {"ok": False, "error": {"code": self.code, "message": self.message, "details": self.details}}
