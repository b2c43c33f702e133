from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from reservoir.runtime.errors import ApplyError


@dataclass(frozen=True, slots=True)
class ApiError(Exception):
    status_code: int
    code: str
    message: str
    details: Dict[str, Any]

    @staticmethod
    def bad_request(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(400, code, message, details or {})

    @staticmethod
    def forbidden(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(403, code, message, details or {})

    @staticmethod
    def not_found(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(404, code, message, details or {})

    @staticmethod
    def internal(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(500, code, message, details or {})

    def to_json(self) -> Dict[str, Any]:
        return {"ok": False, "error": {"code": self.code, "reason": self.message, "details": self.details}}


# HTTP status per ApplyError code. Anything unlisted is a server-side fault.
_STATUS_BY_CODE = {
    "invalid_input": 400,
    "unauthorized": 403,
    "invariant_violation": 409,
    "insufficient_funds": 409,
    "tx_unimplemented": 422,
    "external_call_failed": 502,
}


def status_for_apply_error(e: ApplyError) -> int:
    return int(_STATUS_BY_CODE.get(str(e.code), 500))


def apply_error_json(e: ApplyError) -> Dict[str, Any]:
    details = e.details if isinstance(e.details, dict) else ({} if e.details is None else {"detail": e.details})
    return {"ok": False, "error": {"code": str(e.code), "reason": str(e.reason), "details": details}}
