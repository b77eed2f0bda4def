"""Unified exception hierarchy for the UCP gateway.

All protocol-facing failures are raised as UCPException (or a subclass),
enabling:
- A single HTTP status mapping per error code
- Structured error bodies with field-level details
- A stable ``retryable`` flag for agents deciding whether to retry

Usage:
    from ucp_gateway.exceptions import UCPException, UCPErrorCode, field_error

    raise UCPException(
        UCPErrorCode.INVALID_FIELD,
        "Invalid discount code",
        details=[field_error("discountCode", "INVALID_DISCOUNT", "The discount code is invalid or expired")],
    )

Every error response has the shape:
    {"error": {"code", "message", "details", "retryable", "retryAfter"?}}
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional


class UCPErrorCode(str, Enum):
    """Machine-readable error codes."""

    INVALID_REQUEST = "INVALID_REQUEST"
    INVALID_FIELD = "INVALID_FIELD"
    MISSING_FIELD = "MISSING_FIELD"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    GONE = "GONE"
    UNPROCESSABLE = "UNPROCESSABLE"
    RATE_LIMITED = "RATE_LIMITED"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


ERROR_STATUS: Dict[UCPErrorCode, int] = {
    UCPErrorCode.INVALID_REQUEST: 400,
    UCPErrorCode.INVALID_FIELD: 400,
    UCPErrorCode.MISSING_FIELD: 400,
    UCPErrorCode.UNAUTHORIZED: 401,
    UCPErrorCode.FORBIDDEN: 403,
    UCPErrorCode.NOT_FOUND: 404,
    UCPErrorCode.CONFLICT: 409,
    UCPErrorCode.GONE: 410,
    UCPErrorCode.UNPROCESSABLE: 422,
    UCPErrorCode.RATE_LIMITED: 429,
    UCPErrorCode.INTERNAL_ERROR: 500,
    UCPErrorCode.NETWORK_ERROR: 502,
    UCPErrorCode.SERVICE_UNAVAILABLE: 503,
}

RETRYABLE_CODES = frozenset({
    UCPErrorCode.RATE_LIMITED,
    UCPErrorCode.NETWORK_ERROR,
    UCPErrorCode.SERVICE_UNAVAILABLE,
})


@dataclass(slots=True)
class ErrorDetail:
    """Field-level error detail."""

    field: Optional[str]
    code: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.field is not None:
            result["field"] = self.field
        return result


class UCPException(Exception):
    """Base exception for all protocol errors.

    Attributes:
        code: UCPErrorCode
        message: Human-readable error message
        details: Field-level details
        retry_after: Seconds before retrying (RATE_LIMITED)
    """

    def __init__(
        self,
        code: UCPErrorCode,
        message: str,
        details: Optional[List[ErrorDetail]] = None,
        retry_after: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.code = UCPErrorCode(code)
        self.message = message
        self.details = details or []
        self.retry_after = retry_after

    @property
    def http_status(self) -> int:
        return ERROR_STATUS.get(self.code, 500)

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_CODES

    @property
    def detail_codes(self) -> List[str]:
        return [d.code for d in self.details]

    def to_response(self) -> Dict[str, Any]:
        """Convert exception to API response format."""
        error: Dict[str, Any] = {
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            error["details"] = [d.to_dict() for d in self.details]
        if self.retry_after is not None:
            error["retryAfter"] = self.retry_after
        return {"error": error}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.code.value!r}, {self.message!r})"


class StoreUnavailableError(UCPException):
    """The ephemeral keyed store could not be reached."""

    def __init__(self, operation: str, cause: Exception | None = None) -> None:
        super().__init__(
            UCPErrorCode.SERVICE_UNAVAILABLE,
            "Session storage is temporarily unavailable",
            details=[ErrorDetail(None, "STORE_UNAVAILABLE", f"{operation} failed")],
        )
        self.operation = operation
        self.__cause__ = cause


class InvalidTransitionError(UCPException):
    """A checkout status transition is not allowed."""

    def __init__(self, from_status: str, event: str) -> None:
        super().__init__(
            UCPErrorCode.CONFLICT,
            f"Invalid transition: cannot apply {event} in '{from_status}' state",
            details=[ErrorDetail("status", "INVALID_TRANSITION", f"{from_status} + {event}")],
        )
        self.from_status = from_status
        self.event = event


# =============================================================================
# Helpers
# =============================================================================

def field_error(field: str, code: str, message: str) -> ErrorDetail:
    return ErrorDetail(field=field, code=code, message=message)


def missing_field_error(field: str) -> ErrorDetail:
    return ErrorDetail(field=field, code="MISSING_FIELD", message=f"{field} is required")


def not_found_error(resource: str, resource_id: str) -> UCPException:
    return UCPException(UCPErrorCode.NOT_FOUND, f"{resource} {resource_id} not found")


__all__ = [
    "UCPErrorCode",
    "ERROR_STATUS",
    "RETRYABLE_CODES",
    "ErrorDetail",
    "UCPException",
    "StoreUnavailableError",
    "InvalidTransitionError",
    "field_error",
    "missing_field_error",
    "not_found_error",
]
