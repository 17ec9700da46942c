"""
Spendgate Error Handling

Specific error types with user-friendly messages and debugging context.
"""
from typing import Optional, Dict, Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standardized error codes for client handling."""
    # Input errors (400s)
    INVALID_RULE = "INVALID_RULE"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    NO_ACTIVE_ACCOUNT = "NO_ACTIVE_ACCOUNT"

    # Auth errors (401/403)
    MISSING_API_KEY = "MISSING_API_KEY"
    INVALID_API_KEY = "INVALID_API_KEY"

    # Processing errors (500s)
    REPORT_FAILED = "REPORT_FAILED"
    DATABASE_ERROR = "DATABASE_ERROR"

    # External service errors
    DIRECTORY_ERROR = "DIRECTORY_ERROR"
    DIRECTORY_UNAVAILABLE = "DIRECTORY_UNAVAILABLE"


STATUS_MAP: Dict[ErrorCode, int] = {
    ErrorCode.INVALID_RULE: 400,
    ErrorCode.INVALID_AMOUNT: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.CONFLICT: 409,
    ErrorCode.NO_ACTIVE_ACCOUNT: 412,
    ErrorCode.MISSING_API_KEY: 401,
    ErrorCode.INVALID_API_KEY: 403,
    ErrorCode.REPORT_FAILED: 500,
    ErrorCode.DATABASE_ERROR: 500,
    ErrorCode.DIRECTORY_ERROR: 502,
    ErrorCode.DIRECTORY_UNAVAILABLE: 503,
}


class SpendgateError(Exception):
    """Base exception with structured error info."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        detail: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.detail = detail
        self.context = context or {}
        super().__init__(message)

    @property
    def status_code(self) -> int:
        return STATUS_MAP.get(self.code, 500)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to API response format."""
        result = {
            "error": self.code.value,
            "message": self.message
        }
        if self.detail:
            result["detail"] = self.detail
        if self.context:
            result["context"] = self.context
        return result


class RuleValidationError(SpendgateError):
    """Rejected approval rule payload."""

    def __init__(self, field: str, detail: str):
        super().__init__(
            code=ErrorCode.INVALID_RULE,
            message=f"Invalid approval rule field '{field}'",
            detail=detail,
            context={"field": field}
        )


class AmountError(SpendgateError):
    """Amount that cannot be evaluated."""

    def __init__(self, value: Any):
        super().__init__(
            code=ErrorCode.INVALID_AMOUNT,
            message=f"Invalid amount: '{value}'",
            detail="Expected a non-negative number",
            context={"value": str(value)}
        )


class NotFoundError(SpendgateError):
    """Referenced record does not exist."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            code=ErrorCode.NOT_FOUND,
            message=f"{resource} not found",
            detail=f"No {resource} with id '{identifier}'",
            context={"resource": resource, "id": identifier}
        )


class ConflictError(SpendgateError):
    """Write collides with an existing record."""

    def __init__(self, resource: str, detail: str):
        super().__init__(
            code=ErrorCode.CONFLICT,
            message=f"{resource} conflict",
            detail=detail,
            context={"resource": resource}
        )


class NoActiveAccountError(SpendgateError):
    """No connected business account is selected."""

    def __init__(self, detail: str = "No active account selected"):
        super().__init__(
            code=ErrorCode.NO_ACTIVE_ACCOUNT,
            message="No active business account",
            detail=detail
        )


class DirectoryError(SpendgateError):
    """Error calling the external people directory."""

    def __init__(self, detail: str, status_code: Optional[int] = None):
        context: Dict[str, Any] = {"service": "directory"}
        if status_code is not None:
            context["upstream_status"] = status_code
        super().__init__(
            code=ErrorCode.DIRECTORY_ERROR if status_code is not None else ErrorCode.DIRECTORY_UNAVAILABLE,
            message="Directory integration error",
            detail=detail,
            context=context
        )


class ReportBuildError(SpendgateError):
    """Approval report could not be assembled."""

    def __init__(self, stage: str, detail: str):
        super().__init__(
            code=ErrorCode.REPORT_FAILED,
            message=f"Approval report failed at {stage}",
            detail=detail,
            context={"stage": stage}
        )


class DatabaseError(SpendgateError):
    """Storage layer failure."""

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(
            code=ErrorCode.DATABASE_ERROR,
            message=message,
            detail=detail
        )


class ApiKeyError(SpendgateError):
    """Missing or wrong X-API-Key header."""

    def __init__(self, missing: bool):
        super().__init__(
            code=ErrorCode.MISSING_API_KEY if missing else ErrorCode.INVALID_API_KEY,
            message="API key required" if missing else "Invalid API key",
            detail="Provide the X-API-Key header" if missing else None
        )
