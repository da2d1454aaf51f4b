from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from fastapi import status


class ErrorCode(str, Enum):
    VALIDATION_FAILED = "VALIDATION_FAILED"
    TOO_MANY_REQUESTS = "TOO_MANY_REQUESTS"
    EXPIRED = "EXPIRED"
    NOT_FOUND = "NOT_FOUND"
    CHANNEL_MISMATCH = "CHANNEL_MISMATCH"
    UNAUTHORIZED = "UNAUTHORIZED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


HTTP_STATUS_BY_CODE = {
    ErrorCode.VALIDATION_FAILED: status.HTTP_400_BAD_REQUEST,
    ErrorCode.TOO_MANY_REQUESTS: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorCode.EXPIRED: status.HTTP_410_GONE,
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.CHANNEL_MISMATCH: status.HTTP_400_BAD_REQUEST,
    ErrorCode.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.INTERNAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@dataclass
class ServiceResult:
    """Outcome of a user-facing flow; routes turn it into the response envelope."""

    success: bool
    message: str
    error_code: Optional[ErrorCode] = None
    errors: List[str] = field(default_factory=list)
    data: Optional[Dict[str, Any]] = None

    @classmethod
    def ok(cls, message: str, data: Optional[Dict[str, Any]] = None) -> "ServiceResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def failure(cls, message: str, error_code: ErrorCode,
                errors: Optional[List[str]] = None,
                data: Optional[Dict[str, Any]] = None) -> "ServiceResult":
        return cls(success=False, message=message, error_code=error_code,
                   errors=list(errors or []), data=data)

    @property
    def http_status(self) -> int:
        if self.success:
            return status.HTTP_200_OK
        return HTTP_STATUS_BY_CODE.get(self.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
