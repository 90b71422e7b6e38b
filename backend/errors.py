# errors.py — Error codes and exception types shared by every router
from enum import Enum
from typing import Optional

from fastapi import HTTPException


class ErrorCode(str, Enum):
    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    INVALID_TOKEN = "INVALID_TOKEN"
    FORBIDDEN = "FORBIDDEN"
    USER_INACTIVE = "USER_INACTIVE"
    USER_PENDING = "USER_PENDING"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# ============================================================
# ERROR CATALOGUE
# code -> (http status, default message)
# ============================================================

ERROR_CATALOGUE = {
    ErrorCode.UNAUTHORIZED: (401, "Authentication required"),
    ErrorCode.INVALID_CREDENTIALS: (401, "Invalid email or password"),
    ErrorCode.TOKEN_EXPIRED: (401, "Token expired"),
    ErrorCode.INVALID_TOKEN: (401, "Invalid token"),
    ErrorCode.FORBIDDEN: (403, "Insufficient permissions"),
    ErrorCode.USER_INACTIVE: (403, "Account is inactive"),
    ErrorCode.USER_PENDING: (403, "Account is pending approval"),
    ErrorCode.NOT_FOUND: (404, "Resource not found"),
    ErrorCode.CONFLICT: (409, "Resource already exists"),
    ErrorCode.VALIDATION_ERROR: (400, "Request validation failed"),
    ErrorCode.INTERNAL_ERROR: (500, "Internal server error"),
}


class AppError(HTTPException):
    """HTTPException whose detail is always {"code", "message"}."""

    default_code = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: Optional[str] = None, code: Optional[ErrorCode] = None):
        self.code = ErrorCode(code or self.default_code)
        status_code, default_message = ERROR_CATALOGUE[self.code]
        self.message = message or default_message
        headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
        super().__init__(
            status_code=status_code,
            detail={"code": self.code.value, "message": self.message},
            headers=headers,
        )


class AuthenticationError(AppError):
    default_code = ErrorCode.UNAUTHORIZED


class AuthorizationError(AppError):
    default_code = ErrorCode.FORBIDDEN


class NotFoundError(AppError):
    default_code = ErrorCode.NOT_FOUND

    def __init__(self, entity: str = "Resource", message: Optional[str] = None):
        super().__init__(message or f"{entity} not found")


class ConflictError(AppError):
    default_code = ErrorCode.CONFLICT


class ValidationError(AppError):
    default_code = ErrorCode.VALIDATION_ERROR
