from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFIG_MISSING = "config_missing"
    UNAUTHORIZED = "unauthorized"
    PAYMENT_REQUIRED = "payment_required"
    UPSTREAM = "upstream"
    PARSE = "parse"
    TIMEOUT = "timeout"
    DB_ERROR = "db_error"
    UNKNOWN = "unknown"


HTTP_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFIG_MISSING: 404,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.PAYMENT_REQUIRED: 402,
    ErrorKind.UPSTREAM: 502,
    ErrorKind.PARSE: 502,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.DB_ERROR: 500,
    ErrorKind.UNKNOWN: 500,
}


@dataclass
class Result(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    detail: Optional[Any] = None
    status_code: Optional[int] = None

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(
        error: str,
        code: str = ErrorKind.UNKNOWN.value,
        detail: Any = None,
        status_code: Optional[int] = None,
    ) -> "Result[T]":
        if isinstance(code, ErrorKind):
            code = code.value
        return Result(ok=False, error=error, error_code=code, detail=detail, status_code=status_code)

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default

    def http_status(self) -> int:
        """HTTP status a router should answer with for this result."""
        if self.ok:
            return 200
        try:
            return HTTP_STATUS_BY_KIND[ErrorKind(self.error_code)]
        except ValueError:
            return 500

    def to_error_body(self) -> dict:
        body = {"success": False, "error": self.error, "error_code": self.error_code}
        if self.status_code is not None:
            body["upstream_status"] = self.status_code
        if self.detail is not None:
            body["detail"] = self.detail
        return body
