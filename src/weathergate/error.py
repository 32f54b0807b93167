"""Error types for the weathergate protocol."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

UNAVAILABLE_MESSAGE = "Weather data currently unavailable"


class ErrorCode(Enum):
    """Standard gateway error codes."""

    BAD_REQUEST = "bad_request"
    NOT_FOUND = "not_found"
    CHANNEL_CLOSED = "channel_closed"
    UNAVAILABLE = "unavailable"
    UNAUTHORIZED = "unauthorized"
    MISCONFIGURED = "misconfigured"
    INTERNAL = "internal"

    def __str__(self) -> str:
        return self.value

    @property
    def http_status(self) -> int:
        """HTTP status used when the error is reported synchronously."""
        return _HTTP_STATUS[self]


_HTTP_STATUS = {
    ErrorCode.BAD_REQUEST: 400,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.CHANNEL_CLOSED: 410,
    ErrorCode.MISCONFIGURED: 500,
    ErrorCode.INTERNAL: 500,
    ErrorCode.UNAVAILABLE: 503,
}


@dataclass(frozen=True)
class GatewayError(Exception):
    """Gateway error with code, message, and optional data."""

    code: ErrorCode
    message: str
    data: Any | None = None

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    def to_json(self) -> dict[str, Any]:
        """Convert to the JSON object carried by error frames and responses."""
        result: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.data is not None:
            result["data"] = self.data
        return result

    @staticmethod
    def from_json(obj: dict[str, Any]) -> GatewayError:
        """Parse from the JSON object produced by ``to_json``."""
        try:
            code = ErrorCode(obj["code"])
        except (KeyError, ValueError):
            code = ErrorCode.INTERNAL
        return GatewayError(code, str(obj.get("message", "")), obj.get("data"))

    @staticmethod
    def bad_request(message: str, data: Any | None = None) -> GatewayError:
        """Create a BAD_REQUEST error."""
        return GatewayError(ErrorCode.BAD_REQUEST, message, data)

    @staticmethod
    def not_found(message: str, data: Any | None = None) -> GatewayError:
        """Create a NOT_FOUND error."""
        return GatewayError(ErrorCode.NOT_FOUND, message, data)

    @staticmethod
    def channel_closed(message: str = "Channel is closed") -> GatewayError:
        """Create a CHANNEL_CLOSED error."""
        return GatewayError(ErrorCode.CHANNEL_CLOSED, message)

    @staticmethod
    def unavailable(message: str = UNAVAILABLE_MESSAGE) -> GatewayError:
        """Create an UNAVAILABLE error."""
        return GatewayError(ErrorCode.UNAVAILABLE, message)

    @staticmethod
    def unauthorized(message: str, data: Any | None = None) -> GatewayError:
        """Create an UNAUTHORIZED error."""
        return GatewayError(ErrorCode.UNAUTHORIZED, message, data)

    @staticmethod
    def misconfigured(message: str, data: Any | None = None) -> GatewayError:
        """Create a MISCONFIGURED error."""
        return GatewayError(ErrorCode.MISCONFIGURED, message, data)

    @staticmethod
    def internal(message: str, data: Any | None = None) -> GatewayError:
        """Create an INTERNAL error."""
        return GatewayError(ErrorCode.INTERNAL, message, data)
