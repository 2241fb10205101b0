from typing import Any, Dict, Optional

from fastapi import HTTPException, status
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    Standard error payload returned before a conversation stream starts.

    {
        "error": "bad_request",
        "message": "Connection parameters require either 'url' or 'command'",
        "code": 400,
        "details": {...}
    }
    """

    error: str = Field(..., description="Machine-readable error type")
    message: str = Field(..., description="Human-readable error message")
    code: int = Field(..., description="HTTP status code for this error")
    details: Optional[Dict[str, Any]] = Field(
        default=None, description="Optional structured error details"
    )


def http_error(
    status_code: int,
    *,
    error: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> HTTPException:
    """
    Helper to create an HTTPException with a standardised error body.
    """
    payload = ErrorResponse(
        error=error,
        message=message,
        code=status_code,
        details=details,
    )
    return HTTPException(status_code=status_code, detail=payload.model_dump())


def bad_request(message: str, *, details: Optional[Dict[str, Any]] = None) -> HTTPException:
    return http_error(
        status.HTTP_400_BAD_REQUEST, error="bad_request", message=message, details=details
    )


def not_found(message: str, *, details: Optional[Dict[str, Any]] = None) -> HTTPException:
    return http_error(
        status.HTTP_404_NOT_FOUND, error="not_found", message=message, details=details
    )


def conflict(message: str, *, details: Optional[Dict[str, Any]] = None) -> HTTPException:
    return http_error(
        status.HTTP_409_CONFLICT, error="conflict", message=message, details=details
    )


def bad_gateway(message: str, *, details: Optional[Dict[str, Any]] = None) -> HTTPException:
    return http_error(
        status.HTTP_502_BAD_GATEWAY, error="bad_gateway", message=message, details=details
    )


def service_unavailable(
    message: str, *, details: Optional[Dict[str, Any]] = None
) -> HTTPException:
    return http_error(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        error="service_unavailable",
        message=message,
        details=details,
    )


class ToolchatError(Exception):
    """
    Base class for orchestrator failures.

    `category` follows the propagation order used by the conversation
    pipeline: lower numbers are stricter (more likely fatal to the turn).
    """

    category: int = 0
    error_type: str = "internal_error"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_http(self) -> HTTPException:
        return http_error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            error=self.error_type,
            message=self.message,
            details=self.details,
        )


class ConnectionConfigError(ToolchatError):
    """Missing or invalid tool-provider connection parameters."""

    category = 1
    error_type = "invalid_connection"

    def to_http(self) -> HTTPException:
        return bad_request(self.message, details=self.details)


class ModelConfigError(ToolchatError):
    """No usable model configuration (base URL, key, model name)."""

    category = 1
    error_type = "invalid_model_config"

    def to_http(self) -> HTTPException:
        return service_unavailable(self.message, details=self.details)


class TransportError(ToolchatError):
    """Tool provider unreachable or the transport handle is unusable."""

    category = 2
    error_type = "transport_error"

    def to_http(self) -> HTTPException:
        return bad_gateway(self.message, details=self.details)


class ToolCatalogError(TransportError):
    """The tool catalog could not be fetched on first connect."""

    error_type = "tool_catalog_unavailable"


class UpstreamModelError(ToolchatError):
    """Non-2xx from the model API, or a stream that ended without a terminal signal."""

    category = 6
    error_type = "upstream_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        text: str = "",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details=details)
        self.status_code = status_code
        self.text = text

    def to_http(self) -> HTTPException:
        return bad_gateway(self.message, details=self.details)


__all__ = [
    "ErrorResponse",
    "http_error",
    "bad_request",
    "not_found",
    "conflict",
    "bad_gateway",
    "service_unavailable",
    "ToolchatError",
    "ConnectionConfigError",
    "ModelConfigError",
    "TransportError",
    "ToolCatalogError",
    "UpstreamModelError",
]
