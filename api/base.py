"""Unified API response envelope."""

from typing import Any
from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, Field

from utils.timezone import now_utc


class APIError(BaseModel):
    """Error details in API response."""

    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Message safe to display to the user")
    retryable: bool = Field(default=False, description="Whether retrying the same request may succeed")
    retry_after_seconds: int | None = Field(default=None, description="Suggested wait before retrying")


class APIMeta(BaseModel):
    """Metadata included in every API response."""

    timestamp: datetime = Field(..., description="Response timestamp (UTC)")
    request_id: str = Field(..., description="Unique request identifier for tracing")


class APIResponse(BaseModel):
    """
    Envelope returned by every JSON endpoint.

    Exactly one of data / error is set, according to success.
    """

    success: bool
    data: Any | None = None
    error: APIError | None = None
    meta: APIMeta


def _meta() -> APIMeta:
    return APIMeta(timestamp=now_utc(), request_id=str(uuid4()))


def success_response(data: Any) -> APIResponse:
    """Create a success response."""
    return APIResponse(success=True, data=data, error=None, meta=_meta())


def error_response(
    code: str,
    message: str,
    retryable: bool = False,
    retry_after_seconds: int | None = None,
) -> APIResponse:
    """Create an error response."""
    return APIResponse(
        success=False,
        data=None,
        error=APIError(
            code=code,
            message=message,
            retryable=retryable,
            retry_after_seconds=retry_after_seconds,
        ),
        meta=_meta(),
    )


class ErrorCodes:
    """
    Envelope codes for failures that are not AuthErrors.

    AuthError responses carry the AuthErrorCode value instead.
    """

    VALIDATION_ERROR = "validation_error"
    INVALID_REQUEST = "invalid_request"
    INTERNAL_ERROR = "internal_error"
