"""ADPILOT - API Error Taxonomy.

Every rejection leaves the service in the same envelope:

    {"error": {"code": "...", "message": "...", ...extra}}

Routes and dependencies raise an ``ApiError`` subclass; the handlers
registered by ``register_error_handlers`` render it.
"""

from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from adpilot.core.logging import get_logger

logger = get_logger("errors")


class ApiError(Exception):
    """Base exception carrying an HTTP status and a machine-readable code."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        headers: Optional[Dict[str, str]] = None,
        **extra: Any,
    ):
        self.status_code = status_code
        self.code = code
        self.message = message
        self.headers = headers or {}
        self.extra = extra
        super().__init__(message)

    def to_body(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"code": self.code, "message": self.message}
        for key, value in self.extra.items():
            if value is not None:
                error[key] = value
        return {"error": error}


class ValidationFailed(ApiError):
    def __init__(self, message: str):
        super().__init__(400, "validation_error", message)


class AuthRejected(ApiError):
    """401 from the API-key gateway: missing, invalid or revoked key."""

    def __init__(self, code: str, message: str):
        super().__init__(401, code, message)


class RateLimitExceeded(ApiError):
    def __init__(self, message: str, retry_after: int, headers: Dict[str, str]):
        super().__init__(
            429, "rate_limit_exceeded", message, headers=headers, retry_after=retry_after
        )


class MetaApiError(ApiError):
    """An upstream advertising-platform call failed (502)."""

    def __init__(
        self,
        message: str,
        meta_error: Any = None,
        step: Optional[str] = None,
    ):
        super().__init__(
            502, "meta_api_error", message, meta_error=meta_error, step=step
        )


class ConversionsApiError(ApiError):
    """The Conversions API rejected an event upload (502)."""

    def __init__(self, details: Any):
        super().__init__(
            502, "capi_error", "Meta Conversion API returned an error", details=details
        )


class MissingToken(ApiError):
    def __init__(self, message: str):
        super().__init__(400, "missing_token", message)


class TokenExpired(ApiError):
    def __init__(self):
        super().__init__(
            401,
            "token_expired",
            "Meta access token has expired. Please provide a fresh token.",
        )


class NotFound(ApiError):
    def __init__(self, message: str):
        super().__init__(404, "not_found", message)


class InternalError(ApiError):
    def __init__(self, message: str, details: str):
        super().__init__(500, "internal_error", message, details=details)


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            f"{exc.code}: {exc.message}",
            extra={"endpoint": request.url.path, "status_code": exc.status_code},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_body(),
        headers=exc.headers or None,
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    message = "Invalid request"
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        detail = first.get("msg", "invalid value")
        message = f"`{field}`: {detail}" if field else detail
    error = ValidationFailed(message)
    return JSONResponse(status_code=error.status_code, content=error.to_body())


def register_error_handlers(app: FastAPI) -> None:
    """Install the uniform error envelope on an application."""
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
