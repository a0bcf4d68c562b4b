"""
Error taxonomy for the API.

Every failure a client can see is raised as an ``ApiError`` subclass and
rendered by ``install_error_handlers`` as ``{error, code, details?}``.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("studyhub.errors")


class ApiError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"
    message = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[list] = None,
        extra: Optional[dict] = None,
    ):
        self.message = message or self.message
        self.code = code or self.code
        self.details = details
        self.extra = extra or {}
        super().__init__(self.message)

    @property
    def headers(self) -> Optional[dict]:
        return None

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        body.update(self.extra)
        return body


class ValidationFailed(ApiError):
    status_code = 400
    code = "VALIDATION_ERROR"
    message = "Validation failed"


class Unauthorized(ApiError):
    status_code = 401
    code = "UNAUTHORIZED"
    message = "Authentication required"


class TokenMissing(Unauthorized):
    code = "TOKEN_MISSING"
    message = "Access token required"


class TokenInvalid(Unauthorized):
    code = "TOKEN_INVALID"
    message = "Invalid token"


class TokenExpired(Unauthorized):
    code = "TOKEN_EXPIRED"
    message = "Token expired"


class TokenTypeMismatch(TokenInvalid):
    code = "TOKEN_TYPE_MISMATCH"
    message = "Invalid token type"


class InvalidToken(Unauthorized):
    code = "INVALID_TOKEN"
    message = "Invalid refresh token"


class UserNotFound(Unauthorized):
    code = "USER_NOT_FOUND"
    message = "User not found"


class AccountDeactivated(Unauthorized):
    code = "ACCOUNT_DEACTIVATED"
    message = "Account is deactivated"


class InvalidCredentials(Unauthorized):
    code = "INVALID_CREDENTIALS"
    message = "Invalid credentials"


class NotFound(ApiError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Resource not found"


class SubResourceNotFound(NotFound):
    pass


class Conflict(ApiError):
    status_code = 409
    code = "USER_EXISTS"
    message = "Resource already exists"


class RateLimitExceeded(ApiError):
    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"
    message = "Too many requests"

    def __init__(self, message: Optional[str] = None, retry_after: int = 60):
        self.retry_after = retry_after
        super().__init__(message, extra={"retryAfter": retry_after})

    @property
    def headers(self) -> Optional[dict]:
        return {"Retry-After": str(self.retry_after)}


class UpstreamUnavailable(ApiError):
    status_code = 500
    code = "UPSTREAM_UNAVAILABLE"
    message = "Upstream service unavailable"


class AiServiceUnavailable(UpstreamUnavailable):
    code = "AI_SERVICE_ERROR"
    message = "AI service temporarily unavailable"


def _field_name(loc) -> str:
    # drop the "body"/"query"/"path" prefix pydantic puts first
    parts = [str(p) for p in loc[1:]] if len(loc) > 1 else [str(p) for p in loc]
    return ".".join(parts)


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def api_error(request: Request, exc: ApiError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        details = [
            {"field": _field_name(err.get("loc", ())), "message": err.get("msg", "")}
            for err in exc.errors()
        ]
        err = ValidationFailed(details=details)
        return JSONResponse(status_code=err.status_code, content=err.to_body())

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail), "code": f"HTTP_{exc.status_code}"},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def any_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal server error", "code": "INTERNAL_ERROR"})
