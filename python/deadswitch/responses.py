"""Response envelopes and the app's exception handlers.

Admin and health endpoints wrap their payload as ``{"data": ...}``; cron and
check-in endpoints return the flat bodies in deadswitch.schemas. Every error,
whatever raised it, comes back as::

    {"error": "<human-readable message>", "code": "E_...", "request_id": "..."}

Messages never carry tokens, share material or stack traces.
"""

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from deadswitch.errors import ApiError, ApiErrorCode
from deadswitch.logging import get_logger, get_request_id

logger = get_logger(__name__)

INTERNAL_ERROR_MESSAGE = "Internal Server Error"

# Starlette raises these for routing failures (unknown path, wrong method)
_HTTP_STATUS_CODES = {
    400: ApiErrorCode.E_INVALID_REQUEST,
    401: ApiErrorCode.E_UNAUTHENTICATED,
    403: ApiErrorCode.E_FORBIDDEN,
    404: ApiErrorCode.E_NOT_FOUND,
    405: ApiErrorCode.E_INVALID_REQUEST,
    422: ApiErrorCode.E_INVALID_REQUEST,
}


def success_response(data: Any) -> dict[str, Any]:
    return {"data": data}


def error_response(
    code: ApiErrorCode, message: str, request_id: str | None = None
) -> dict[str, Any]:
    """Build an error body; ``request_id`` defaults to the one in log context."""
    request_id = request_id or get_request_id()
    body: dict[str, Any] = {"error": message, "code": code.value}
    if request_id:
        body["request_id"] = request_id
    return body


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("api_error", code=exc.code.value, status_code=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content=error_response(exc.code, exc.message))


async def http_exception_handler(request: Request, exc: Any) -> JSONResponse:
    code = _HTTP_STATUS_CODES.get(exc.status_code, ApiErrorCode.E_INTERNAL)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(code, str(exc.detail or "An error occurred")),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """500 with E_INTERNAL; the traceback goes to the log only."""
    logger.exception("unhandled_exception", error_type=type(exc).__name__)
    return JSONResponse(
        status_code=500,
        content=error_response(ApiErrorCode.E_INTERNAL, INTERNAL_ERROR_MESSAGE),
    )
