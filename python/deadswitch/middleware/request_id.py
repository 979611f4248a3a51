"""X-Request-ID correlation and access logging.

Every response carries an X-Request-ID: the caller's own when it is usable,
otherwise a fresh UUID4. The ID lands in the logging context so engine events
raised while serving a cron or check-in call can be tied back to the request.

Register LAST so it runs FIRST: auth rejections on the cron and admin routes
still get the header. Only ``request.url.path`` is logged; check-in tokens
arrive in the query string and never reach the access log.
"""

import re
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from deadswitch.logging import clear_request_context, get_logger, set_request_context

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_BYTES = 128

_TOKEN_ID = re.compile(r"^[A-Za-z0-9._-]+$")
_HYPHENATED_UUID = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)

logger = get_logger(__name__)


def is_valid_request_id(value: str) -> bool:
    """At most 128 bytes of letters, digits, dots, hyphens and underscores."""
    if not value or len(value.encode("utf-8")) > MAX_REQUEST_ID_BYTES:
        return False
    return bool(_TOKEN_ID.match(value))


def normalize_request_id(value: str) -> str:
    """Lowercase UUIDs; keep other valid IDs as-is."""
    return value.lower() if _HYPHENATED_UUID.match(value) else value


def resolve_request_id(header_value: str | None) -> str:
    if header_value and is_valid_request_id(header_value):
        return normalize_request_id(header_value)
    return str(uuid.uuid4())


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Attach a request ID to state, log context and the response."""

    def __init__(self, app, log_requests: bool = True):
        super().__init__(app)
        self.log_requests = log_requests

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started = time.monotonic()
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        set_request_context(request_id, path=request.url.path, method=request.method)

        try:
            response = await call_next(request)
        except Exception:
            # unhandled_exception_handler turns this into a 500
            logger.exception("request_failed")
            raise
        else:
            response.headers[REQUEST_ID_HEADER] = request_id
            if self.log_requests:
                logger.info(
                    "request_completed",
                    status_code=response.status_code,
                    duration_ms=round((time.monotonic() - started) * 1000, 2),
                )
            return response
        finally:
            clear_request_context()
