"""API error definitions.

All API errors are defined here with their corresponding HTTP status codes.
Services raise the domain subclasses at the bottom of this module; the
exception handlers in deadswitch.responses turn them into JSON bodies.
"""

from enum import Enum


class ApiErrorCode(str, Enum):
    """Standardized error codes for the API.

    Format: E_CATEGORY_NAME
    """

    # Authentication errors (401)
    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"

    # Authorization errors (403)
    E_FORBIDDEN = "E_FORBIDDEN"
    E_SHARE_ACCESS_DENIED = "E_SHARE_ACCESS_DENIED"

    # Not found errors (404)
    E_NOT_FOUND = "E_NOT_FOUND"
    E_SECRET_NOT_FOUND = "E_SECRET_NOT_FOUND"
    E_EMAIL_FAILURE_NOT_FOUND = "E_EMAIL_FAILURE_NOT_FOUND"

    # Validation errors (400)
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_TOKEN_MISSING = "E_TOKEN_MISSING"
    E_TOKEN_INVALID = "E_TOKEN_INVALID"
    E_TOKEN_EXPIRED = "E_TOKEN_EXPIRED"
    E_TOKEN_ALREADY_USED = "E_TOKEN_ALREADY_USED"
    E_SECRET_TRIGGERED = "E_SECRET_TRIGGERED"

    # Gone (410)
    E_SECRET_DISABLED = "E_SECRET_DISABLED"

    # Server errors
    E_INTERNAL = "E_INTERNAL"  # 500


# Error code to HTTP status mapping
ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    ApiErrorCode.E_UNAUTHENTICATED: 401,
    ApiErrorCode.E_FORBIDDEN: 403,
    ApiErrorCode.E_SHARE_ACCESS_DENIED: 403,
    ApiErrorCode.E_NOT_FOUND: 404,
    ApiErrorCode.E_SECRET_NOT_FOUND: 404,
    ApiErrorCode.E_EMAIL_FAILURE_NOT_FOUND: 404,
    ApiErrorCode.E_INVALID_REQUEST: 400,
    ApiErrorCode.E_TOKEN_MISSING: 400,
    ApiErrorCode.E_TOKEN_INVALID: 400,
    ApiErrorCode.E_TOKEN_EXPIRED: 400,
    ApiErrorCode.E_TOKEN_ALREADY_USED: 400,
    ApiErrorCode.E_SECRET_TRIGGERED: 400,
    ApiErrorCode.E_SECRET_DISABLED: 410,
    ApiErrorCode.E_INTERNAL: 500,
}


class ApiError(Exception):
    """Base exception for API errors.

    Attributes:
        code: The error code enum value
        message: Human-readable error message
        status_code: HTTP status code (derived from code)
    """

    def __init__(self, code: ApiErrorCode, message: str):
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)
        super().__init__(message)


class AuthenticationError(ApiError):
    """Missing or wrong credentials. Never carries detail."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(ApiErrorCode.E_UNAUTHENTICATED, message)


class ForbiddenError(ApiError):
    """Authorization failure error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_FORBIDDEN, message: str = "Forbidden"):
        super().__init__(code, message)


class InvalidRequestError(ApiError):
    """Invalid request error."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)


class NotFoundError(ApiError):
    """Resource not found error.

    Unknown tokens use a 400 code since the caller cannot tell a malformed
    token from one that never existed.
    """

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_NOT_FOUND, message: str = "Not found"):
        super().__init__(code, message)


class ExpiredError(ApiError):
    """Credential past its deadline."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_TOKEN_EXPIRED, message: str = "Expired"
    ):
        super().__init__(code, message)


class AlreadyUsedError(ApiError):
    """Single-use credential presented a second time."""

    def __init__(
        self,
        code: ApiErrorCode = ApiErrorCode.E_TOKEN_ALREADY_USED,
        message: str = "Already used",
    ):
        super().__init__(code, message)


class GoneError(ApiError):
    """Resource existed but its content was removed."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_SECRET_DISABLED, message: str = "Gone"):
        super().__init__(code, message)


# =============================================================================
# Domain errors
# =============================================================================


class InvalidTokenError(NotFoundError):
    def __init__(self, message: str = "Invalid or expired token"):
        super().__init__(ApiErrorCode.E_TOKEN_INVALID, message)


class TokenExpiredError(ExpiredError):
    def __init__(self, message: str = "Token has expired"):
        super().__init__(ApiErrorCode.E_TOKEN_EXPIRED, message)


class TokenAlreadyUsedError(AlreadyUsedError):
    def __init__(self, message: str = "Token has already been used"):
        super().__init__(ApiErrorCode.E_TOKEN_ALREADY_USED, message)


class SecretNotFoundError(NotFoundError):
    def __init__(self, message: str = "Secret not found"):
        super().__init__(ApiErrorCode.E_SECRET_NOT_FOUND, message)


class SecretTriggeredError(InvalidRequestError):
    def __init__(self, message: str = "This secret has already been disclosed"):
        super().__init__(ApiErrorCode.E_SECRET_TRIGGERED, message)


class SecretDisabledError(GoneError):
    def __init__(
        self,
        message: str = (
            "This secret has been disabled. "
            "The server share has been deleted and is no longer available."
        ),
    ):
        super().__init__(ApiErrorCode.E_SECRET_DISABLED, message)
