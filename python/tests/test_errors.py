"""Tests for error handling and response envelopes.

Verifies:
- Error body shape is {"error": <message>, "code": <E_...>}
- Every error code maps to correct HTTP status
- Domain errors carry the codes the public pages depend on
- Unknown exceptions return E_INTERNAL with 500 and leak nothing
- Bad path/query parameters return E_INVALID_REQUEST
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from deadswitch.errors import (
    ERROR_CODE_TO_STATUS,
    ApiError,
    ApiErrorCode,
    AuthenticationError,
    ForbiddenError,
    InvalidRequestError,
    InvalidTokenError,
    NotFoundError,
    SecretDisabledError,
    SecretNotFoundError,
    SecretTriggeredError,
    TokenAlreadyUsedError,
    TokenExpiredError,
)
from deadswitch.responses import (
    error_response,
    success_response,
    unhandled_exception_handler,
)


class TestErrorResponse:
    """Tests for error response body format."""

    def test_error_response_has_correct_shape(self):
        response = error_response(ApiErrorCode.E_TOKEN_INVALID, "Invalid or expired token")

        assert response == {"error": "Invalid or expired token", "code": "E_TOKEN_INVALID"}

    def test_error_response_includes_explicit_request_id(self):
        response = error_response(ApiErrorCode.E_INTERNAL, "boom", request_id="req-1")

        assert response["request_id"] == "req-1"

    def test_error_response_code_is_string(self):
        response = error_response(ApiErrorCode.E_FORBIDDEN, "Access denied")

        assert isinstance(response["code"], str)


class TestSuccessResponse:
    """Tests for success response envelope format."""

    def test_success_response_has_data_key(self):
        response = success_response({"status": "ok"})

        assert response == {"data": {"status": "ok"}}

    def test_success_response_with_none(self):
        assert success_response(None) == {"data": None}


class TestErrorCodeToStatus:
    """Tests for error code to HTTP status mapping."""

    def test_all_error_codes_have_status_mapping(self):
        for code in ApiErrorCode:
            assert code in ERROR_CODE_TO_STATUS, f"Missing status mapping for {code}"

    @pytest.mark.parametrize(
        "code,expected_status",
        [
            (ApiErrorCode.E_UNAUTHENTICATED, 401),
            (ApiErrorCode.E_FORBIDDEN, 403),
            (ApiErrorCode.E_SHARE_ACCESS_DENIED, 403),
            (ApiErrorCode.E_NOT_FOUND, 404),
            (ApiErrorCode.E_SECRET_NOT_FOUND, 404),
            (ApiErrorCode.E_EMAIL_FAILURE_NOT_FOUND, 404),
            (ApiErrorCode.E_INVALID_REQUEST, 400),
            (ApiErrorCode.E_TOKEN_MISSING, 400),
            (ApiErrorCode.E_TOKEN_INVALID, 400),
            (ApiErrorCode.E_TOKEN_EXPIRED, 400),
            (ApiErrorCode.E_TOKEN_ALREADY_USED, 400),
            (ApiErrorCode.E_SECRET_TRIGGERED, 400),
            (ApiErrorCode.E_SECRET_DISABLED, 410),
            (ApiErrorCode.E_INTERNAL, 500),
        ],
    )
    def test_error_code_maps_to_correct_status(self, code: ApiErrorCode, expected_status: int):
        assert ERROR_CODE_TO_STATUS[code] == expected_status


class TestApiErrorClass:
    """Tests for ApiError and its subclasses."""

    def test_api_error_derives_status_code(self):
        error = ApiError(ApiErrorCode.E_FORBIDDEN, "Access denied")

        assert error.code == ApiErrorCode.E_FORBIDDEN
        assert error.message == "Access denied"
        assert error.status_code == 403

    @pytest.mark.parametrize(
        "error,code,status",
        [
            (AuthenticationError(), ApiErrorCode.E_UNAUTHENTICATED, 401),
            (ForbiddenError(), ApiErrorCode.E_FORBIDDEN, 403),
            (NotFoundError(), ApiErrorCode.E_NOT_FOUND, 404),
            (InvalidRequestError(), ApiErrorCode.E_INVALID_REQUEST, 400),
            (InvalidTokenError(), ApiErrorCode.E_TOKEN_INVALID, 400),
            (TokenExpiredError(), ApiErrorCode.E_TOKEN_EXPIRED, 400),
            (TokenAlreadyUsedError(), ApiErrorCode.E_TOKEN_ALREADY_USED, 400),
            (SecretNotFoundError(), ApiErrorCode.E_SECRET_NOT_FOUND, 404),
            (SecretTriggeredError(), ApiErrorCode.E_SECRET_TRIGGERED, 400),
            (SecretDisabledError(), ApiErrorCode.E_SECRET_DISABLED, 410),
        ],
    )
    def test_defaults(self, error: ApiError, code: ApiErrorCode, status: int):
        assert error.code == code
        assert error.status_code == status

    def test_public_messages(self):
        assert InvalidTokenError().message == "Invalid or expired token"
        assert TokenAlreadyUsedError().message == "Token has already been used"
        assert SecretTriggeredError().message == "This secret has already been disclosed"
        assert AuthenticationError().message == "Unauthorized"


class TestRequestValidation:
    def test_bad_path_parameter_returns_400(self, client: TestClient):
        response = client.get("/api/secrets/not-a-uuid/server-share", params={"token": "x"})

        assert response.status_code == 400
        assert response.json()["code"] == "E_INVALID_REQUEST"

    def test_unknown_route_returns_404_envelope(self, client: TestClient):
        response = client.get("/api/nope")

        assert response.status_code == 404
        assert response.json()["code"] == "E_NOT_FOUND"


class TestUnhandledExceptionHandling:
    """Tests for unhandled exception handling."""

    def test_unhandled_exception_returns_500_with_e_internal(self):
        test_app = FastAPI()

        @test_app.get("/crash")
        def crash_endpoint():
            raise RuntimeError("Unexpected error")

        test_app.add_exception_handler(Exception, unhandled_exception_handler)

        client = TestClient(test_app, raise_server_exceptions=False)
        response = client.get("/crash")

        assert response.status_code == 500
        data = response.json()
        assert data["code"] == "E_INTERNAL"
        assert data["error"] == "Internal Server Error"

    def test_unhandled_exception_does_not_leak_details(self):
        test_app = FastAPI()

        @test_app.get("/crash")
        def crash_endpoint():
            raise RuntimeError("SECRET_INTERNAL_DETAIL")

        test_app.add_exception_handler(Exception, unhandled_exception_handler)

        client = TestClient(test_app, raise_server_exceptions=False)
        response = client.get("/crash")

        assert "SECRET_INTERNAL_DETAIL" not in response.text
