"""Tests for the SendGrid Mail Send adapter.

Pure unit tests: respx mocks api.sendgrid.com, nothing leaves the process.

Explicitly Forbidden:
- Live provider calls
- Real API keys anywhere in test code
"""

import json

import httpx
import pytest
import respx

from deadswitch.services.email import (
    EmailData,
    EmailDeliveryService,
    EmailErrorClass,
    EmailProviderError,
    SendGridProvider,
)
from deadswitch.services.email.sendgrid_provider import SENDGRID_SEND_URL
from tests.helpers import no_sleep


@pytest.fixture
def httpx_client():
    client = httpx.Client()
    yield client
    client.close()


@pytest.fixture
def sendgrid(httpx_client) -> SendGridProvider:
    return SendGridProvider(
        httpx_client,
        api_key="SG.test-key",
        sender_email="noreply@example.com",
        sender_name="Dead Man's Switch",
    )


def _email(**overrides) -> EmailData:
    values = {
        "to": "alice@example.com",
        "subject": "Important Message",
        "html": "<p>share</p>",
        "text": "share",
    }
    values.update(overrides)
    return EmailData(**values)


def _sent_body(route: respx.Route) -> dict:
    return json.loads(route.calls.last.request.content)


class TestSendGridRequest:
    @respx.mock
    def test_success_returns_message_id(self, sendgrid):
        route = respx.post(SENDGRID_SEND_URL).respond(202, headers={"X-Message-Id": "sg-123"})

        receipt = sendgrid.send(_email())

        assert receipt.message_id == "sg-123"
        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer SG.test-key"

    @respx.mock
    def test_request_body(self, sendgrid):
        route = respx.post(SENDGRID_SEND_URL).respond(202)

        sendgrid.send(_email(priority="high", reply_to="owner@example.com"))

        body = _sent_body(route)
        assert body["personalizations"] == [{"to": [{"email": "alice@example.com"}]}]
        assert body["from"] == {"email": "noreply@example.com", "name": "Dead Man's Switch"}
        assert body["subject"] == "Important Message"
        assert body["content"] == [
            {"type": "text/plain", "value": "share"},
            {"type": "text/html", "value": "<p>share</p>"},
        ]
        assert body["headers"]["X-Priority"] == "1"
        assert body["headers"]["Importance"] == "high"
        assert body["reply_to"] == {"email": "owner@example.com"}
        assert body["tracking_settings"]["open_tracking"] == {"enable": False}

    @respx.mock
    def test_reserved_headers_dropped(self, sendgrid):
        route = respx.post(SENDGRID_SEND_URL).respond(202)

        sendgrid.send(_email(headers={"Reply-To": "x@example.com", "X-Campaign": "reminders"}))

        assert _sent_body(route)["headers"] == {"X-Campaign": "reminders"}

    @respx.mock
    def test_from_address_override(self, sendgrid):
        route = respx.post(SENDGRID_SEND_URL).respond(202)

        sendgrid.send(_email(from_address="alerts@example.com"))

        assert _sent_body(route)["from"] == {"email": "alerts@example.com"}


class TestSendGridErrors:
    @respx.mock
    def test_provider_error_message_surfaced(self, sendgrid):
        respx.post(SENDGRID_SEND_URL).respond(
            400, json={"errors": [{"message": "Does not contain a valid address."}]}
        )

        with pytest.raises(EmailProviderError) as exc_info:
            sendgrid.send(_email())

        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "Does not contain a valid address."

    @respx.mock
    def test_rate_limit_headers(self, sendgrid):
        respx.post(SENDGRID_SEND_URL).respond(
            429,
            headers={
                "Retry-After": "42",
                "X-RateLimit-Limit": "600",
                "X-RateLimit-Remaining": "0",
            },
        )

        with pytest.raises(EmailProviderError) as exc_info:
            sendgrid.send(_email())

        error = exc_info.value
        assert error.message == "Rate limit exceeded"
        assert error.retry_after == 42
        assert error.rate_limit.limit == 600
        assert error.rate_limit.remaining == 0

    @respx.mock
    def test_non_json_error_body(self, sendgrid):
        respx.post(SENDGRID_SEND_URL).respond(502, text="Bad Gateway")

        with pytest.raises(EmailProviderError, match="HTTP 502"):
            sendgrid.send(_email())


class TestSendGridThroughDelivery:
    """The delivery service's retry policy applied to real HTTP outcomes."""

    @respx.mock
    def test_invalid_key_not_retried(self, sendgrid):
        route = respx.post(SENDGRID_SEND_URL).respond(
            401, json={"errors": [{"message": "The provided authorization grant is invalid"}]}
        )
        delivery = EmailDeliveryService(sendgrid, sleep=no_sleep)

        result = delivery.send(_email())

        assert result.success is False
        assert result.error_class == EmailErrorClass.INVALID_CREDENTIALS
        assert route.call_count == 1

    @respx.mock
    def test_server_errors_retried_to_limit(self, sendgrid):
        route = respx.post(SENDGRID_SEND_URL).respond(503)
        delivery = EmailDeliveryService(sendgrid, max_attempts=3, sleep=no_sleep)

        result = delivery.send(_email())

        assert result.attempts == 3
        assert result.error_class == EmailErrorClass.PROVIDER_DOWN
        assert route.call_count == 3

    @respx.mock
    def test_timeout_then_success(self, sendgrid):
        route = respx.post(SENDGRID_SEND_URL)
        route.side_effect = [
            httpx.ReadTimeout("timed out"),
            httpx.Response(202, headers={"X-Message-Id": "sg-2"}),
        ]
        delivery = EmailDeliveryService(sendgrid, sleep=no_sleep)

        result = delivery.send(_email())

        assert result.success is True
        assert result.attempts == 2
        assert result.message_id == "sg-2"

    @respx.mock
    def test_rate_limit_honours_retry_after_then_succeeds(self, sendgrid):
        route = respx.post(SENDGRID_SEND_URL)
        route.side_effect = [
            httpx.Response(429, headers={"Retry-After": "5"}),
            httpx.Response(202, headers={"X-Message-Id": "sg-3"}),
        ]
        waits = []
        delivery = EmailDeliveryService(sendgrid, sleep=waits.append)

        result = delivery.send(_email())

        assert result.success is True
        assert result.message_id == "sg-3"
        assert waits == [5]
        assert route.call_count == 2
