"""SendGrid provider using the v3 Mail Send API.

- Endpoint: POST https://api.sendgrid.com/v3/mail/send
- Headers: Authorization: Bearer <key>, Content-Type: application/json
- Success: 202 Accepted, message id in the X-Message-Id response header
- 429: X-RateLimit-Limit / X-RateLimit-Remaining / X-RateLimit-Reset headers

Request body (fields used here):
{
  "personalizations": [{"to": [{"email": "<to>"}]}],
  "from": {"email": "<sender>", "name": "<sender name>"},
  "reply_to": {"email": "<reply-to>"},
  "subject": "<subject>",
  "content": [{"type": "text/plain", "value": "..."}, {"type": "text/html", "value": "..."}],
  "headers": {"X-Priority": "1"},
  "tracking_settings": {"click_tracking": {"enable": true}, "open_tracking": {"enable": true}}
}
"""

from datetime import UTC, datetime

import httpx

from deadswitch.services.email.errors import DEFAULT_RETRY_AFTER_S, EmailProviderError
from deadswitch.services.email.provider import EmailProvider
from deadswitch.services.email.types import EmailData, ProviderReceipt, RateLimitInfo

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"

# SendGrid rejects these as custom headers
RESERVED_HEADERS = frozenset(
    {
        "x-sg-id",
        "x-sg-eid",
        "received",
        "dkim-signature",
        "content-type",
        "content-transfer-encoding",
        "to",
        "from",
        "subject",
        "reply-to",
        "cc",
        "bcc",
    }
)


def _int_header(headers: httpx.Headers, name: str) -> int | None:
    value = headers.get(name)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


class SendGridProvider(EmailProvider):
    """SendGrid Mail Send adapter. One HTTP call per send(), no retries."""

    def __init__(
        self,
        client: httpx.Client,
        *,
        api_key: str | None,
        sender_email: str | None,
        sender_name: str,
        timeout_s: int = 30,
    ):
        self._client = client
        self._api_key = api_key
        self._sender_email = sender_email
        self._sender_name = sender_name
        self._timeout_s = timeout_s

    @property
    def name(self) -> str:
        return "sendgrid"

    def validate_config(self) -> list[str]:
        problems = []
        if not self._api_key:
            problems.append("SENDGRID_API_KEY is not set")
        if not self._sender_email:
            problems.append("SENDGRID_ADMIN_EMAIL is not set")
        return problems

    def send(self, data: EmailData) -> ProviderReceipt:
        response = self._client.post(
            SENDGRID_SEND_URL,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            json=self._build_request_body(data),
            timeout=httpx.Timeout(self._timeout_s, connect=10.0),
        )

        if response.status_code >= 400:
            raise self._error_from_response(response)

        return ProviderReceipt(
            message_id=response.headers.get("x-message-id"),
            tracking_enabled=data.track_delivery,
        )

    def _build_request_body(self, data: EmailData) -> dict:
        if data.from_address:
            sender = {"email": data.from_address}
        else:
            sender = {"email": self._sender_email, "name": self._sender_name}

        content = []
        if data.text:
            content.append({"type": "text/plain", "value": data.text})
        if data.html:
            content.append({"type": "text/html", "value": data.html})

        body: dict = {
            "personalizations": [{"to": [{"email": data.to}]}],
            "from": sender,
            "subject": data.subject,
            "content": content,
            "tracking_settings": {
                "click_tracking": {"enable": data.track_delivery},
                "open_tracking": {"enable": data.track_delivery},
            },
        }

        headers = {
            k: v for k, v in data.effective_headers().items() if k.lower() not in RESERVED_HEADERS
        }
        if headers:
            body["headers"] = headers
        if data.reply_to:
            body["reply_to"] = {"email": data.reply_to}

        return body

    def _error_from_response(self, response: httpx.Response) -> EmailProviderError:
        try:
            json_body = response.json()
        except ValueError:
            json_body = None

        message = f"SendGrid returned HTTP {response.status_code}"
        if isinstance(json_body, dict):
            errors = json_body.get("errors") or []
            if errors and isinstance(errors[0], dict) and errors[0].get("message"):
                message = str(errors[0]["message"])
        else:
            json_body = None

        retry_after = None
        rate_limit = None
        if response.status_code == 429:
            message = "Rate limit exceeded"
            reset_epoch = _int_header(response.headers, "x-ratelimit-reset")
            reset_time = datetime.fromtimestamp(reset_epoch, UTC) if reset_epoch else None
            rate_limit = RateLimitInfo(
                limit=_int_header(response.headers, "x-ratelimit-limit"),
                remaining=_int_header(response.headers, "x-ratelimit-remaining"),
                reset_time=reset_time,
            )
            retry_after = _int_header(response.headers, "retry-after")
            if retry_after is None and reset_time is not None:
                retry_after = max(int((reset_time - datetime.now(UTC)).total_seconds()), 1)
            if retry_after is None:
                retry_after = DEFAULT_RETRY_AFTER_S

        return EmailProviderError(
            message,
            status_code=response.status_code,
            json_body=json_body,
            retry_after=retry_after,
            rate_limit=rate_limit,
        )
