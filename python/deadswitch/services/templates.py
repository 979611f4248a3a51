"""Email content rendering.

The engine only needs a subject, an HTML body and a text body per message.
MessageRenderer is the seam; PlainMessageRenderer is the built-in minimal
implementation. Every interpolated value is HTML-escaped in the HTML body.
"""

from dataclasses import dataclass
from datetime import datetime
from html import escape
from typing import Protocol
from urllib.parse import quote

from deadswitch.services.time_format import format_remaining


@dataclass(frozen=True)
class RenderedMessage:
    subject: str
    html: str
    text: str


def build_check_in_url(site_url: str, token: str) -> str:
    """Return the public check-in link for a token."""
    return f"{site_url.rstrip('/')}/check-in?token={quote(token, safe='')}"


class MessageRenderer(Protocol):
    def render_reminder(
        self,
        *,
        recipient_name: str,
        secret_title: str,
        days_remaining: float,
        check_in_url: str,
        urgent: bool,
    ) -> RenderedMessage: ...

    def render_disclosure(
        self,
        *,
        recipient_name: str,
        secret_title: str,
        owner_email: str,
        server_share: str,
        last_seen: datetime | None,
    ) -> RenderedMessage: ...

    def render_admin_alert(
        self,
        *,
        severity: str,
        email_type: str,
        recipient: str,
        error_message: str,
        retry_count: int,
        secret_title: str | None,
        timestamp: datetime,
    ) -> RenderedMessage: ...


def _wrap_html(title: str, body: str) -> str:
    return (
        "<!DOCTYPE html>"
        '<html lang="en"><head><meta charset="UTF-8">'
        f"<title>{escape(title)}</title></head>"
        f'<body style="font-family: Arial, sans-serif; line-height: 1.6;">{body}</body></html>'
    )


class PlainMessageRenderer:
    """Minimal renderer with no external template assets."""

    def render_reminder(
        self,
        *,
        recipient_name: str,
        secret_title: str,
        days_remaining: float,
        check_in_url: str,
        urgent: bool,
    ) -> RenderedMessage:
        time_text = format_remaining(days_remaining)
        subject = f'Reminder: "{secret_title}" needs attention'
        warning = "Time is running out! " if urgent else ""

        html = _wrap_html(
            "Check-in Reminder",
            f"<p>Hi {escape(recipient_name)},</p>"
            f"<p>{escape(warning)}You need to check in for "
            f"<strong>{escape(secret_title)}</strong> within {escape(time_text)}.</p>"
            f'<p><a href="{escape(check_in_url)}">Check In Now</a></p>'
            "<p>If you don't check in on time, your secret will be disclosed to your "
            "designated contacts as scheduled.</p>",
        )
        text = (
            f"Hi {recipient_name},\n\n"
            f'{warning}You need to check in for "{secret_title}" within {time_text}.\n\n'
            f"Check in: {check_in_url}\n\n"
            "If you don't check in on time, your secret will be disclosed to your "
            "designated contacts as scheduled."
        )
        return RenderedMessage(subject=subject, html=html, text=text)

    def render_disclosure(
        self,
        *,
        recipient_name: str,
        secret_title: str,
        owner_email: str,
        server_share: str,
        last_seen: datetime | None,
    ) -> RenderedMessage:
        subject = f"Important Message from {owner_email}"
        last_seen_text = last_seen.date().isoformat() if last_seen else "some time ago"

        html = _wrap_html(
            "Confidential Information Disclosure",
            f"<p>Dear {escape(recipient_name)},</p>"
            f"<p>{escape(owner_email)} has not checked in as scheduled "
            f"(last seen: {escape(last_seen_text)}).</p>"
            f"<p><strong>Secret:</strong> {escape(secret_title)}</p>"
            "<p>Your secret share:</p>"
            f'<pre style="white-space: pre-wrap; word-break: break-word;">'
            f"{escape(server_share)}</pre>"
            "<p>Combine it with the share you already hold to reconstruct the secret.</p>",
        )
        text = (
            f"Dear {recipient_name},\n\n"
            f"{owner_email} has not checked in as scheduled (last seen: {last_seen_text}).\n\n"
            f"Secret: {secret_title}\n\n"
            f"Your secret share:\n{server_share}\n\n"
            "Combine it with the share you already hold to reconstruct the secret."
        )
        return RenderedMessage(subject=subject, html=html, text=text)

    def render_admin_alert(
        self,
        *,
        severity: str,
        email_type: str,
        recipient: str,
        error_message: str,
        retry_count: int,
        secret_title: str | None,
        timestamp: datetime,
    ) -> RenderedMessage:
        label = severity.upper()
        subject = f"[{label}] Email Delivery Failure - {secret_title or email_type}"

        lines = [
            f"Severity: {label}",
            f"Email Type: {email_type}",
        ]
        if secret_title:
            lines.append(f"Secret: {secret_title}")
        lines += [
            f"Recipient: {recipient}",
            f"Retry Count: {retry_count}",
            f"Timestamp: {timestamp.isoformat()}",
            "",
            "Error Message:",
            error_message,
        ]

        html = _wrap_html(
            f"Email Delivery Failure - {label}",
            f"<h2>Email Delivery Failure - {escape(label)}</h2>"
            + "".join(f"<p>{escape(line)}</p>" for line in lines if line),
        )
        text = f"Email Delivery Failure - {label}\n\n" + "\n".join(lines)
        return RenderedMessage(subject=subject, html=html, text=text)
