"""
Confirmation email for intake leads.

Builds the message a visitor receives after finishing a flow and delivers it
through SendGrid, falling back to AWS SES. Every send carries an HTML body and
a plain-text alternative derived from it.
"""

import asyncio
import html
import logging
import re
from typing import List, Optional

import httpx

from .base import ChannelProvider, ChannelMessage, ChannelResponse

logger = logging.getLogger(__name__)

CONFIRMATION_SUBJECT = "{brand}: we received your request"

_TAG_RE = re.compile(r"<[^>]+>")


def confirmation_email(
    to: str,
    name: str,
    brand_name: str,
    appointment_date: Optional[str] = None,
) -> ChannelMessage:
    """Compose the post-intake confirmation. Visitor-supplied text is escaped."""
    first_name = html.escape((name or "").split(" ")[0] or "there")
    paragraphs = [
        f"Hi {first_name},",
        f"Thank you for reaching out to {html.escape(brand_name)}. "
        "A member of our admissions team will contact you shortly.",
    ]
    if appointment_date:
        paragraphs.append(f"Requested appointment: <strong>{html.escape(appointment_date)}</strong>")
    paragraphs.append("If you need immediate help, reply to this email or call us directly.")
    return ChannelMessage(
        to=to,
        subject=CONFIRMATION_SUBJECT.format(brand=brand_name),
        content="\n".join(f"<p>{p}</p>" for p in paragraphs),
    )


def plain_text(html_body: str) -> str:
    """Plain-text alternative: one line per paragraph, tags stripped."""
    lines = [html.unescape(_TAG_RE.sub("", line)).strip() for line in html_body.splitlines()]
    return "\n\n".join(line for line in lines if line)


class SendGridEmail(ChannelProvider):
    """Email via the SendGrid v3 mail/send API."""

    name = "sendgrid"
    BASE_URL = "https://api.sendgrid.com/v3/mail/send"

    def __init__(self, api_key: str, from_email: str, from_name: str = "Claim Shield Health"):
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name

    def _payload(self, message: ChannelMessage) -> dict:
        return {
            "personalizations": [{"to": [{"email": message.to}]}],
            "from": {"email": self.from_email, "name": self.from_name},
            "reply_to": {"email": self.from_email, "name": self.from_name},
            "subject": message.subject,
            # SendGrid requires text/plain before text/html
            "content": [
                {"type": "text/plain", "value": plain_text(message.content)},
                {"type": "text/html", "value": message.content},
            ],
            "categories": ["intake-confirmation"],
            # Links in intake mail are not rewritten or tracked
            "tracking_settings": {
                "click_tracking": {"enable": False, "enable_text": False},
                "open_tracking": {"enable": False},
            },
        }

    async def send_message(self, message: ChannelMessage) -> ChannelResponse:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(self.BASE_URL, json=self._payload(message), headers=headers, timeout=10)
        except Exception as e:
            logger.error(f"SendGrid send to {message.to} failed: {e}")
            return ChannelResponse(success=False, error=str(e))

        if resp.status_code != 202:
            return ChannelResponse(success=False, error=f"SendGrid {resp.status_code}: {resp.text}")
        return ChannelResponse(success=True, message_id=resp.headers.get("X-Message-Id"))


class SESEmail(ChannelProvider):
    """Email via AWS SES. The boto3 client is created on first send."""

    name = "ses"

    def __init__(self, region: str = "us-east-1", from_email: str = ""):
        self.region = region
        self.from_email = from_email
        self._client = None

    def _get_client(self):
        if not self._client:
            import boto3
            self._client = boto3.client("ses", region_name=self.region)
        return self._client

    async def send_message(self, message: ChannelMessage) -> ChannelResponse:
        body = {
            "Html": {"Data": message.content, "Charset": "UTF-8"},
            "Text": {"Data": plain_text(message.content), "Charset": "UTF-8"},
        }
        try:
            resp = await asyncio.to_thread(
                self._get_client().send_email,
                Source=self.from_email,
                Destination={"ToAddresses": [message.to]},
                ReplyToAddresses=[self.from_email],
                Message={"Subject": {"Data": message.subject or "", "Charset": "UTF-8"}, "Body": body},
            )
        except Exception as e:
            logger.error(f"SES send to {message.to} failed: {e}")
            return ChannelResponse(success=False, error=str(e))
        return ChannelResponse(success=True, message_id=resp.get("MessageId"))


class EmailRouter:
    """Tries each configured provider in order until one accepts the message."""

    def __init__(self, primary: ChannelProvider, fallback: Optional[ChannelProvider] = None):
        self.primary = primary
        self.fallback = fallback

    @property
    def providers(self) -> List[ChannelProvider]:
        return [p for p in (self.primary, self.fallback) if p is not None]

    async def send(self, message: ChannelMessage) -> ChannelResponse:
        errors = []
        for provider in self.providers:
            result = await provider.send_message(message)
            if result.success:
                if errors:
                    logger.warning(f"Email delivered by fallback {provider.name} after: {'; '.join(errors)}")
                return result
            errors.append(f"{provider.name}: {result.error}")
        return ChannelResponse(success=False, error="; ".join(errors))
