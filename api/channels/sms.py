"""
SMS Channel Provider for intake follow-ups.

Sends texts through the Twilio Messages API.
"""

import logging

import httpx

from .base import ChannelProvider, ChannelMessage, ChannelResponse

logger = logging.getLogger(__name__)


def to_e164(phone_digits: str) -> str:
    """US ten-digit number to E.164."""
    digits = "".join(c for c in phone_digits if c.isdigit())
    if len(digits) == 10:
        return f"+1{digits}"
    return f"+{digits}"


class TwilioSMS(ChannelProvider):
    """SMS via Twilio REST API."""

    name = "twilio"
    BASE_URL = "https://api.twilio.com/2010-04-01"

    def __init__(self, account_sid: str, auth_token: str, from_number: str):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number

    async def send_message(self, message: ChannelMessage) -> ChannelResponse:
        url = f"{self.BASE_URL}/Accounts/{self.account_sid}/Messages.json"
        data = {"To": message.to, "From": self.from_number, "Body": message.content}
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(
                    url, data=data, auth=(self.account_sid, self.auth_token), timeout=10
                )
                resp.raise_for_status()
                return ChannelResponse(success=True, message_id=resp.json().get("sid"))
        except Exception as e:
            logger.error(f"Twilio SMS send failed: {e}")
            return ChannelResponse(success=False, error=str(e))
