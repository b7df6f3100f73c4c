"""
Lead follow-up notifications over the SMS and email channels.

Implements the NotificationService protocol used by the completion handler.
Looks up the lead's contact details, sends through the configured provider,
and raises NotificationError on any failure so the caller can log it.
"""

import logging
from typing import Optional

from api.flows.errors import NotificationError
from api.flows.stores import LeadService

from .base import ChannelProvider, ChannelMessage
from .email import EmailRouter, confirmation_email
from .sms import to_e164

logger = logging.getLogger(__name__)


class ChannelNotificationService:
    """Sends lead follow-ups through real channel providers."""

    def __init__(
        self,
        lead_service: LeadService,
        sms: Optional[ChannelProvider] = None,
        email: Optional[EmailRouter] = None,
        brand_name: str = "Claim Shield Health",
    ):
        self.lead_service = lead_service
        self.sms = sms
        self.email = email
        self.brand_name = brand_name

    async def send_sms(self, lead_id: str, message: str) -> None:
        if self.sms is None:
            raise NotificationError("SMS channel not configured")
        lead = await self._lead(lead_id)
        if not lead.get("phone"):
            raise NotificationError(f"Lead {lead_id} has no phone number")

        result = await self.sms.send_message(ChannelMessage(to=to_e164(lead["phone"]), content=message))
        if not result.success:
            raise NotificationError(f"SMS to lead {lead_id} failed: {result.error}")
        logger.info(f"Follow-up SMS sent to lead {lead_id} ({result.message_id})")

    async def send_confirmation_email(self, lead_id: str, appointment_date: Optional[str] = None) -> None:
        if self.email is None:
            raise NotificationError("Email channel not configured")
        lead = await self._lead(lead_id)
        if not lead.get("email"):
            raise NotificationError(f"Lead {lead_id} has no email address")

        message = confirmation_email(lead["email"], lead.get("name", ""), self.brand_name, appointment_date)
        result = await self.email.send(message)
        if not result.success:
            raise NotificationError(f"Confirmation email to lead {lead_id} failed: {result.error}")
        logger.info(f"Confirmation email sent to lead {lead_id}")

    async def _lead(self, lead_id: str) -> dict:
        lead = await self.lead_service.get(lead_id)
        if lead is None:
            raise NotificationError(f"Lead {lead_id} not found")
        return lead
