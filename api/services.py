"""
Service initialization and dependency injection for the guided intake API.

Creates and manages the long-lived service instances used by the API and
builds a conversation controller per request.
"""

import asyncio
import logging
import weakref
from typing import Dict, MutableMapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import get_settings, Settings
from database.adapters import DbLeadService, DbMessageLog, DbSessionStore
from lead_scoring.scoring_model import LeadScorer
from .channels.base import ChannelProvider
from .channels.email import EmailRouter, SendGridEmail, SESEmail
from .channels.notifier import ChannelNotificationService
from .channels.sms import TwilioSMS
from .flows.completion import CompletionHandler
from .flows.engine import ConversationController
from .flows.stores import (
    InMemoryLeadService,
    InMemoryMessageLog,
    InMemorySessionStore,
    LeadService,
    NotificationService,
    RecordingNotificationService,
)

logger = logging.getLogger(__name__)


class Services:
    """Container for all application services."""

    def __init__(self):
        self.settings: Optional[Settings] = None
        self.lead_scorer: Optional[LeadScorer] = None
        self.sms_provider: Optional[ChannelProvider] = None
        self.email_router: Optional[EmailRouter] = None
        # In-memory stores, used when no database is configured
        self.session_store: Optional[InMemorySessionStore] = None
        self.message_log: Optional[InMemoryMessageLog] = None
        self.lead_service: Optional[InMemoryLeadService] = None
        self.recorded_notifications: Optional[RecordingNotificationService] = None
        self.locks: MutableMapping[str, asyncio.Lock] = weakref.WeakValueDictionary()
        self._initialized = False

    def initialize(self, settings: Optional[Settings] = None):
        """Initialize all services."""
        if self._initialized:
            return

        self.settings = settings or get_settings()
        self.lead_scorer = LeadScorer()
        self._init_channels()
        self._init_memory_stores()
        self._initialized = True
        logger.info("All services initialized successfully")

    def _init_channels(self):
        """Initialize SMS and email providers from settings."""
        s = self.settings
        if not s.notifications_enabled:
            logger.info("Notifications disabled, follow-ups will only be recorded")
            return

        if s.sms_configured:
            self.sms_provider = TwilioSMS(s.twilio_account_sid, s.twilio_auth_token, s.twilio_from_number)
            logger.info("SMS channel ready: twilio")
        else:
            logger.warning("Twilio credentials not set, SMS follow-ups disabled")

        primary: Optional[ChannelProvider] = None
        fallback: Optional[ChannelProvider] = None
        if s.sendgrid_api_key:
            primary = SendGridEmail(s.sendgrid_api_key, s.email_from, from_name=s.brand_name)
        if s.ses_region:
            ses = SESEmail(region=s.ses_region, from_email=s.email_from)
            if primary:
                fallback = ses
            else:
                primary = ses
        if primary:
            self.email_router = EmailRouter(primary, fallback)
            logger.info(f"Email channel ready: {primary.name}" + (f" (fallback {fallback.name})" if fallback else ""))
        else:
            logger.warning("No email provider configured, confirmation emails disabled")

    def _init_memory_stores(self):
        self.session_store = InMemorySessionStore()
        self.message_log = InMemoryMessageLog()
        self.lead_service = InMemoryLeadService()
        self.recorded_notifications = RecordingNotificationService()

    def _notifications_for(self, lead_service: LeadService) -> NotificationService:
        if not self.settings.notifications_enabled:
            return self.recorded_notifications
        return ChannelNotificationService(
            lead_service,
            sms=self.sms_provider,
            email=self.email_router,
            brand_name=self.settings.brand_name,
        )

    def controller_for(self, db: Optional[AsyncSession] = None) -> ConversationController:
        """Build a controller bound to the request's database session, or to the in-memory stores."""
        if db is not None:
            session_store = DbSessionStore(db)
            message_log = DbMessageLog(db)
            lead_service = DbLeadService(db)
        else:
            session_store = self.session_store
            message_log = self.message_log
            lead_service = self.lead_service

        completion = CompletionHandler(
            lead_service=lead_service,
            notifications=self._notifications_for(lead_service),
            session_store=session_store,
            scorer=self.lead_scorer,
            brand_name=self.settings.brand_name,
            lead_source=self.settings.lead_source,
        )
        return ConversationController(
            session_store=session_store,
            message_log=message_log,
            completion=completion,
            locks=self.locks,
        )

    @property
    def is_ready(self) -> bool:
        return self._initialized

    def health(self) -> Dict[str, bool]:
        return {
            "controller": self._initialized,
            "sms": self.sms_provider is not None,
            "email": self.email_router is not None,
        }


# Global services instance
_services: Optional[Services] = None


def get_services() -> Services:
    """Get the global services instance."""
    global _services
    if _services is None:
        _services = Services()
    return _services


def initialize_services(settings: Optional[Settings] = None) -> Services:
    """Initialize global services."""
    services = get_services()
    services.initialize(settings)
    return services


def reset_services():
    """Drop the global services instance."""
    global _services
    _services = None
