"""Shared fixtures for guided intake tests."""

import os
import pytest
from fastapi.testclient import TestClient

# Ensure we use test settings: in-memory stores, recorded notifications
os.environ["NOTIFICATIONS_ENABLED"] = "false"
os.environ.pop("DATABASE_URL", None)

from api.flows.completion import CompletionHandler
from api.flows.engine import ConversationController
from api.flows.errors import LeadCreationError, NotificationError
from api.flows.stores import (
    InMemoryLeadService,
    InMemoryMessageLog,
    InMemorySessionStore,
    RecordingNotificationService,
)


class FailingLeadService(InMemoryLeadService):
    """Lead service that fails the first `failures` create calls."""

    def __init__(self, failures: int = 1):
        super().__init__()
        self.failures = failures
        self.calls = 0

    async def create(self, lead_fields):
        self.calls += 1
        if self.calls <= self.failures:
            raise LeadCreationError("CRM unavailable")
        return await super().create(lead_fields)


class FailingNotificationService(RecordingNotificationService):
    async def send_sms(self, lead_id, message):
        raise NotificationError("SMS gateway down")

    async def send_confirmation_email(self, lead_id, appointment_date=None):
        raise NotificationError("Email provider down")


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def message_log():
    return InMemoryMessageLog()


@pytest.fixture
def lead_service():
    return InMemoryLeadService()


@pytest.fixture
def notifications():
    return RecordingNotificationService()


def build_controller(session_store, message_log, lead_service, notifications):
    completion = CompletionHandler(
        lead_service=lead_service,
        notifications=notifications,
        session_store=session_store,
    )
    return ConversationController(session_store, message_log, completion)


@pytest.fixture
def controller(session_store, message_log, lead_service, notifications):
    return build_controller(session_store, message_log, lead_service, notifications)


@pytest.fixture
def client():
    """Create a FastAPI test client with fresh in-memory services."""
    from api.main import app
    from api.services import reset_services
    reset_services()
    with TestClient(app) as test_client:
        yield test_client
    reset_services()


@pytest.fixture
def visitor_token():
    return "visitor-token-0001"


@pytest.fixture
def failing_notifications():
    return FailingNotificationService()


@pytest.fixture
def flaky_lead_service():
    """Lead service whose first create call fails."""
    return FailingLeadService(failures=1)


@pytest.fixture
def make_controller(session_store, message_log, lead_service, notifications):
    """Controller factory sharing the default stores; override lead service or notifications."""
    def _make(lead_service=lead_service, notifications=notifications):
        return build_controller(session_store, message_log, lead_service, notifications)
    return _make
