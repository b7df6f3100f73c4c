"""
Boundary protocols for the guided intake engine.

The controller works against these protocols so it can run with either the
in-memory implementations below or the database-backed adapters in
database/adapters.py.
"""

import copy
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from .definitions import WELCOME_STEP_ID
from .errors import LeadValidationError, SessionNotFoundError, StaleTransitionError
from .session import ChatMessage, ConversationSession, MessageRole, SessionStatus

logger = logging.getLogger(__name__)

# Fields a ConversationSession update may touch.
UPDATABLE_FIELDS = (
    "current_step_id",
    "collected_data",
    "status",
    "lead_id",
    "completed_at",
    "qualification_score",
    "last_activity_at",
)

REQUIRED_LEAD_FIELDS = ("name", "phone")


@runtime_checkable
class SessionStore(Protocol):
    """Protocol for conversation session persistence."""

    async def create(self, visitor_token: str, metadata: Optional[Dict[str, Any]] = None) -> ConversationSession:
        ...

    async def get(self, session_id: str) -> Optional[ConversationSession]:
        ...

    async def find_active_by_token(self, visitor_token: str) -> Optional[ConversationSession]:
        ...

    async def find_last_completed_by_token(self, visitor_token: str) -> Optional[ConversationSession]:
        ...

    async def update(
        self,
        session_id: str,
        changes: Dict[str, Any],
        expected_step_id: Optional[str] = None,
    ) -> ConversationSession:
        """
        Apply changes atomically.

        When expected_step_id is given, the update only succeeds if the stored
        current_step_id still matches it; otherwise StaleTransitionError.
        """
        ...


@runtime_checkable
class MessageLog(Protocol):
    async def append(self, session_id: str, role: MessageRole, content: str, step_id: Optional[str] = None) -> ChatMessage:
        ...

    async def list(self, session_id: str) -> List[ChatMessage]:
        ...


@runtime_checkable
class LeadService(Protocol):
    async def create(self, lead_fields: Dict[str, Any]) -> Dict[str, Any]:
        """Create a lead. Raises LeadValidationError when required fields are absent."""
        ...

    async def get(self, lead_id: str) -> Optional[Dict[str, Any]]:
        ...


@runtime_checkable
class NotificationService(Protocol):
    async def send_sms(self, lead_id: str, message: str) -> None:
        ...

    async def send_confirmation_email(self, lead_id: str, appointment_date: Optional[str] = None) -> None:
        ...


def missing_lead_fields(lead_fields: Dict[str, Any]) -> List[str]:
    return [f for f in REQUIRED_LEAD_FIELDS if not str(lead_fields.get(f) or "").strip()]


# ── In-memory implementations ─────────────────────────────────────

class InMemorySessionStore:
    """Dict-backed session store. Returns copies so callers never alias stored state."""

    def __init__(self):
        self._sessions: Dict[str, ConversationSession] = {}

    async def create(self, visitor_token: str, metadata: Optional[Dict[str, Any]] = None) -> ConversationSession:
        metadata = metadata or {}
        session = ConversationSession(
            id=str(uuid.uuid4()),
            visitor_token=visitor_token,
            current_step_id=WELCOME_STEP_ID,
            source=metadata.get("source", "chat_widget"),
            referrer_url=metadata.get("referrer_url"),
            user_agent=metadata.get("user_agent"),
        )
        self._sessions[session.id] = session
        return copy.deepcopy(session)

    async def get(self, session_id: str) -> Optional[ConversationSession]:
        session = self._sessions.get(session_id)
        return copy.deepcopy(session) if session else None

    async def find_active_by_token(self, visitor_token: str) -> Optional[ConversationSession]:
        candidates = [
            s for s in self._sessions.values()
            if s.visitor_token == visitor_token and s.status == SessionStatus.ACTIVE
        ]
        if not candidates:
            return None
        return copy.deepcopy(max(candidates, key=lambda s: s.last_activity_at))

    async def find_last_completed_by_token(self, visitor_token: str) -> Optional[ConversationSession]:
        candidates = [
            s for s in self._sessions.values()
            if s.visitor_token == visitor_token and s.status == SessionStatus.COMPLETED
        ]
        if not candidates:
            return None
        return copy.deepcopy(max(candidates, key=lambda s: s.completed_at or s.last_activity_at))

    async def update(
        self,
        session_id: str,
        changes: Dict[str, Any],
        expected_step_id: Optional[str] = None,
    ) -> ConversationSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        if expected_step_id is not None and session.current_step_id != expected_step_id:
            raise StaleTransitionError(session_id, expected_step_id, session.current_step_id)

        updated = copy.deepcopy(session)
        for key, value in changes.items():
            if key not in UPDATABLE_FIELDS:
                raise ValueError(f"Field {key!r} cannot be updated")
            setattr(updated, key, copy.deepcopy(value))
        updated.last_activity_at = changes.get("last_activity_at") or datetime.utcnow()
        self._sessions[session_id] = updated
        return copy.deepcopy(updated)


class InMemoryMessageLog:
    def __init__(self):
        self._messages: Dict[str, List[ChatMessage]] = {}

    async def append(self, session_id: str, role: MessageRole, content: str, step_id: Optional[str] = None) -> ChatMessage:
        msg = ChatMessage(session_id=session_id, role=role, content=content, step_id=step_id)
        self._messages.setdefault(session_id, []).append(msg)
        return msg

    async def list(self, session_id: str) -> List[ChatMessage]:
        # Stable sort keeps insertion order for equal timestamps
        return sorted(self._messages.get(session_id, []), key=lambda m: m.created_at)


class InMemoryLeadService:
    def __init__(self):
        self.leads: Dict[str, Dict[str, Any]] = {}

    async def create(self, lead_fields: Dict[str, Any]) -> Dict[str, Any]:
        missing = missing_lead_fields(lead_fields)
        if missing:
            raise LeadValidationError(missing)
        lead = dict(lead_fields)
        lead["id"] = str(uuid.uuid4())
        lead["created_at"] = datetime.utcnow().isoformat()
        self.leads[lead["id"]] = lead
        return dict(lead)

    async def get(self, lead_id: str) -> Optional[Dict[str, Any]]:
        lead = self.leads.get(lead_id)
        return dict(lead) if lead else None


class RecordingNotificationService:
    """Notification service that only records what would have been sent."""

    def __init__(self):
        self.sms: List[Dict[str, str]] = []
        self.emails: List[Dict[str, Optional[str]]] = []

    async def send_sms(self, lead_id: str, message: str) -> None:
        logger.info(f"SMS queued for lead {lead_id}")
        self.sms.append({"lead_id": lead_id, "message": message})

    async def send_confirmation_email(self, lead_id: str, appointment_date: Optional[str] = None) -> None:
        logger.info(f"Confirmation email queued for lead {lead_id}")
        self.emails.append({"lead_id": lead_id, "appointment_date": appointment_date})
