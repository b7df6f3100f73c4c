"""
Database-backed implementations of the guided intake store protocols.

Implements SessionStore, MessageLog and LeadService using the repository
layer. All three share the request's AsyncSession, so a transition and its
transcript entries commit together.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from api.flows.definitions import WELCOME_STEP_ID
from api.flows.errors import (
    LeadCreationError,
    LeadValidationError,
    PersistenceError,
    SessionNotFoundError,
    StaleTransitionError,
)
from api.flows.session import ChatMessage, ConversationSession, MessageRole, SessionStatus
from api.flows.stores import UPDATABLE_FIELDS, missing_lead_fields

from .models import ChatMessage as ChatMessageRow, ChatSession as ChatSessionRow, Lead
from .repositories import (
    ChatMessageRepository,
    ChatSessionRepository,
    LeadRepository,
    lead_to_dict,
)

logger = logging.getLogger(__name__)

LEAD_COLUMNS = {c.name for c in Lead.__table__.columns} - {"id", "created_at"}


def _to_session(row: ChatSessionRow) -> ConversationSession:
    return ConversationSession(
        id=row.id,
        visitor_token=row.visitor_token,
        current_step_id=row.current_step_id,
        collected_data=dict(row.collected_data or {}),
        status=SessionStatus(row.status),
        started_at=row.started_at,
        last_activity_at=row.last_activity_at,
        completed_at=row.completed_at,
        lead_id=row.lead_id,
        qualification_score=row.qualification_score,
        source=row.source,
        referrer_url=row.referrer_url,
        user_agent=row.user_agent,
    )


def _to_message(row: ChatMessageRow) -> ChatMessage:
    return ChatMessage(
        session_id=row.session_id,
        role=MessageRole(row.role),
        content=row.content,
        step_id=row.step_id,
        id=row.id,
        created_at=row.created_at,
    )


class DbSessionStore:
    """Persistent session store backed by PostgreSQL or SQLite."""

    def __init__(self, session: AsyncSession):
        self._repo = ChatSessionRepository(session)

    async def create(self, visitor_token: str, metadata: Optional[Dict[str, Any]] = None) -> ConversationSession:
        metadata = metadata or {}
        try:
            row = await self._repo.create(
                visitor_token=visitor_token,
                current_step_id=WELCOME_STEP_ID,
                collected_data={},
                source=metadata.get("source", "chat_widget"),
                referrer_url=metadata.get("referrer_url"),
                user_agent=metadata.get("user_agent"),
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to create chat session: {e}") from e
        return _to_session(row)

    async def get(self, session_id: str) -> Optional[ConversationSession]:
        try:
            row = await self._repo.get_by_id(session_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load chat session {session_id}: {e}") from e
        return _to_session(row) if row else None

    async def find_active_by_token(self, visitor_token: str) -> Optional[ConversationSession]:
        return await self._find(visitor_token, SessionStatus.ACTIVE)

    async def find_last_completed_by_token(self, visitor_token: str) -> Optional[ConversationSession]:
        return await self._find(visitor_token, SessionStatus.COMPLETED)

    async def _find(self, visitor_token: str, status: SessionStatus) -> Optional[ConversationSession]:
        try:
            row = await self._repo.find_latest_by_token(visitor_token, status.value)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to look up sessions for visitor: {e}") from e
        return _to_session(row) if row else None

    async def update(
        self,
        session_id: str,
        changes: Dict[str, Any],
        expected_step_id: Optional[str] = None,
    ) -> ConversationSession:
        values = {}
        for key, value in changes.items():
            if key not in UPDATABLE_FIELDS:
                raise ValueError(f"Field {key!r} cannot be updated")
            values[key] = value.value if isinstance(value, Enum) else value

        try:
            row = await self._repo.update(session_id, expected_step_id=expected_step_id, **values)
            if row is None:
                current = await self._repo.get_by_id(session_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to update chat session {session_id}: {e}") from e

        if row is None:
            if current is None:
                raise SessionNotFoundError(session_id)
            raise StaleTransitionError(session_id, expected_step_id, current.current_step_id)
        return _to_session(row)


class DbMessageLog:
    """Append-only transcript backed by the chat_messages table."""

    def __init__(self, session: AsyncSession):
        self._repo = ChatMessageRepository(session)

    async def append(self, session_id: str, role: MessageRole, content: str, step_id: Optional[str] = None) -> ChatMessage:
        try:
            row = await self._repo.add(session_id, MessageRole(role).value, content, step_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to append message to session {session_id}: {e}") from e
        return _to_message(row)

    async def list(self, session_id: str) -> List[ChatMessage]:
        try:
            rows = await self._repo.list_for_session(session_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load transcript for session {session_id}: {e}") from e
        return [_to_message(r) for r in rows]


class DbLeadService:
    """Lead creation against the leads table."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self._repo = LeadRepository(session)

    async def create(self, lead_fields: Dict[str, Any]) -> Dict[str, Any]:
        missing = missing_lead_fields(lead_fields)
        if missing:
            raise LeadValidationError(missing)

        values = {k: v for k, v in lead_fields.items() if k in LEAD_COLUMNS}
        try:
            # Savepoint: a failed insert must not poison the session's transaction
            async with self.session.begin_nested():
                lead = await self._repo.create(**values)
        except SQLAlchemyError as e:
            raise LeadCreationError(f"Failed to create lead: {e}") from e
        logger.info(f"Lead {lead.id} stored (priority={lead.priority})")
        return lead_to_dict(lead)

    async def get(self, lead_id: str) -> Optional[Dict[str, Any]]:
        try:
            lead = await self._repo.get_by_id(lead_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load lead {lead_id}: {e}") from e
        return lead_to_dict(lead) if lead else None
