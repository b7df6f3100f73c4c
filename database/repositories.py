"""
Repository classes for the guided intake data access layer.

Each repository encapsulates CRUD operations for a specific model.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import ChatSession, ChatMessage, Lead, LeadEvent

logger = logging.getLogger(__name__)


class ChatSessionRepository:
    """Data access for guided chat sessions."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> ChatSession:
        chat = ChatSession(**kwargs)
        self.session.add(chat)
        await self.session.flush()
        return chat

    async def get_by_id(self, session_id: str) -> Optional[ChatSession]:
        result = await self.session.execute(
            select(ChatSession)
            .where(ChatSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_latest_by_token(self, visitor_token: str, status: str) -> Optional[ChatSession]:
        order = ChatSession.completed_at if status == "completed" else ChatSession.last_activity_at
        result = await self.session.execute(
            select(ChatSession)
            .where(ChatSession.visitor_token == visitor_token, ChatSession.status == status)
            .order_by(order.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def update(
        self,
        session_id: str,
        expected_step_id: Optional[str] = None,
        **values,
    ) -> Optional[ChatSession]:
        """
        Update a session row, optionally guarded by its current step.

        Returns None when no row matched (missing session, or the stored
        step differs from expected_step_id).
        """
        values.setdefault("last_activity_at", datetime.utcnow())
        stmt = update(ChatSession).where(ChatSession.id == session_id)
        if expected_step_id is not None:
            stmt = stmt.where(ChatSession.current_step_id == expected_step_id)
        result = await self.session.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        await self.session.flush()
        return await self.get_by_id(session_id)


class ChatMessageRepository:
    """Data access for the append-only chat transcript."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, session_id: str, role: str, content: str, step_id: Optional[str] = None) -> ChatMessage:
        result = await self.session.execute(
            select(func.max(ChatMessage.seq)).where(ChatMessage.session_id == session_id)
        )
        seq = (result.scalar() or 0) + 1
        msg = ChatMessage(
            session_id=session_id,
            seq=seq,
            role=role,
            content=content,
            step_id=step_id,
            created_at=datetime.utcnow(),
        )
        self.session.add(msg)
        await self.session.flush()
        return msg

    async def list_for_session(self, session_id: str) -> List[ChatMessage]:
        result = await self.session.execute(
            select(ChatMessage)
            .where(ChatMessage.session_id == session_id)
            .order_by(ChatMessage.created_at.asc(), ChatMessage.seq.asc())
        )
        return list(result.scalars().all())


class LeadRepository:
    """Data access for leads; creation also records a lead event."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> Lead:
        lead = Lead(**kwargs)
        self.session.add(lead)
        await self.session.flush()
        # Record creation event
        self.session.add(LeadEvent(
            lead_id=lead.id,
            event_type="created",
            details_json={"priority": kwargs.get("priority"), "source": kwargs.get("source")},
        ))
        await self.session.flush()
        return lead

    async def get_by_id(self, lead_id: str) -> Optional[Lead]:
        result = await self.session.execute(
            select(Lead).where(Lead.id == lead_id)
        )
        return result.scalar_one_or_none()


def lead_to_dict(lead: Lead) -> Dict[str, Any]:
    return {
        "id": lead.id,
        "name": lead.name,
        "phone": lead.phone,
        "email": lead.email or "",
        "source": lead.source,
        "status": lead.status,
        "priority": lead.priority,
        "service_needed": lead.service_needed or "",
        "insurance_carrier": lead.insurance_carrier or "",
        "member_id": lead.member_id or "",
        "best_time_to_call": lead.best_time_to_call or "",
        "notes": lead.notes or "",
        "created_at": lead.created_at.isoformat() if lead.created_at else None,
    }
