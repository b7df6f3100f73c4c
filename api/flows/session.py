"""
Conversation session and transcript records.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from .steps import CollectedData


def _uuid() -> str:
    return str(uuid.uuid4())


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class MessageRole(str, Enum):
    ASSISTANT = "assistant"
    USER = "user"


@dataclass
class ConversationSession:
    """One visitor's progress through the guided flow."""
    id: str
    visitor_token: str
    current_step_id: str
    collected_data: CollectedData = field(default_factory=dict)
    status: SessionStatus = SessionStatus.ACTIVE
    started_at: datetime = field(default_factory=datetime.utcnow)
    last_activity_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    lead_id: Optional[str] = None
    qualification_score: Optional[int] = None
    source: str = "chat_widget"
    referrer_url: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "visitor_token": self.visitor_token,
            "current_step_id": self.current_step_id,
            "collected_data": dict(self.collected_data),
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "last_activity_at": self.last_activity_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "lead_id": self.lead_id,
            "qualification_score": self.qualification_score,
        }


@dataclass
class ChatMessage:
    """Append-only transcript entry."""
    session_id: str
    role: MessageRole
    content: str
    step_id: Optional[str] = None
    id: str = field(default_factory=_uuid)
    created_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "step_id": self.step_id,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class PendingMessage:
    """An assistant/user message produced by a transition, not yet logged."""
    role: MessageRole
    content: str
    step_id: Optional[str] = None
