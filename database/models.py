"""
SQLAlchemy ORM models for the guided intake CRM.

Persistent entities: chat sessions, chat messages, leads and lead events.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Column, String, Integer, DateTime, Text, ForeignKey, JSON, Index, text,
)
from sqlalchemy.orm import DeclarativeBase, relationship


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class ChatSession(Base):
    __tablename__ = "chat_sessions"

    id = Column(String(36), primary_key=True, default=_uuid)
    visitor_token = Column(String(128), nullable=False)
    lead_id = Column(String(36), ForeignKey("leads.id"), nullable=True)
    status = Column(String(15), nullable=False, default="active")  # active, completed, abandoned
    current_step_id = Column(String(64), nullable=False, default="welcome")
    collected_data = Column(JSON, nullable=False, default=dict)
    qualification_score = Column(Integer, nullable=True)
    source = Column(String(30), nullable=False, default="chat_widget")
    referrer_url = Column(Text, nullable=True)
    user_agent = Column(Text, nullable=True)
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
    abandoned_at = Column(DateTime, nullable=True)
    last_activity_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    messages = relationship("ChatMessage", back_populates="session", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_chat_session_token_status", "visitor_token", "status"),
        # At most one active session per visitor, across workers
        Index(
            "uq_chat_session_active_token",
            "visitor_token",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(String(36), primary_key=True, default=_uuid)
    # Tie-breaker for messages sharing a created_at timestamp
    seq = Column(Integer, nullable=False, default=0)
    session_id = Column(String(36), ForeignKey("chat_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(10), nullable=False)  # assistant, user
    step_id = Column(String(64), nullable=True)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    session = relationship("ChatSession", back_populates="messages")


class Lead(Base):
    __tablename__ = "leads"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    phone = Column(String(20), nullable=False)
    email = Column(String(255), nullable=True)
    source = Column(String(30), nullable=False, default="website")
    status = Column(String(20), nullable=False, default="new")
    priority = Column(String(4), nullable=False, default="P2")
    service_needed = Column(String(50), nullable=True)
    insurance_carrier = Column(String(50), nullable=True)
    member_id = Column(String(64), nullable=True)
    best_time_to_call = Column(String(30), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    events = relationship("LeadEvent", back_populates="lead", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_lead_status_priority", "status", "priority"),
    )


class LeadEvent(Base):
    __tablename__ = "lead_events"

    id = Column(String(36), primary_key=True, default=_uuid)
    lead_id = Column(String(36), ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = Column(String(30), nullable=False)  # created, status_changed
    details_json = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)

    lead = relationship("Lead", back_populates="events")
