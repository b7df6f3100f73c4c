"""
Guided intake chat API routes.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database.session import get_optional_db
from ..flows.definitions import STEP_TABLE
from ..flows.engine import SessionView, SubmitResult
from ..flows.errors import LeadCreationError, PersistenceError, SessionNotFoundError
from ..middleware.metrics import (
    record_lead_created,
    record_lead_failure,
    record_session_start,
    record_submission,
)
from ..services import get_services

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Request / Response Models ─────────────────────────────────────

class InitSessionRequest(BaseModel):
    visitor_token: str = Field(..., min_length=8, max_length=128)
    referrer_url: Optional[str] = None
    user_agent: Optional[str] = None
    source: str = "chat_widget"


class SubmitRequest(BaseModel):
    value: str = Field(default="", max_length=2000)
    # The step this answer was given for; replays against a later step are stale
    expected_step_id: str = Field(..., min_length=1, max_length=64)


class StepOptionModel(BaseModel):
    label: str
    value: str


class StepModel(BaseModel):
    id: str
    kind: str
    prompt: str
    options: List[StepOptionModel] = []
    placeholder: Optional[str] = None
    flow_category: Optional[str] = None


class MessageModel(BaseModel):
    id: str
    role: str
    content: str
    step_id: Optional[str] = None
    created_at: str


class SessionResponse(BaseModel):
    session_id: str
    status: str
    current_step: StepModel
    messages: List[MessageModel]
    collected_data: Dict[str, str]
    progress: int
    resumed: bool
    lead_id: Optional[str] = None


class SubmitResponse(BaseModel):
    accepted: bool
    assistant_messages: List[str]
    new_step_id: Optional[str]
    current_step: Optional[StepModel] = None
    done: bool
    stale: bool
    progress: int
    lead_id: Optional[str] = None


def _session_response(view: SessionView) -> Dict[str, Any]:
    return {
        "session_id": view.session.id,
        "status": view.session.status.value,
        "current_step": view.current_step.to_dict(),
        "messages": [m.to_dict() for m in view.transcript],
        "collected_data": view.session.collected_data,
        "progress": view.progress,
        "resumed": view.resumed,
        "lead_id": view.session.lead_id,
    }


def _submit_response(result: SubmitResult) -> Dict[str, Any]:
    data = result.to_dict()
    data.pop("lead_priority", None)
    step = None
    if result.new_step_id:
        step = STEP_TABLE.step_by_id(result.new_step_id).to_dict()
    data["current_step"] = step
    return data


# ── Endpoints ─────────────────────────────────────────────────────

@router.post("/chat-sessions/init", response_model=SessionResponse)
async def init_session(request: InitSessionRequest, db: Optional[AsyncSession] = Depends(get_optional_db)):
    """Open or resume the visitor's guided chat."""
    controller = get_services().controller_for(db)
    try:
        view = await controller.start(
            request.visitor_token,
            {
                "referrer_url": request.referrer_url,
                "user_agent": request.user_agent,
                "source": request.source,
            },
        )
        if db is not None:
            await db.commit()
    except PersistenceError as e:
        logger.error(f"Failed to open chat session: {e}")
        raise HTTPException(status_code=503, detail="Chat is temporarily unavailable. Please try again.")

    record_session_start(view.resumed)
    return _session_response(view)


@router.get("/chat-sessions/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str, db: Optional[AsyncSession] = Depends(get_optional_db)):
    """Current state and transcript of a chat session."""
    controller = get_services().controller_for(db)
    try:
        view = await controller.get_state(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail=f"Chat session {session_id} not found")
    except PersistenceError as e:
        logger.error(f"Failed to load chat session {session_id}: {e}")
        raise HTTPException(status_code=503, detail="Chat is temporarily unavailable. Please try again.")
    return _session_response(view)


@router.post("/chat-sessions/{session_id}/submit", response_model=SubmitResponse)
async def submit(session_id: str, request: SubmitRequest, db: Optional[AsyncSession] = Depends(get_optional_db)):
    """Submit the visitor's answer to the current step."""
    controller = get_services().controller_for(db)
    try:
        result = await controller.submit(session_id, request.value, request.expected_step_id)
        if db is not None:
            await db.commit()
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail=f"Chat session {session_id} not found")
    except LeadCreationError as e:
        logger.error(f"Lead creation failed for session {session_id}: {e}")
        record_lead_failure()
        if db is not None:
            # Keep the transition into confirmation and the apology message
            await db.commit()
        return JSONResponse(
            status_code=503,
            content={"detail": LeadCreationError.user_message, "retryable": True},
        )
    except PersistenceError as e:
        logger.error(f"Failed to persist submission for session {session_id}: {e}")
        raise HTTPException(status_code=503, detail="We couldn't save your answer. Please try again.")

    if result.stale:
        outcome = "stale"
    elif result.accepted:
        outcome = "accepted"
    else:
        outcome = "invalid"
    step_label = request.expected_step_id if request.expected_step_id in STEP_TABLE else "unknown"
    record_submission(step_label, outcome)
    if result.lead_id and result.lead_priority:
        record_lead_created(result.lead_priority)

    return _submit_response(result)
