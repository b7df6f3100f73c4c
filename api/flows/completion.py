"""
Completion handler for guided intake conversations.

Runs once a conversation reaches a confirmation step: builds the lead
request, creates the lead, fires the best-effort SMS/email follow-ups and
marks the session completed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from lead_scoring.scoring_model import LeadScore, LeadScorer, build_notes

from .errors import LeadCreationError
from .session import ConversationSession, SessionStatus
from .steps import FLOW_CHOICE_FIELD, TERMINAL_STEP_ID
from .stores import LeadService, NotificationService, SessionStore
from .validator import digits_only

logger = logging.getLogger(__name__)

DEFAULT_LEAD_NAME = "Website Visitor"


@dataclass
class CompletionResult:
    session: ConversationSession
    lead_id: str
    lead_score: LeadScore
    notifications: Dict[str, bool] = field(default_factory=dict)


def build_lead_request(collected: Mapping[str, str], lead_score: LeadScore, source: str = "chat_widget") -> Dict[str, Any]:
    """Lead-creation payload for the CRM, derived from the collected fields."""
    return {
        "name": collected.get("name") or DEFAULT_LEAD_NAME,
        "phone": digits_only(collected.get("phone", "")),
        "email": collected.get("email", ""),
        "source": source,
        "status": "new",
        "priority": lead_score.priority.value,
        "service_needed": collected.get("treatmentType", ""),
        "insurance_carrier": collected.get("insuranceCarrier", ""),
        "member_id": collected.get("memberId", ""),
        "best_time_to_call": "anytime" if collected.get("contactPreference") == "call" else "",
        "notes": build_notes(collected),
    }


def follow_up_sms_text(collected: Mapping[str, str], brand_name: str) -> str:
    first_name = (collected.get("name") or "").split(" ")[0] or "there"
    return (
        f"Hello, {first_name}, this is {brand_name}. Thank you for contacting us. "
        "Do you have any immediate questions we can answer?"
    )


class CompletionHandler:
    """Turns a finished conversation into a lead."""

    def __init__(
        self,
        lead_service: LeadService,
        notifications: Optional[NotificationService],
        session_store: SessionStore,
        scorer: Optional[LeadScorer] = None,
        brand_name: str = "Claim Shield Health",
        lead_source: str = "chat_widget",
    ):
        self.lead_service = lead_service
        self.notifications = notifications
        self.session_store = session_store
        self.scorer = scorer or LeadScorer()
        self.brand_name = brand_name
        self.lead_source = lead_source

    async def complete(self, session: ConversationSession) -> CompletionResult:
        """
        Create the lead and mark the session completed.

        Raises LeadCreationError if the lead cannot be created; the session is
        left untouched (still active at its confirmation step). Notification
        failures are logged and never raised.
        """
        collected = dict(session.collected_data)
        lead_score = self.scorer.score(collected)
        lead_request = build_lead_request(collected, lead_score, source=self.lead_source)

        try:
            lead = await self.lead_service.create(lead_request)
        except LeadCreationError:
            logger.error(f"Lead creation rejected for session {session.id}")
            raise
        except Exception as e:
            logger.error(f"Lead creation failed for session {session.id}: {e}")
            raise LeadCreationError(str(e)) from e

        lead_id = str(lead["id"])
        logger.info(
            f"Lead {lead_id} created from session {session.id} "
            f"(flow={collected.get(FLOW_CHOICE_FIELD)}, priority={lead_score.priority.value})"
        )

        notifications = await self._notify(lead_id, collected)

        updated = await self.session_store.update(
            session.id,
            {
                "status": SessionStatus.COMPLETED,
                "lead_id": lead_id,
                "qualification_score": lead_score.score,
                "completed_at": datetime.utcnow(),
                "current_step_id": TERMINAL_STEP_ID,
            },
            expected_step_id=session.current_step_id,
        )
        return CompletionResult(
            session=updated,
            lead_id=lead_id,
            lead_score=lead_score,
            notifications=notifications,
        )

    async def _notify(self, lead_id: str, collected: Mapping[str, str]) -> Dict[str, bool]:
        sent: Dict[str, bool] = {}
        if self.notifications is None:
            return sent

        if collected.get("phone") and collected.get("contactPreference") != "call":
            try:
                await self.notifications.send_sms(lead_id, follow_up_sms_text(collected, self.brand_name))
                sent["sms"] = True
            except Exception as e:
                logger.error(f"Failed to send follow-up SMS for lead {lead_id}: {e}")
                sent["sms"] = False

        if collected.get("email"):
            try:
                await self.notifications.send_confirmation_email(lead_id, collected.get("appointmentSlot"))
                sent["email"] = True
            except Exception as e:
                logger.error(f"Failed to send confirmation email for lead {lead_id}: {e}")
                sent["email"] = False

        return sent
