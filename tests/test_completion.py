"""Tests for lead priority, notes and the completion handler."""

import pytest

from api.flows.completion import CompletionHandler, build_lead_request, follow_up_sms_text
from api.flows.errors import LeadCreationError, LeadValidationError
from api.flows.session import SessionStatus
from lead_scoring.scoring_model import LeadPriority, LeadScorer, build_notes


@pytest.fixture
def scorer():
    return LeadScorer()


# ── Priority ──────────────────────────────────────────

class TestLeadScorer:
    def test_admissions_is_p0(self, scorer):
        result = scorer.score({"flowChoice": "admissions"})
        assert result.priority == LeadPriority.P0
        assert result.score == 90

    def test_call_preference_is_p0(self, scorer):
        result = scorer.score({"flowChoice": "pricing", "paymentType": "private_pay", "contactPreference": "call"})
        assert result.priority == LeadPriority.P0
        assert result.signals == ["callback_requested"]

    def test_verify_insurance_is_p1(self, scorer):
        result = scorer.score({"flowChoice": "verify_insurance"})
        assert result.priority == LeadPriority.P1
        assert result.score == 70

    def test_insurance_payment_is_p1(self, scorer):
        assert scorer.score({"flowChoice": "pricing", "paymentType": "insurance"}).priority == LeadPriority.P1

    def test_call_beats_insurance(self, scorer):
        collected = {"flowChoice": "pricing", "paymentType": "insurance", "contactPreference": "call"}
        assert scorer.score(collected).priority == LeadPriority.P0

    def test_default_is_p2(self, scorer):
        result = scorer.score({"flowChoice": "question"})
        assert result.priority == LeadPriority.P2
        assert result.score == 50
        assert result.signals == []


# ── Notes and lead request ────────────────────────────

class TestLeadRequest:
    def test_notes_order_and_format(self):
        notes = build_notes({
            "additionalInfo": "Prefers mornings",
            "flowChoice": "admissions",
            "treatmentType": "inpatient",
            "seekingFor": "myself",
        })
        assert notes == "Flow: admissions. Treatment: inpatient. For: myself. Additional info: Prefers mornings."

    def test_notes_skip_empty_fields(self):
        assert build_notes({"flowChoice": "question", "questionTopic": ""}) == "Flow: question."

    def test_lead_request_fields(self, scorer):
        collected = {
            "flowChoice": "pricing",
            "paymentType": "private_pay",
            "treatmentType": "outpatient",
            "name": "Jane Doe",
            "email": "jane@example.com",
            "phone": "(555) 123-4567",
            "contactPreference": "call",
        }
        request = build_lead_request(collected, scorer.score(collected))
        assert request["name"] == "Jane Doe"
        assert request["phone"] == "5551234567"
        assert request["source"] == "chat_widget"
        assert request["priority"] == "P0"
        assert request["service_needed"] == "outpatient"
        assert request["best_time_to_call"] == "anytime"

    def test_missing_name_defaults(self, scorer):
        request = build_lead_request({"phone": "(555) 123-4567"}, scorer.score({}))
        assert request["name"] == "Website Visitor"
        assert request["best_time_to_call"] == ""

    def test_sms_text_uses_first_name(self):
        text = follow_up_sms_text({"name": "Jane Doe"}, "Claim Shield Health")
        assert text.startswith("Hello, Jane, this is Claim Shield Health.")


# ── Handler ───────────────────────────────────────────

async def _session_at_confirmation(session_store, collected):
    session = await session_store.create("visitor-token-0001")
    return await session_store.update(
        session.id, {"current_step_id": "confirmation", "collected_data": collected}
    )


class TestCompletionHandler:
    @pytest.mark.asyncio
    async def test_creates_lead_and_completes_session(self, session_store, lead_service, notifications):
        collected = {
            "flowChoice": "pricing", "paymentType": "private_pay", "name": "Jane Doe",
            "email": "jane@example.com", "phone": "(555) 123-4567", "contactPreference": "text",
        }
        session = await _session_at_confirmation(session_store, collected)
        handler = CompletionHandler(lead_service, notifications, session_store)

        result = await handler.complete(session)

        assert result.lead_id in lead_service.leads
        assert result.session.status == SessionStatus.COMPLETED
        assert result.session.current_step_id == "complete"
        assert result.session.qualification_score == 50
        assert result.notifications == {"sms": True, "email": True}
        assert notifications.sms[0]["lead_id"] == result.lead_id

    @pytest.mark.asyncio
    async def test_no_sms_when_call_requested(self, session_store, lead_service, notifications):
        collected = {"flowChoice": "pricing", "name": "Jane Doe", "phone": "(555) 123-4567", "contactPreference": "call"}
        session = await _session_at_confirmation(session_store, collected)

        result = await CompletionHandler(lead_service, notifications, session_store).complete(session)

        assert notifications.sms == []
        assert notifications.emails == []
        assert result.notifications == {}

    @pytest.mark.asyncio
    async def test_missing_phone_is_validation_error(self, session_store, lead_service, notifications):
        session = await _session_at_confirmation(session_store, {"flowChoice": "question", "name": "Jane Doe"})

        with pytest.raises(LeadValidationError) as exc_info:
            await CompletionHandler(lead_service, notifications, session_store).complete(session)

        assert exc_info.value.missing_fields == ["phone"]
        stored = await session_store.get(session.id)
        assert stored.status == SessionStatus.ACTIVE
        assert stored.current_step_id == "confirmation"

    @pytest.mark.asyncio
    async def test_unexpected_failure_wrapped(self, session_store, notifications):
        class BrokenLeadService:
            async def create(self, lead_fields):
                raise RuntimeError("connection reset")

            async def get(self, lead_id):
                return None

        session = await _session_at_confirmation(session_store, {"name": "Jane Doe", "phone": "5551234567"})
        with pytest.raises(LeadCreationError):
            await CompletionHandler(BrokenLeadService(), notifications, session_store).complete(session)

    @pytest.mark.asyncio
    async def test_notification_failures_not_fatal(self, session_store, lead_service, failing_notifications):
        collected = {"name": "Jane Doe", "phone": "(555) 123-4567", "email": "jane@example.com"}
        session = await _session_at_confirmation(session_store, collected)
        handler = CompletionHandler(lead_service, failing_notifications, session_store)

        result = await handler.complete(session)

        assert result.notifications == {"sms": False, "email": False}
        assert result.session.status == SessionStatus.COMPLETED
