"""Tests for the conversation controller."""

import asyncio
import gc

import pytest

from api.flows.definitions import STEP_TABLE
from api.flows.errors import LeadCreationError, SessionNotFoundError
from api.flows.session import MessageRole, SessionStatus


async def _walk(controller, session_id, answers):
    """Submit (expected_step_id, value) pairs, asserting each is accepted."""
    result = None
    for step_id, value in answers:
        result = await controller.submit(session_id, value, expected_step_id=step_id)
        assert result.accepted, f"{step_id} rejected {value!r}: {result.assistant_messages}"
    return result


PRICING_PRIVATE_PAY_CALL = [
    ("main_menu", "pricing"),
    ("pricing_payment_type", "private_pay"),
    ("pricing_treatment_type", "outpatient"),
    ("pricing_seeking_for", "myself"),
    ("contact_name", "Jane Doe"),
    ("contact_email", "jane@example.com"),
    ("contact_phone", "5551234567"),
    ("contact_preference", "call"),
]

VERIFY_INSURANCE = [
    ("main_menu", "verify_insurance"),
    ("vob_treatment_type", "outpatient"),
    ("vob_patient_name", "Jane Doe"),
    ("contact_email", "jane@example.com"),
    ("contact_phone", "(555) 123-4567"),
    ("vob_dob", "03-15-1990"),
    ("vob_insurance_provider", "aetna"),
    ("vob_member_id", "XYZ12345"),
]


# ── Start / resume ────────────────────────────────────

class TestStart:
    @pytest.mark.asyncio
    async def test_new_session_is_greeted(self, controller, visitor_token):
        view = await controller.start(visitor_token)

        assert view.session.current_step_id == "main_menu"
        assert view.current_step.id == "main_menu"
        assert not view.resumed
        assert [m.content for m in view.transcript] == [
            STEP_TABLE.step_by_id("welcome").prompt,
            STEP_TABLE.step_by_id("main_menu").prompt,
        ]
        assert all(m.role == MessageRole.ASSISTANT for m in view.transcript)

    @pytest.mark.asyncio
    async def test_resume_does_not_duplicate_messages(self, controller, visitor_token):
        first = await controller.start(visitor_token)
        await controller.submit(first.session.id, "pricing", expected_step_id="main_menu")

        second = await controller.start(visitor_token)

        assert second.resumed
        assert second.session.id == first.session.id
        assert second.session.current_step_id == "pricing_payment_type"
        again = await controller.start(visitor_token)
        assert len(again.transcript) == len(second.transcript)

    @pytest.mark.asyncio
    async def test_resume_mid_flow_keeps_collected_data(self, controller, visitor_token):
        first = await controller.start(visitor_token)
        await _walk(controller, first.session.id, VERIFY_INSURANCE[:5])

        view = await controller.start(visitor_token)

        assert view.resumed
        assert view.current_step.id == "vob_dob"
        assert view.session.collected_data == {
            "flowChoice": "verify_insurance",
            "treatmentType": "outpatient",
            "name": "Jane Doe",
            "email": "jane@example.com",
            "phone": "(555) 123-4567",
        }

    @pytest.mark.asyncio
    async def test_concurrent_starts_share_one_session(self, controller, message_log, visitor_token):
        views = await asyncio.gather(*(controller.start(visitor_token) for _ in range(3)))

        assert len({v.session.id for v in views}) == 1
        assert sum(not v.resumed for v in views) == 1
        assert len(await message_log.list(views[0].session.id)) == 2

    @pytest.mark.asyncio
    async def test_ungreeted_session_is_greeted_once(self, controller, session_store, message_log, visitor_token):
        created = await session_store.create(visitor_token)

        view = await controller.start(visitor_token)

        assert view.session.id == created.id
        assert view.session.current_step_id == "main_menu"
        assert len(await message_log.list(created.id)) == 2

    @pytest.mark.asyncio
    async def test_get_state_unknown_session(self, controller):
        with pytest.raises(SessionNotFoundError):
            await controller.get_state("missing")


# ── Submissions ───────────────────────────────────────

class TestSubmit:
    @pytest.mark.asyncio
    async def test_invalid_input_keeps_state(self, controller, message_log, visitor_token):
        view = await controller.start(visitor_token)
        sid = view.session.id
        await _walk(controller, sid, VERIFY_INSURANCE[:4])
        before = len(await message_log.list(sid))

        result = await controller.submit(sid, "555-1234", expected_step_id="contact_phone")

        assert not result.accepted
        assert not result.stale
        assert result.new_step_id == "contact_phone"
        assert result.assistant_messages == ["Please enter a valid phone number."]
        state = await controller.get_state(sid)
        assert state.session.current_step_id == "contact_phone"
        assert "phone" not in state.session.collected_data
        assert len(await message_log.list(sid)) == before

    @pytest.mark.asyncio
    async def test_stale_submission_rejected(self, controller, visitor_token):
        view = await controller.start(visitor_token)

        result = await controller.submit(view.session.id, "jane@example.com", expected_step_id="contact_email")

        assert result.stale
        assert not result.accepted
        assert result.new_step_id == "main_menu"
        state = await controller.get_state(view.session.id)
        assert state.session.collected_data == {}

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_submissions(self, controller, visitor_token):
        view = await controller.start(visitor_token)
        sid = view.session.id

        results = await asyncio.gather(
            controller.submit(sid, "pricing", expected_step_id="main_menu"),
            controller.submit(sid, "pricing", expected_step_id="main_menu"),
        )

        assert sorted(r.accepted for r in results) == [False, True]
        assert sum(r.stale for r in results) == 1
        state = await controller.get_state(sid)
        assert state.session.current_step_id == "pricing_payment_type"
        user_messages = [m for m in state.transcript if m.role == MessageRole.USER]
        assert len(user_messages) == 1

    @pytest.mark.asyncio
    async def test_replayed_submission_is_stale(self, controller, visitor_token):
        view = await controller.start(visitor_token)
        sid = view.session.id
        await _walk(controller, sid, [("main_menu", "pricing")])

        first = await controller.submit(sid, "private_pay", expected_step_id="pricing_payment_type")
        replay = await controller.submit(sid, "private_pay", expected_step_id="pricing_payment_type")

        assert first.accepted
        assert replay.stale
        assert not replay.accepted
        state = await controller.get_state(sid)
        assert state.session.current_step_id == "pricing_treatment_type"
        assert state.session.collected_data == {"flowChoice": "pricing", "paymentType": "private_pay"}

    @pytest.mark.asyncio
    async def test_user_message_shows_option_label(self, controller, visitor_token):
        view = await controller.start(visitor_token)
        await controller.submit(view.session.id, "verify_insurance", expected_step_id="main_menu")

        state = await controller.get_state(view.session.id)
        user_messages = [m.content for m in state.transcript if m.role == MessageRole.USER]
        assert user_messages == ["Verify Insurance"]
        assert state.session.collected_data["flowChoice"] == "verify_insurance"

    @pytest.mark.asyncio
    async def test_unmapped_menu_value_stays_on_menu(self, controller, visitor_token):
        view = await controller.start(visitor_token)

        result = await controller.submit(view.session.id, "bogus", expected_step_id="main_menu")

        assert result.accepted
        assert result.new_step_id == "main_menu"

    @pytest.mark.asyncio
    async def test_unknown_session(self, controller):
        with pytest.raises(SessionNotFoundError):
            await controller.submit("missing", "pricing", expected_step_id="main_menu")

    @pytest.mark.asyncio
    async def test_locks_are_released(self, controller, visitor_token):
        with pytest.raises(SessionNotFoundError):
            await controller.submit("missing", "pricing", expected_step_id="main_menu")
        assert "missing" not in controller.locks

        view = await controller.start(visitor_token)
        await controller.submit(view.session.id, "pricing", expected_step_id="main_menu")
        gc.collect()

        assert len(controller.locks) == 0


# ── End-to-end flows ──────────────────────────────────

class TestFlows:
    @pytest.mark.asyncio
    async def test_pricing_private_pay_call(self, controller, lead_service, notifications, visitor_token):
        view = await controller.start(visitor_token)

        result = await _walk(controller, view.session.id, PRICING_PRIVATE_PAY_CALL)

        assert result.done
        assert result.new_step_id == "complete"
        assert result.progress == 100
        assert result.assistant_messages == [
            STEP_TABLE.step_by_id("confirmation").prompt,
            STEP_TABLE.step_by_id("complete").prompt,
        ]
        lead = lead_service.leads[result.lead_id]
        assert lead["priority"] == "P0"
        assert lead["phone"] == "5551234567"
        assert lead["best_time_to_call"] == "anytime"
        assert lead["notes"] == (
            "Flow: pricing. Treatment: outpatient. For: myself. "
            "Payment: private_pay. Contact preference: call."
        )
        assert notifications.sms == []
        assert len(notifications.emails) == 1

        state = await controller.get_state(view.session.id)
        assert state.session.status == SessionStatus.COMPLETED
        assert state.session.lead_id == result.lead_id
        assert state.session.qualification_score == 90

    @pytest.mark.asyncio
    async def test_verify_insurance(self, controller, lead_service, notifications, visitor_token):
        view = await controller.start(visitor_token)

        result = await _walk(controller, view.session.id, VERIFY_INSURANCE)

        assert result.done
        lead = lead_service.leads[result.lead_id]
        assert lead["priority"] == "P1"
        assert lead["insurance_carrier"] == "aetna"
        assert lead["member_id"] == "XYZ12345"
        assert "DOB: 03-15-1990" in lead["notes"]
        assert len(notifications.sms) == 1
        assert notifications.sms[0]["message"].startswith("Hello, Jane,")

    @pytest.mark.asyncio
    async def test_phone_sentinel_routes_verify_insurance_to_dob(self, controller, visitor_token):
        view = await controller.start(visitor_token)

        result = await _walk(controller, view.session.id, VERIFY_INSURANCE[:5])

        assert result.new_step_id == "vob_dob"

    @pytest.mark.asyncio
    async def test_question_flow_passes_through_contact_prompt(self, controller, lead_service, visitor_token):
        view = await controller.start(visitor_token)
        sid = view.session.id
        await _walk(controller, sid, [("main_menu", "question"), ("question_topic", "scheduling")])

        result = await controller.submit(sid, "Do you take walk-ins?", expected_step_id="question_text")

        assert result.new_step_id == "question_name"
        assert result.assistant_messages == [STEP_TABLE.step_by_id("question_contact_prompt").prompt]

        result = await _walk(controller, sid, [
            ("question_name", "John Smith"),
            ("contact_email", "john@example.com"),
            ("contact_phone", "5559876543"),
        ])
        assert result.done
        lead = lead_service.leads[result.lead_id]
        assert lead["name"] == "John Smith"
        assert lead["priority"] == "P2"
        assert "Question: Do you take walk-ins?" in lead["notes"]

    @pytest.mark.asyncio
    async def test_admissions_flow(self, controller, lead_service, visitor_token):
        view = await controller.start(visitor_token)

        result = await _walk(controller, view.session.id, [
            ("main_menu", "admissions"),
            ("admissions_treatment_type", "inpatient"),
            ("admissions_seeking_for", "someone_else"),
            ("admissions_name", "Jane Doe"),
            ("contact_email", "jane@example.com"),
            ("contact_phone", "5551234567"),
            ("admissions_additional_info", "Needs a bed this week"),
            ("contact_preference", "text"),
        ])

        assert result.done
        lead = lead_service.leads[result.lead_id]
        assert lead["priority"] == "P0"
        assert lead["notes"].endswith("Additional info: Needs a bed this week.")

    @pytest.mark.asyncio
    async def test_completed_session_rejects_submissions(self, controller, visitor_token):
        view = await controller.start(visitor_token)
        await _walk(controller, view.session.id, PRICING_PRIVATE_PAY_CALL)

        result = await controller.submit(view.session.id, "call", expected_step_id="contact_preference")

        assert result.stale
        assert result.done
        assert result.new_step_id == "complete"


# ── Failures and returning visitors ───────────────────

class TestCompletionFailures:
    @pytest.mark.asyncio
    async def test_lead_failure_keeps_confirmation_and_retries(
        self, make_controller, flaky_lead_service, visitor_token
    ):
        controller = make_controller(lead_service=flaky_lead_service)
        view = await controller.start(visitor_token)
        sid = view.session.id

        with pytest.raises(LeadCreationError):
            await _walk(controller, sid, PRICING_PRIVATE_PAY_CALL)

        state = await controller.get_state(sid)
        assert state.session.status == SessionStatus.ACTIVE
        assert state.session.current_step_id == "confirmation"
        assert state.transcript[-1].content == LeadCreationError.user_message
        assert flaky_lead_service.leads == {}

        result = await controller.submit(sid, "", expected_step_id="confirmation")

        assert result.done
        assert list(flaky_lead_service.leads) == [result.lead_id]

    @pytest.mark.asyncio
    async def test_notification_failure_still_completes(
        self, make_controller, lead_service, failing_notifications, visitor_token
    ):
        controller = make_controller(notifications=failing_notifications)
        view = await controller.start(visitor_token)

        result = await _walk(controller, view.session.id, VERIFY_INSURANCE)

        assert result.done
        assert result.lead_id in lead_service.leads


class TestReturningVisitor:
    @pytest.mark.asyncio
    async def test_returning_visitor_greeted_by_name(self, controller, message_log, visitor_token):
        first = await controller.start(visitor_token)
        await _walk(controller, first.session.id, PRICING_PRIVATE_PAY_CALL)

        view = await controller.start(visitor_token)

        assert view.session.id != first.session.id
        assert view.session.current_step_id == "main_menu"
        assert view.session.collected_data == {"name": "Jane Doe"}
        assert view.transcript[0].content == "Welcome back, Jane! How can I help you today?"

    @pytest.mark.asyncio
    async def test_known_name_skips_contact_name(self, controller, visitor_token):
        first = await controller.start(visitor_token)
        await _walk(controller, first.session.id, PRICING_PRIVATE_PAY_CALL)
        view = await controller.start(visitor_token)

        result = await _walk(controller, view.session.id, [
            ("main_menu", "pricing"),
            ("pricing_payment_type", "private_pay"),
            ("pricing_treatment_type", "inpatient"),
            ("pricing_seeking_for", "myself"),
        ])

        assert result.new_step_id == "contact_email"
