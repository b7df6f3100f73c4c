"""Tests for the guided chat API endpoints."""

import pytest


def _init(client, token="visitor-token-api-0001"):
    resp = client.post("/api/v1/chat-sessions/init", json={"visitor_token": token})
    assert resp.status_code == 200
    return resp.json()


def _submit(client, session_id, value, expected_step_id):
    body = {"value": value, "expected_step_id": expected_step_id}
    return client.post(f"/api/v1/chat-sessions/{session_id}/submit", json=body)


def test_root_endpoint(client):
    resp = client.get("/")
    assert resp.status_code == 200
    data = resp.json()
    assert data["service"] == "Claim Shield Health Intake Chat"
    assert "version" in data


def test_health_endpoint(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["database"] is False


def test_metrics_endpoint(client):
    _init(client)
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "intake_sessions_started_total" in resp.text


class TestInit:
    def test_init_returns_menu(self, client):
        data = _init(client)
        assert data["current_step"]["id"] == "main_menu"
        assert data["current_step"]["kind"] == "choice"
        assert [o["value"] for o in data["current_step"]["options"]] == [
            "pricing", "verify_insurance", "admissions", "question",
        ]
        assert len(data["messages"]) == 2
        assert data["resumed"] is False

    def test_init_resumes_same_session(self, client):
        first = _init(client)
        second = _init(client)
        assert second["session_id"] == first["session_id"]
        assert second["resumed"] is True
        assert len(second["messages"]) == len(first["messages"])

    def test_short_token_rejected(self, client):
        resp = client.post("/api/v1/chat-sessions/init", json={"visitor_token": "abc"})
        assert resp.status_code == 422


class TestSubmit:
    def test_accepted_submission(self, client):
        sid = _init(client)["session_id"]
        resp = _submit(client, sid, "verify_insurance", "main_menu")
        assert resp.status_code == 200
        data = resp.json()
        assert data["accepted"] is True
        assert data["new_step_id"] == "vob_treatment_type"
        assert data["current_step"]["options"][0]["label"] == "Inpatient"

    def test_stale_submission(self, client):
        sid = _init(client)["session_id"]
        resp = _submit(client, sid, "jane@example.com", "contact_email")
        assert resp.status_code == 200
        data = resp.json()
        assert data["stale"] is True
        assert data["new_step_id"] == "main_menu"

    def test_replayed_request_is_stale(self, client):
        sid = _init(client)["session_id"]
        _submit(client, sid, "pricing", "main_menu")
        body = {"value": "private_pay", "expected_step_id": "pricing_payment_type"}

        first = client.post(f"/api/v1/chat-sessions/{sid}/submit", json=body).json()
        replay = client.post(f"/api/v1/chat-sessions/{sid}/submit", json=body).json()

        assert first["accepted"] is True
        assert replay["stale"] is True
        assert replay["accepted"] is False
        state = client.get(f"/api/v1/chat-sessions/{sid}").json()
        assert state["current_step"]["id"] == "pricing_treatment_type"
        assert "treatmentType" not in state["collected_data"]

    def test_expected_step_required(self, client):
        sid = _init(client)["session_id"]
        resp = client.post(f"/api/v1/chat-sessions/{sid}/submit", json={"value": "pricing"})
        assert resp.status_code == 422

    def test_unknown_session_404(self, client):
        resp = _submit(client, "no-such-session", "pricing", "main_menu")
        assert resp.status_code == 404

    def test_get_unknown_session_404(self, client):
        resp = client.get("/api/v1/chat-sessions/no-such-session")
        assert resp.status_code == 404

    def test_full_question_flow(self, client):
        sid = _init(client)["session_id"]
        steps = [
            ("main_menu", "question"),
            ("question_topic", "insurance"),
            ("question_text", "Is Aetna in network?"),
            ("question_name", "Jane Doe"),
            ("contact_email", "jane@example.com"),
            ("contact_phone", "555-123-4567"),
        ]
        for step_id, value in steps:
            data = _submit(client, sid, value, step_id).json()
            assert data["accepted"] is True, data

        assert data["done"] is True
        assert data["lead_id"]
        assert data["progress"] == 100

        state = client.get(f"/api/v1/chat-sessions/{sid}").json()
        assert state["status"] == "completed"
        assert state["lead_id"] == data["lead_id"]
        assert state["collected_data"]["phone"] == "(555) 123-4567"

    def test_invalid_phone_returns_guidance(self, client):
        sid = _init(client)["session_id"]
        for step_id, value in [
            ("main_menu", "question"),
            ("question_topic", "other"),
            ("question_text", "Do you offer detox?"),
            ("question_name", "Jane Doe"),
            ("contact_email", "jane@example.com"),
        ]:
            _submit(client, sid, value, step_id)

        data = _submit(client, sid, "12345", "contact_phone").json()
        assert data["accepted"] is False
        assert data["assistant_messages"] == ["Please enter a valid phone number."]
        assert data["current_step"]["id"] == "contact_phone"


@pytest.mark.parametrize("value", ["x" * 2001])
def test_oversized_value_rejected(client, value):
    sid = _init(client)["session_id"]
    resp = _submit(client, sid, value, "main_menu")
    assert resp.status_code == 422


def test_unknown_step_ids_share_one_metric_label(client):
    sid = _init(client)["session_id"]
    for i in range(5):
        data = _submit(client, sid, "pricing", f"bogus-step-{i}").json()
        assert data["stale"] is True

    text = client.get("/metrics").text
    assert "bogus-step-" not in text
    assert 'intake_submissions_total{step_id="unknown",outcome="stale"}' in text
