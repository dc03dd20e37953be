"""
Tests for the POST /sms-webhook endpoint.

Tests cover:
- Full dialogue over HTTP with TwiML replies
- Missing fields (400)
- Twilio signature checking (401)
- Internal errors (500)
- CORS preflight
"""

import xml.etree.ElementTree as ET

import pytest
from fastapi.testclient import TestClient
from twilio.request_validator import RequestValidator

from app import models
from app.config import settings
from app.main import app, get_clock

from conftest import FixedClock, SATURDAY_10AM, TUESDAY_10AM


PHONE = "+15555550123"
WEBHOOK_URL = "http://testserver/sms-webhook"


def reply_text(response) -> str:
    """Extract the <Message> text from a TwiML response."""
    root = ET.fromstring(response.content)
    assert root.tag == "Response"
    return root.find("Message").text


@pytest.fixture
def fixed_clock():
    return FixedClock(TUESDAY_10AM)


@pytest.fixture(scope="function")
def client(seeded_db, fixed_clock):
    """Test client over a seeded database and a fixed clock."""
    app.dependency_overrides[get_clock] = lambda: fixed_clock
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def send(client, body: str, phone: str = PHONE):
    return client.post("/sms-webhook", data={"From": phone, "Body": body})


class TestWebhookDialogue:
    """Test the dialogue end to end."""

    def test_first_contact_returns_twiml(self, client):
        response = send(client, "Acme Roofing")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/xml")
        assert response.headers["access-control-allow-origin"] == "*"
        assert "Hello Acme Roofing!" in reply_text(response)

    def test_full_dialogue_delivers_pin(self, client, seeded_db):
        send(client, "Acme Roofing")

        confirm = reply_text(send(client, "B2G South end"))
        assert "Building B" in confirm
        assert "B2G" in confirm
        assert "South" in confirm

        delivered = reply_text(send(client, "yes"))
        assert "4821" in delivered

        conversation = seeded_db.query(models.Conversation).filter_by(phone_number=PHONE).one()
        assert conversation.state == "completed"
        assert conversation.pin_delivered_at is not None

    def test_weekend_confirmation(self, client, fixed_clock, seeded_db):
        send(client, "Acme Roofing")
        send(client, "B2G South end")
        fixed_clock.now = SATURDAY_10AM

        notice = reply_text(send(client, "yes"))

        assert "SERVICE HOURS NOTICE" in notice
        assert "4821" not in notice
        conversation = seeded_db.query(models.Conversation).filter_by(phone_number=PHONE).one()
        assert conversation.state == "confirming"

    def test_rejected_company_persists_nothing(self, client, seeded_db):
        response = send(client, "asdfasdf")

        assert response.status_code == 200
        assert reply_text(response) == "Please provide a valid company name to request access."
        assert seeded_db.query(models.Conversation).count() == 0
        assert seeded_db.query(models.ConversationMessage).count() == 0

    def test_reply_text_is_xml_escaped(self, client):
        response = send(client, "Smith & Sons <Roof>")

        assert b"&amp;" in response.content
        assert b"&lt;Roof&gt;" in response.content
        assert "Hello Smith & Sons <Roof>!" in reply_text(response)

    def test_turn_outcome_is_counted(self, client):
        send(client, "Acme Roofing")

        metrics = client.get("/metrics").text
        assert 'conversation_turns_total{outcome="conversation_started"}' in metrics


class TestWebhookMissingFields:
    """Test 400 responses for incomplete payloads."""

    @pytest.mark.parametrize("data", [
        {"From": PHONE},
        {"Body": "Acme Roofing"},
        {"From": PHONE, "Body": ""},
        {"From": "", "Body": "Acme Roofing"},
        {"From": PHONE, "Body": "   "},
        {},
    ])
    def test_missing_fields(self, client, seeded_db, data):
        response = client.post("/sms-webhook", data=data)

        assert response.status_code == 400
        assert response.json() == {"error": "Missing required fields: From and Body"}
        assert seeded_db.query(models.Conversation).count() == 0


class TestWebhookSignature:
    """Test Twilio signature checking when an auth token is configured."""

    @pytest.fixture(autouse=True)
    def auth_token(self, monkeypatch):
        monkeypatch.setattr(settings, "TWILIO_AUTH_TOKEN", "twilio-test-token")
        return "twilio-test-token"

    def test_valid_signature(self, client, auth_token):
        params = {"From": PHONE, "Body": "Acme Roofing"}
        signature = RequestValidator(auth_token).compute_signature(WEBHOOK_URL, params)

        response = client.post("/sms-webhook", data=params, headers={"X-Twilio-Signature": signature})

        assert response.status_code == 200

    def test_missing_signature(self, client, seeded_db):
        response = send(client, "Acme Roofing")

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid signature"}
        assert seeded_db.query(models.Conversation).count() == 0

    def test_signature_for_different_body(self, client):
        signature = RequestValidator("twilio-test-token").compute_signature(
            WEBHOOK_URL, {"From": PHONE, "Body": "Other Co"}
        )

        response = client.post(
            "/sms-webhook",
            data={"From": PHONE, "Body": "Acme Roofing"},
            headers={"X-Twilio-Signature": signature},
        )

        assert response.status_code == 401

    def test_signature_with_wrong_token(self, client):
        params = {"From": PHONE, "Body": "Acme Roofing"}
        signature = RequestValidator("wrong-token").compute_signature(WEBHOOK_URL, params)

        response = client.post("/sms-webhook", data=params, headers={"X-Twilio-Signature": signature})

        assert response.status_code == 401


class TestWebhookErrors:
    """Test 500 responses for internal failures."""

    def test_internal_error_returns_json(self, client, monkeypatch):
        def broken_process_inbound(*args, **kwargs):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr("app.main.process_inbound", broken_process_inbound)

        response = send(client, "Acme Roofing")

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error", "details": "database unavailable"}


class TestWebhookPreflight:
    """Test CORS preflight handling."""

    def test_options_returns_cors_headers(self, client):
        response = client.options("/sms-webhook")

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"
        assert "content-type" in response.headers["access-control-allow-headers"]
