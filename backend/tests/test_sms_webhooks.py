"""
Twilio inbound SMS / WhatsApp webhook tests.

The endpoints always answer 200 with TwiML, whether or not the message could
be logged against a customer.
"""

import os
from unittest.mock import MagicMock, Mock, patch

import pytest

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "eyJhbGciOiJIUzI1NiJ9.eyJyb2xlIjoic2VydmljZSJ9.dGVzdA")

from fastapi.testclient import TestClient


@pytest.fixture()
def client():
    from crm.main import app
    return TestClient(app)


def _make_db(customer):
    customers = MagicMock()
    for method in ("select", "in_", "limit"):
        getattr(customers, method).return_value = customers
    customers.execute.return_value = Mock(data=[customer] if customer else [])

    communications = MagicMock()
    communications.insert.return_value.execute.side_effect = (
        lambda: Mock(data=[{"id": "comm-1", **communications.insert.call_args[0][0]}])
    )

    db = MagicMock()
    db.table.side_effect = lambda name: customers if name == "customers" else communications
    return db, customers, communications


def _twilio_form(**overrides):
    form = {
        "From": "+447123456789",
        "To": "+447700900001",
        "Body": "Is the role still open?",
        "MessageSid": "SMinbound1",
    }
    form.update(overrides)
    return form


class TestInboundSms:

    def test_known_customer_gets_received_row(self, client):
        db, customers, communications = _make_db({"id": "cust-1"})

        with patch("crm.services.customer_resolver.supabase_admin", db), \
             patch("crm.services.ledger.supabase_admin", db):
            response = client.post("/api/webhooks/twilio/sms", data=_twilio_form())

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/xml")
        assert "<Response><Message>Thank you for your message." in response.text

        row = communications.insert.call_args[0][0]
        assert row["customer_id"] == "cust-1"
        assert row["type"] == "sms"
        assert row["status"] == "received"
        assert row["content"] == "Is the role still open?"
        assert row["metadata"]["messageSid"] == "SMinbound1"

    def test_unknown_number_still_acknowledged(self, client):
        db, _, communications = _make_db(None)

        with patch("crm.services.customer_resolver.supabase_admin", db), \
             patch("crm.services.ledger.supabase_admin", db):
            response = client.post("/api/webhooks/twilio/sms", data=_twilio_form())

        assert response.status_code == 200
        assert "Thank you for your message." in response.text
        communications.insert.assert_not_called()

    def test_database_failure_still_acknowledged(self, client):
        db = MagicMock()
        db.table.side_effect = Exception("db down")

        with patch("crm.services.customer_resolver.supabase_admin", db), \
             patch("crm.services.ledger.supabase_admin", db):
            response = client.post("/api/webhooks/twilio/sms", data=_twilio_form())

        assert response.status_code == 200
        assert "Thank you for your message." in response.text

    def test_processing_error_returns_apology(self, client):
        with patch("crm.routers.webhooks.normalize_twilio", side_effect=RuntimeError("boom")):
            response = client.post("/api/webhooks/twilio/sms", data=_twilio_form())

        assert response.status_code == 200
        assert "Sorry, we couldn't process your message." in response.text


class TestInboundWhatsApp:

    def test_marker_stripped_before_lookup(self, client):
        db, customers, communications = _make_db({"id": "cust-1"})

        with patch("crm.services.customer_resolver.supabase_admin", db), \
             patch("crm.services.ledger.supabase_admin", db):
            response = client.post(
                "/api/webhooks/twilio/whatsapp",
                data=_twilio_form(From="whatsapp:+447123456789", To="whatsapp:+14155238886"),
            )

        assert response.status_code == 200
        assert "Thank you for your WhatsApp message." in response.text
        customers.in_.assert_called_once_with("phone", ["+447123456789", "447123456789"])
        assert communications.insert.call_args[0][0]["type"] == "whatsapp"

    def test_processing_error_returns_whatsapp_apology(self, client):
        with patch("crm.routers.webhooks.normalize_twilio", side_effect=RuntimeError("boom")):
            response = client.post("/api/webhooks/twilio/whatsapp", data=_twilio_form())

        assert response.status_code == 200
        assert "Sorry, we couldn't process your WhatsApp message." in response.text
