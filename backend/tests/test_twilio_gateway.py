"""
Unit tests for SMS / WhatsApp sending.

Twilio is mocked at the httpx layer and the ledger at the Supabase client,
so each test can assert exactly what was posted and exactly what was stored.
"""

import os
from unittest.mock import Mock, patch

import httpx
import pytest

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "eyJhbGciOiJIUzI1NiJ9.eyJyb2xlIjoic2VydmljZSJ9.dGVzdA")

from crm.models.communication import Channel, CommunicationStatus
from crm.services.credentials import BuiltinFallbackSource, CredentialResolver
from crm.services.twilio_gateway import messages_url, send_text_message


class StaticSource:

    def __init__(self, name, values):
        self.name = name
        self.values = values

    def lookup(self, key):
        return self.values.get(key)


TWILIO_ENV = {
    "twilio_account_sid": "AC1234567890abcdef",
    "twilio_auth_token": "auth-token",
    "twilio_phone_number": "+447700900001",
    "twilio_whatsapp_number": "+14155238886",
}


def _resolver(values=None):
    return CredentialResolver([StaticSource("environment", TWILIO_ENV if values is None else values)])


def _twilio_response(status_code=201, json_data=None):
    return httpx.Response(
        status_code,
        json=json_data if json_data is not None else {
            "sid": "SMabc123",
            "status": "queued",
            "num_segments": "1",
            "price": None,
        },
        request=httpx.Request("POST", "https://api.twilio.com"),
    )


@pytest.fixture()
def ledger_db():
    """Supabase admin client whose insert echoes the row back with an id."""
    with patch("crm.services.ledger.supabase_admin") as mock_sb:
        table = mock_sb.table.return_value
        table.insert.return_value.execute.side_effect = (
            lambda: Mock(data=[{"id": "comm-1", **table.insert.call_args[0][0]}])
        )
        yield table


@pytest.fixture(autouse=True)
def no_default_region(monkeypatch):
    monkeypatch.delenv("DEFAULT_PHONE_REGION", raising=False)


class TestSendSms:

    def test_accepted_message_is_recorded_once(self, ledger_db):
        with patch("crm.services.twilio_gateway.httpx.post") as mock_post:
            mock_post.return_value = _twilio_response()

            comm = send_text_message(Channel.SMS, "+44 7123 456789", "Hello Jane", "cust-1", _resolver())

        ledger_db.insert.assert_called_once()
        assert comm.id == "comm-1"
        assert comm.status == CommunicationStatus.SENT
        assert comm.type == Channel.SMS
        assert comm.content == "Hello Jane"
        assert comm.metadata["messageSid"] == "SMabc123"
        assert comm.metadata["simulated"] is False
        assert comm.metadata["to"] == "+447123456789"
        assert comm.metadata["from"] == "+447700900001"
        assert comm.metadata["twilioAccountSid"] == "AC123..."
        assert "error" not in comm.metadata

        url = mock_post.call_args[0][0]
        assert url.endswith("/Accounts/AC1234567890abcdef/Messages.json")
        assert mock_post.call_args.kwargs["data"] == {
            "To": "+447123456789",
            "From": "+447700900001",
            "Body": "Hello Jane",
        }
        assert mock_post.call_args.kwargs["auth"] == ("AC1234567890abcdef", "auth-token")

    def test_national_number_uses_default_region(self, ledger_db, monkeypatch):
        monkeypatch.setenv("DEFAULT_PHONE_REGION", "GB")
        with patch("crm.services.twilio_gateway.httpx.post") as mock_post:
            mock_post.return_value = _twilio_response()

            send_text_message(Channel.SMS, "07123 456789", "Hi", "cust-1", _resolver())

        assert mock_post.call_args.kwargs["data"]["To"] == "+447123456789"

    def test_unlisted_country_code_is_sent_unchanged(self, ledger_db):
        with patch("crm.services.twilio_gateway.httpx.post") as mock_post:
            mock_post.return_value = _twilio_response()

            comm = send_text_message(Channel.SMS, "+33 6 12 34 56 78", "Bonjour", "cust-1", _resolver())

        assert mock_post.call_args.kwargs["data"]["To"] == "+33612345678"
        assert comm.metadata["to"] == "+33612345678"

    def test_provider_rejection_becomes_simulated_send(self, ledger_db):
        with patch("crm.services.twilio_gateway.httpx.post") as mock_post:
            mock_post.return_value = _twilio_response(
                400, {"code": 21211, "message": "The 'To' number is not a valid phone number."}
            )

            comm = send_text_message(Channel.SMS, "+447123456789", "Hello", "cust-1", _resolver())

        ledger_db.insert.assert_called_once()
        assert comm.status == CommunicationStatus.SENT
        assert comm.metadata["simulated"] is True
        assert comm.metadata["messageSid"].startswith("SM")
        assert "not a valid phone number" in comm.metadata["error"]

    def test_network_failure_becomes_simulated_send(self, ledger_db):
        with patch("crm.services.twilio_gateway.httpx.post") as mock_post:
            mock_post.side_effect = httpx.ConnectTimeout("timed out")

            comm = send_text_message(Channel.SMS, "+447123456789", "Hello", "cust-1", _resolver())

        assert comm.status == CommunicationStatus.SENT
        assert comm.metadata["simulated"] is True
        assert "timed out" in comm.metadata["error"]

    def test_missing_credentials_never_call_twilio(self, ledger_db):
        with patch("crm.services.twilio_gateway.httpx.post") as mock_post:
            comm = send_text_message(Channel.SMS, "+447123456789", "Hello", "cust-1", _resolver({}))

        mock_post.assert_not_called()
        assert comm.metadata["simulated"] is True
        assert comm.metadata["error"] == "Twilio credentials not configured"

    def test_segments_estimated_from_body_length(self, ledger_db):
        with patch("crm.services.twilio_gateway.httpx.post") as mock_post:
            mock_post.return_value = _twilio_response(201, {"sid": "SMx", "status": "queued"})

            comm = send_text_message(Channel.SMS, "+447123456789", "x" * 161, "cust-1", _resolver())

        assert comm.metadata["segments"] == 2

    def test_ledger_failure_returns_placeholder(self):
        with patch("crm.services.ledger.supabase_admin") as mock_sb, \
             patch("crm.services.twilio_gateway.httpx.post") as mock_post:
            mock_sb.table.return_value.insert.return_value.execute.side_effect = Exception("db down")
            mock_post.return_value = _twilio_response()

            comm = send_text_message(Channel.SMS, "+447123456789", "Hello", "cust-1", _resolver())

        assert comm.id.startswith("mock-")
        assert comm.metadata["messageSid"] == "SMabc123"

    def test_empty_destination_rejected(self, ledger_db):
        with pytest.raises(ValueError):
            send_text_message(Channel.SMS, "n/a", "Hello", "cust-1", _resolver())
        ledger_db.insert.assert_not_called()

    def test_email_channel_rejected(self):
        with pytest.raises(ValueError):
            send_text_message(Channel.EMAIL, "+447123456789", "Hello", "cust-1", _resolver())


class TestSendWhatsApp:

    def test_addresses_carry_whatsapp_marker(self, ledger_db):
        with patch("crm.services.twilio_gateway.httpx.post") as mock_post:
            mock_post.return_value = _twilio_response()

            comm = send_text_message(Channel.WHATSAPP, "+447123456789", "Hola", "cust-1", _resolver())

        data = mock_post.call_args.kwargs["data"]
        assert data["To"] == "whatsapp:+447123456789"
        assert data["From"] == "whatsapp:+14155238886"
        assert comm.type == Channel.WHATSAPP
        assert comm.metadata["to"] == "whatsapp:+447123456789"

    def test_marker_not_doubled(self, ledger_db):
        with patch("crm.services.twilio_gateway.httpx.post") as mock_post:
            mock_post.return_value = _twilio_response()

            send_text_message(Channel.WHATSAPP, "whatsapp:+447123456789", "Hola", "cust-1", _resolver())

        assert mock_post.call_args.kwargs["data"]["To"] == "whatsapp:+447123456789"


class TestMessagesUrl:

    def test_api_key_credentials_post_under_account(self):
        resolver = _resolver({
            "twilio_api_key_sid": "SKkey",
            "twilio_api_key_secret": "key-secret",
            "twilio_account_sid": "ACparent",
            "twilio_phone_number": "+447700900001",
        })

        assert messages_url(resolver.resolve_twilio()).endswith("/Accounts/ACparent/Messages.json")

    def test_api_key_without_account_sid_posts_under_key(self):
        resolver = CredentialResolver([
            StaticSource("environment", {
                "twilio_api_key_sid": "SKrealkey123",
                "twilio_api_key_secret": "key-secret",
                "twilio_phone_number": "+447700900001",
            }),
            BuiltinFallbackSource(),
        ])

        assert messages_url(resolver.resolve_twilio()).endswith("/Accounts/SKrealkey123/Messages.json")
