"""
Inbound pipeline unit tests: attachment ordering, customer patch building,
and best-effort logging of inbound texts.

Storage, the language model and customer resolution are mocked at the
pipeline's own imports.
"""

import os
from unittest.mock import patch

os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "eyJhbGciOiJIUzI1NiJ9.eyJyb2xlIjoic2VydmljZSJ9.dGVzdA")

from crm.models.communication import Channel, CommunicationStatus
from crm.models.customer import Customer, ExtractedResumeInfo, ResolvedCustomer
from crm.models.inbound import InboundAttachment, InboundEmail, InboundTextMessage
from crm.services.credentials import CredentialResolver
from crm.services.inbound_pipeline import (
    creation_notes,
    log_inbound_text,
    process_inbound_email,
)
from crm.services.resume_extractor import StructuredExtraction, StructuredOutcome


class StaticSource:

    def __init__(self, name, values):
        self.name = name
        self.values = values

    def lookup(self, key):
        return self.values.get(key)


def _resolved(created=True):
    return ResolvedCustomer(
        customer=Customer(id="cust-1", firstname="Jane", lastname="Doe", email="jane.doe@example.com"),
        created=created,
    )


def _email(*filenames):
    return InboundEmail(
        from_address="jane.doe@example.com",
        to_address="careers@acme.test",
        subject="CV",
        text="Attached.",
        attachments=[
            InboundAttachment(filename=name, content=f"{name} text".encode(), content_type="text/plain")
            for name in filenames
        ],
    )


class TestProcessInboundEmail:

    def test_last_attachment_wins(self):
        extractions = [
            StructuredExtraction(
                outcome=StructuredOutcome.EXTRACTED,
                info=ExtractedResumeInfo(email="first@example.com", firstname="First"),
            ),
            StructuredExtraction(
                outcome=StructuredOutcome.EXTRACTED,
                info=ExtractedResumeInfo(email="second@example.com", firstname="Second"),
            ),
        ]

        with patch("crm.services.inbound_pipeline.upload_customer_file") as mock_upload, \
             patch("crm.services.inbound_pipeline.extract_resume_info", side_effect=extractions), \
             patch("crm.services.inbound_pipeline.resolve_customer", return_value=_resolved()) as mock_resolve, \
             patch("crm.services.inbound_pipeline.record_communication") as mock_record:
            mock_upload.side_effect = lambda content, name, ctype: f"https://cdn.example.com/{name}"

            result = process_inbound_email(
                _email("a.txt", "b.txt"),
                CredentialResolver([StaticSource("settings", {})]),
            )

        assert [p.attachment.filename for p in result.processed] == ["a.txt", "b.txt"]
        assert mock_resolve.call_args[0][0] == "second@example.com"
        patch_arg = mock_resolve.call_args[0][1]
        assert patch_arg.firstname == "Second"
        assert patch_arg.resume_url == "https://cdn.example.com/b.txt"
        assert mock_resolve.call_args.kwargs["source"] == "Email: jane.doe@example.com"

        mock_record.assert_called_once()
        args = mock_record.call_args[0]
        assert args[1] == Channel.EMAIL
        assert args[3] == CommunicationStatus.RECEIVED
        assert args[4]["attachments"] == ["a.txt", "b.txt"]
        assert result.message == "Customer created successfully"

    def test_empty_extraction_keeps_resume_data_unset(self):
        with patch("crm.services.inbound_pipeline.upload_customer_file", return_value="https://cdn.example.com/cv.txt"), \
             patch("crm.services.inbound_pipeline.extract_resume_info") as mock_extract, \
             patch("crm.services.inbound_pipeline.resolve_customer", return_value=_resolved(False)) as mock_resolve, \
             patch("crm.services.inbound_pipeline.record_communication"):
            mock_extract.return_value = StructuredExtraction(outcome=StructuredOutcome.EMPTY)

            result = process_inbound_email(_email("cv.txt"), CredentialResolver([StaticSource("settings", {})]))

        assert mock_resolve.call_args[0][0] == "jane.doe@example.com"
        assert mock_resolve.call_args[0][1].resume_data is None
        assert result.message == "Customer updated successfully"

    def test_notes_describe_the_email(self):
        assert creation_notes(_email()) == "Created from email attachment.\nSubject: CV\nBody: Attached."


class TestLogInboundText:

    def _message(self, from_number="+447123456789"):
        return InboundTextMessage(channel=Channel.SMS, from_number=from_number, body="Hi", message_sid="SM1")

    def test_known_number_is_recorded(self):
        with patch("crm.services.inbound_pipeline.find_customer_by_phone", return_value={"id": "cust-1"}), \
             patch("crm.services.inbound_pipeline.record_communication") as mock_record:
            assert log_inbound_text(self._message()) is True

        args = mock_record.call_args[0]
        assert args[0] == "cust-1"
        assert args[3] == CommunicationStatus.RECEIVED

    def test_national_number_uses_region(self):
        with patch("crm.services.inbound_pipeline.find_customer_by_phone", return_value=None) as mock_find:
            assert log_inbound_text(self._message("07123 456789"), "GB") is False

        mock_find.assert_called_once_with("+447123456789")

    def test_errors_are_swallowed(self):
        with patch("crm.services.inbound_pipeline.find_customer_by_phone", side_effect=Exception("db down")):
            assert log_inbound_text(self._message()) is False

    def test_empty_number_is_ignored(self):
        with patch("crm.services.inbound_pipeline.find_customer_by_phone") as mock_find:
            assert log_inbound_text(self._message("")) is False
        mock_find.assert_not_called()
