"""
Domain exceptions for the ingestion pipeline and the messaging gateway.

Unsupported document formats and failed structured extraction are *not*
exceptions: they are tagged results (see services.document_text and
services.resume_extractor) that flow through the pipeline as data.
"""

from typing import Optional


class CrmError(Exception):
    """Base class for every error raised by this backend's services."""


class NoAttachmentError(CrmError):
    """Inbound email carried no file parts at all."""

    def __init__(self, message: str = "No attachments found"):
        super().__init__(message)


class NoSupportedAttachmentError(CrmError):
    """Inbound email carried files, but none with a resume-like extension."""

    def __init__(self, message: str = "No supported attachments found"):
        super().__init__(message)


class CredentialsMissingError(CrmError):
    """A provider call needs credentials that no configuration layer supplied."""

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"{provider} credentials not configured")


class ProviderTransportError(CrmError):
    """
    A provider (Twilio, SendGrid, OpenAI, a storage URL) could not be reached,
    timed out, or answered with a non-2xx status.
    """

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[dict] = None,
    ):
        self.provider = provider
        self.status_code = status_code
        self.details = details or {}
        super().__init__(f"{provider} API error: {message}")


class PersistenceError(CrmError):
    """A Supabase read or write failed, or returned no row."""

    def __init__(self, table: str, message: str):
        self.table = table
        super().__init__(f"Database error on {table}: {message}")


class StorageUploadError(CrmError):
    """Uploading an attachment to Supabase Storage failed."""
