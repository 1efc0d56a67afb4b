"""
Provider-agnostic inbound message models.

These models represent a normalized inbound message after provider-specific
fields have been stripped away. The pipeline works exclusively with these
models; only the adapter layer knows about SendGrid Inbound Parse or Twilio
form fields.
"""

from typing import Optional
from pydantic import BaseModel

from crm.models.communication import Channel


class InboundAttachment(BaseModel):
    """A single file part, already read to raw bytes."""

    filename: str
    content: bytes
    content_type: str

    @property
    def extension(self) -> str:
        name = self.filename.lower()
        return name[name.rfind("."):] if "." in name else ""


class InboundEmail(BaseModel):
    """
    Normalized inbound email.

    from_address / to_address are already resolved: the SMTP envelope wins
    over the display headers when the provider supplied one.
    """

    from_address: str
    to_address: str
    subject: str = ""
    text: str = ""
    attachments: list[InboundAttachment] = []

    @property
    def attachment_names(self) -> list[str]:
        return [a.filename for a in self.attachments]


class InboundTextMessage(BaseModel):
    """Normalized inbound SMS or WhatsApp message (Twilio form post)."""

    channel: Channel
    from_number: str
    to_number: Optional[str] = None
    body: str = ""
    message_sid: Optional[str] = None
