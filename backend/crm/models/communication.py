"""
Pydantic models for the communication ledger and outbound send requests.
"""

from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class Channel(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    WHATSAPP = "whatsapp"


class CommunicationStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    RECEIVED = "received"


class EmailMethod(str, Enum):
    API = "api"
    SMTP = "smtp"


class Communication(BaseModel):
    """
    One ledger row: a single inbound or outbound message attempt.

    Rows are never updated after insert. A failed attempt is its own row
    with status="failed".
    """
    model_config = {"from_attributes": True, "extra": "ignore"}

    id: str
    customer_id: str
    type: Channel
    content: str
    sent_at: str
    status: CommunicationStatus
    metadata: Dict[str, Any] = {}


# ---------------------------------------------------------------------------
# Outbound request bodies
# ---------------------------------------------------------------------------

class EmailAttachment(BaseModel):
    """
    Outbound attachment. content is base64, either raw or as a data URL
    ("data:application/pdf;base64,JVBERi0...").
    """
    filename: str
    content: str
    content_type: str = Field(default="application/octet-stream", alias="contentType")

    model_config = {"populate_by_name": True}


class EmailMessage(BaseModel):
    to: str
    subject: str
    body: str
    cc: Optional[List[str]] = None
    bcc: Optional[List[str]] = None
    reply_to: Optional[str] = Field(default=None, alias="replyTo")
    template: Optional[str] = None
    attachments: Optional[List[EmailAttachment]] = None

    model_config = {"populate_by_name": True}


class SendEmailRequest(EmailMessage):
    """
    Body for POST /api/messages/email.

    When customer_id is omitted the recipient address is resolved (and a
    lead created when unknown).
    """
    customer_id: Optional[str] = None


class SendTextRequest(BaseModel):
    """
    Body for POST /api/messages/sms and /api/messages/whatsapp.

    customer_id wins; otherwise email is used to find-or-create the customer
    and the destination number is recorded on the customer as its phone.
    """
    to: str
    body: str
    customer_id: Optional[str] = None
    email: Optional[str] = None


class SendResult(BaseModel):
    success: bool = True
    message: str
    communication: Communication
    customer_created: bool = False
    provider_response: Optional[Dict[str, Any]] = None
