"""
Inbound email pipeline.

  attachments -> storage -> text extraction -> structured extraction
              -> customer find-or-create -> ledger ("received")

Resume attachments are processed one at a time, in order. The customer
record reflects only the last processed attachment.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from crm.models.communication import Channel, CommunicationStatus
from crm.models.customer import CustomerPatch, ResolvedCustomer
from crm.models.inbound import InboundAttachment, InboundEmail, InboundTextMessage
from crm.services.credentials import CredentialResolver
from crm.services.customer_resolver import find_customer_by_phone, resolve_customer
from crm.services.document_text import TextExtraction, extract_text
from crm.services.inbound_adapter import select_resume_attachments
from crm.services.ledger import record_communication
from crm.services.phone import normalize_phone
from crm.services.resume_extractor import (
    StructuredExtraction,
    StructuredOutcome,
    extract_resume_info,
)
from crm.services.storage import upload_customer_file

logger = logging.getLogger(__name__)


@dataclass
class ProcessedAttachment:
    attachment: InboundAttachment
    resume_url: str
    text: TextExtraction
    structured: StructuredExtraction


@dataclass
class InboundEmailResult:
    email: InboundEmail
    resolved: ResolvedCustomer
    processed: list[ProcessedAttachment] = field(default_factory=list)

    @property
    def message(self) -> str:
        if self.resolved.created:
            return "Customer created successfully"
        return "Customer updated successfully"


def process_attachment(
    attachment: InboundAttachment,
    openai_api_key: Optional[str],
) -> ProcessedAttachment:
    """Upload one attachment, extract its text, then its structured fields."""
    resume_url = upload_customer_file(
        attachment.content, attachment.filename, attachment.content_type
    )
    text = extract_text(attachment.content, attachment.content_type, resume_url)
    if not text.ok:
        logger.warning(f"{attachment.filename!r}: {text.outcome.value} ({text.error or text.text})")

    structured = extract_resume_info(text.text, api_key=openai_api_key)
    if structured.outcome != StructuredOutcome.EXTRACTED:
        logger.warning(f"{attachment.filename!r}: no resume data extracted ({structured.outcome.value})")

    return ProcessedAttachment(
        attachment=attachment,
        resume_url=resume_url,
        text=text,
        structured=structured,
    )


def build_customer_patch(processed: ProcessedAttachment) -> CustomerPatch:
    info = processed.structured.info
    resume_data = None
    if processed.structured.outcome == StructuredOutcome.EXTRACTED:
        resume_data = info.model_dump()
    return CustomerPatch(
        firstname=info.firstname,
        lastname=info.lastname,
        phone=info.phone,
        resume_url=processed.resume_url,
        resume_data=resume_data,
    )


def creation_notes(email: InboundEmail) -> str:
    return f"Created from email attachment.\nSubject: {email.subject}\nBody: {email.text}"


def process_inbound_email(
    email: InboundEmail,
    resolver: Optional[CredentialResolver] = None,
) -> InboundEmailResult:
    """
    Run the full pipeline for one normalized inbound email.

    Raises:
        NoAttachmentError / NoSupportedAttachmentError: before any side effect.
        StorageUploadError: an attachment could not be stored.
        PersistenceError: the customer or ledger write failed.
    """
    resume_attachments = select_resume_attachments(email)
    resolver = resolver or CredentialResolver()
    openai_api_key = resolver.openai_api_key()

    processed: list[ProcessedAttachment] = []
    for attachment in resume_attachments:
        processed.append(process_attachment(attachment, openai_api_key))

    last = processed[-1]
    lookup_email = last.structured.info.email or email.from_address
    resolved = resolve_customer(
        lookup_email,
        build_customer_patch(last),
        sender_email=email.from_address,
        source=f"Email: {email.from_address}",
        notes=creation_notes(email),
    )
    logger.info(
        f"Inbound email from {email.from_address!r} -> customer {resolved.customer.id!r} "
        f"({'created' if resolved.created else 'matched'})"
    )

    record_communication(
        resolved.customer.id,
        Channel.EMAIL,
        f"Subject: {email.subject}\n\n{email.text}",
        CommunicationStatus.RECEIVED,
        {
            "from": email.from_address,
            "to": email.to_address,
            "hasAttachments": True,
            "attachments": email.attachment_names,
            "isRead": False,
        },
    )

    return InboundEmailResult(email=email, resolved=resolved, processed=processed)


def log_inbound_text(message: InboundTextMessage, default_region: Optional[str] = None) -> bool:
    """
    Best effort: record an inbound SMS/WhatsApp against the customer with
    that phone number. Returns True when a row was written.

    Never raises; the webhook acknowledgement must not depend on this.
    """
    phone = normalize_phone(message.from_number, default_region)
    if not phone:
        return False
    try:
        customer = find_customer_by_phone(phone)
        if not customer:
            logger.info(f"Inbound {message.channel.value} from unknown number {phone}")
            return False
        record_communication(
            customer["id"],
            message.channel,
            message.body,
            CommunicationStatus.RECEIVED,
            {
                "from": message.from_number,
                "to": message.to_number,
                "messageSid": message.message_sid,
            },
        )
    except Exception as e:
        logger.error(f"Failed to log inbound {message.channel.value} from {phone}: {e}")
        return False
    return True
