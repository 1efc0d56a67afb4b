"""
Inbound webhook adapter service.

Normalizes provider-specific inbound webhook payloads into the
provider-agnostic models in crm.models.inbound.

Supported payloads:
  - SendGrid Inbound Parse  (multipart/form-data email)
  - Twilio messaging        (application/x-www-form-urlencoded SMS / WhatsApp)

SendGrid Inbound Parse field assumptions
----------------------------------------
  from          str   - display header, e.g. "Jane Doe <jane.doe@example.com>"
  to            str   - display header (may be a comma-separated list)
  subject       str   - subject line
  text          str   - plain-text body
  envelope      str   - JSON {"from": "...", "to": ["..."]}: the SMTP envelope,
                        authoritative over the display headers
  <file parts>        - one multipart file part per attachment
                        (field names attachment1, attachment2, ...)

Twilio field assumptions
------------------------
  From, To, Body, MessageSid. WhatsApp numbers carry a "whatsapp:" prefix.

If either provider changes its schema, only this file needs updating.
"""

import json
import logging
import re
from typing import Iterable, Mapping, Optional

from starlette.datastructures import UploadFile

from crm.errors import NoAttachmentError, NoSupportedAttachmentError
from crm.models.communication import Channel
from crm.models.inbound import InboundAttachment, InboundEmail, InboundTextMessage
from crm.services.document_text import DOCX_CONTENT_TYPE, PDF_CONTENT_TYPE, TEXT_CONTENT_TYPE
from crm.services.phone import strip_channel_marker

logger = logging.getLogger(__name__)

RESUME_EXTENSIONS = (".pdf", ".docx", ".txt")

# Used when a file part arrives without a specific content type
_EXTENSION_CONTENT_TYPES = {
    ".pdf": PDF_CONTENT_TYPE,
    ".docx": DOCX_CONTENT_TYPE,
    ".txt": TEXT_CONTENT_TYPE,
}
_GENERIC_CONTENT_TYPE = "application/octet-stream"


# ---------------------------------------------------------------------------
# SendGrid Inbound Parse
# ---------------------------------------------------------------------------

def _bare_address(header_value: str) -> str:
    """'Jane Doe <jane@example.com>, other@x' -> 'jane@example.com'"""
    match = re.search(r"<([^>]+)>", header_value)
    if match:
        return match.group(1).strip()
    return header_value.split(",")[0].strip()


def _parse_envelope(raw: Optional[str]) -> dict:
    if not raw:
        return {}
    try:
        envelope = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring malformed envelope field: {raw[:100]!r}")
        return {}
    return envelope if isinstance(envelope, dict) else {}


def resolve_addresses(
    from_header: str,
    to_header: str,
    envelope_raw: Optional[str],
) -> tuple[str, str]:
    """
    Return (from_address, to_address). Envelope values win over headers.
    """
    envelope = _parse_envelope(envelope_raw)

    from_address = envelope.get("from") or _bare_address(from_header or "")

    envelope_to = envelope.get("to")
    if isinstance(envelope_to, list):
        envelope_to = envelope_to[0] if envelope_to else None
    to_address = envelope_to or _bare_address(to_header or "")

    return str(from_address), str(to_address)


def effective_content_type(filename: str, declared: Optional[str]) -> str:
    """
    The declared type of a file part, or one inferred from a resume
    extension when the sender declared nothing specific.
    """
    if declared and declared != _GENERIC_CONTENT_TYPE:
        return declared
    name = filename.lower()
    extension = name[name.rfind("."):] if "." in name else ""
    return _EXTENSION_CONTENT_TYPES.get(extension, declared or _GENERIC_CONTENT_TYPE)


def normalize_sendgrid(
    fields: Mapping[str, str],
    attachments: Iterable[InboundAttachment],
) -> InboundEmail:
    """
    Convert SendGrid Inbound Parse text fields plus already-read file parts
    into an InboundEmail.
    """
    from_address, to_address = resolve_addresses(
        fields.get("from", ""),
        fields.get("to", ""),
        fields.get("envelope"),
    )
    return InboundEmail(
        from_address=from_address,
        to_address=to_address,
        subject=fields.get("subject") or "",
        text=fields.get("text") or "",
        attachments=list(attachments),
    )


async def read_sendgrid_form(form) -> InboundEmail:
    """
    Read a parsed multipart form (Starlette FormData) into an InboundEmail.

    Every file part is read into memory, whatever its field name.
    """
    fields: dict[str, str] = {}
    attachments: list[InboundAttachment] = []

    for key, value in form.multi_items():
        if isinstance(value, UploadFile):
            content = await value.read()
            filename = value.filename or key
            attachments.append(
                InboundAttachment(
                    filename=filename,
                    content=content,
                    content_type=effective_content_type(filename, value.content_type),
                )
            )
        else:
            fields[key] = value

    return normalize_sendgrid(fields, attachments)


def select_resume_attachments(email: InboundEmail) -> list[InboundAttachment]:
    """
    Keep only resume-like attachments (.pdf, .docx, .txt).

    Raises:
        NoAttachmentError: the email carried no attachments at all.
        NoSupportedAttachmentError: none of the attachments is resume-like.
    """
    if not email.attachments:
        raise NoAttachmentError()

    supported = [a for a in email.attachments if a.extension in RESUME_EXTENSIONS]
    if not supported:
        logger.info(
            f"Inbound email from {email.from_address!r} had no resume-like "
            f"attachments: {email.attachment_names}"
        )
        raise NoSupportedAttachmentError()

    return supported


# ---------------------------------------------------------------------------
# Twilio SMS / WhatsApp
# ---------------------------------------------------------------------------

def normalize_twilio(form: Mapping[str, str], channel: Channel) -> InboundTextMessage:
    """
    Convert a Twilio messaging webhook form into an InboundTextMessage.

    The "whatsapp:" channel marker is removed from both numbers.
    """
    to_number = form.get("To")
    return InboundTextMessage(
        channel=channel,
        from_number=strip_channel_marker(form.get("From") or ""),
        to_number=strip_channel_marker(to_number) if to_number else None,
        body=form.get("Body") or "",
        message_sid=form.get("MessageSid"),
    )
