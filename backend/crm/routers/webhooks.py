"""
Provider webhook router.

Endpoints:
  POST /sendgrid/inbound   - SendGrid Inbound Parse (multipart email with resume)
  POST /twilio/sms         - Twilio inbound SMS (always 200 TwiML)
  POST /twilio/whatsapp    - Twilio inbound WhatsApp (always 200 TwiML)

Environment variables
---------------------
INBOUND_WEBHOOK_SECRET    Optional shared secret checked in X-Webhook-Secret.
                          When neither this nor the settings document's
                          webhook_secret is set, inbound email is accepted
                          without a secret.
DEFAULT_PHONE_REGION      Region used to normalise inbound numbers (e.g. GB).
"""

import hmac
import logging
import os
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse, Response

from crm.errors import CrmError
from crm.models.communication import Channel
from crm.services.credentials import CredentialResolver, get_credential_resolver
from crm.services.inbound_adapter import normalize_twilio, read_sendgrid_form
from crm.services.inbound_pipeline import log_inbound_text, process_inbound_email

logger = logging.getLogger(__name__)

router = APIRouter()

TWIML_CONTENT_TYPE = "application/xml"

_ACKNOWLEDGEMENTS = {
    Channel.SMS: "Thank you for your message. We'll get back to you soon.",
    Channel.WHATSAPP: "Thank you for your WhatsApp message. We'll get back to you soon.",
}
_APOLOGIES = {
    Channel.SMS: "Sorry, we couldn't process your message. Please try again later.",
    Channel.WHATSAPP: "Sorry, we couldn't process your WhatsApp message. Please try again later.",
}


def twiml_message(text: str) -> Response:
    body = (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f"<Response><Message>{text}</Message></Response>"
    )
    return Response(content=body, status_code=200, media_type=TWIML_CONTENT_TYPE)


# ---------------------------------------------------------------------------
# Webhook authentication dependency
# ---------------------------------------------------------------------------

def _verify_webhook_secret(
    x_webhook_secret: Optional[str] = Header(None),
    resolver: CredentialResolver = Depends(get_credential_resolver),
) -> None:
    """
    Reject the request when a secret is configured and the header does not
    match it. With no secret configured every request is accepted.
    """
    expected = resolver.webhook_secret()
    if not expected:
        return
    if not x_webhook_secret or not hmac.compare_digest(x_webhook_secret.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Invalid webhook secret")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/sendgrid/inbound")
async def receive_inbound_email(
    request: Request,
    _: None = Depends(_verify_webhook_secret),
    resolver: CredentialResolver = Depends(get_credential_resolver),
):
    """
    SendGrid Inbound Parse receiver.

    Returns 200 with the customer outcome, or 500 {success: false, message}
    when the email has no usable resume attachment or any step fails.
    """
    try:
        form = await request.form()
        email = await read_sendgrid_form(form)
        logger.info(
            f"Inbound email from {email.from_address!r} to {email.to_address!r}, "
            f"attachments={email.attachment_names}"
        )
        result = process_inbound_email(email, resolver)
    except (CrmError, ValueError) as exc:
        logger.error(f"Inbound email processing failed: {exc}")
        return JSONResponse(status_code=500, content={"success": False, "message": str(exc)})
    except Exception as exc:
        logger.exception(f"Unexpected error processing inbound email: {exc}")
        return JSONResponse(status_code=500, content={"success": False, "message": str(exc)})

    return {
        "success": True,
        "message": result.message,
        "customerId": result.resolved.customer.id,
        "customerCreated": result.resolved.created,
        "data": {
            "from": email.from_address,
            "to": email.to_address,
            "subject": email.subject,
            "attachments": email.attachment_names,
        },
    }


async def _acknowledge_text(request: Request, channel: Channel) -> Response:
    try:
        form = await request.form()
        message = normalize_twilio(form, channel)
        logger.info(f"Inbound {channel.value} from {message.from_number} ({message.message_sid})")
        log_inbound_text(message, os.getenv("DEFAULT_PHONE_REGION"))
    except Exception as exc:
        logger.error(f"Failed to process inbound {channel.value}: {exc}")
        return twiml_message(_APOLOGIES[channel])
    return twiml_message(_ACKNOWLEDGEMENTS[channel])


@router.post("/twilio/sms")
async def receive_sms(request: Request) -> Response:
    return await _acknowledge_text(request, Channel.SMS)


@router.post("/twilio/whatsapp")
async def receive_whatsapp(request: Request) -> Response:
    return await _acknowledge_text(request, Channel.WHATSAPP)
