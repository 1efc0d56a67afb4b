"""
SMS and WhatsApp sending through the Twilio REST API.

Every call produces exactly one ledger row with status="sent":

  - provider accepted the message  -> row carries the real Twilio response
  - provider unreachable / non-2xx -> simulated send: a locally generated
    "SM..." SID, metadata.simulated=True and metadata.error
  - credentials missing            -> simulated send, as above

If the ledger insert itself fails, an in-memory placeholder row is returned
instead of raising. This is the only send path that tolerates a failed
ledger write.
"""

import logging
import math
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from crm.errors import PersistenceError, ProviderTransportError
from crm.models.communication import Channel, Communication, CommunicationStatus
from crm.models.settings import ProviderCredentials
from crm.services.credentials import TWILIO_API_BASE, CredentialResolver
from crm.services.ledger import (
    build_communication_row,
    insert_communication,
    placeholder_communication,
)
from crm.services.phone import normalize_phone, with_channel_marker

logger = logging.getLogger(__name__)

SEND_TIMEOUT_SECONDS = 15.0
SMS_SEGMENT_LENGTH = 160
SIMULATED_PRICE = "$0.0075"


def messages_url(creds: ProviderCredentials) -> str:
    return f"{TWILIO_API_BASE}/Accounts/{creds.account_sid or creds.identifier}/Messages.json"


def post_message(
    creds: ProviderCredentials,
    to_address: str,
    from_address: str,
    body: str,
) -> dict[str, Any]:
    """
    Form-encoded POST to Messages.json with Basic auth.

    Raises:
        ProviderTransportError: the request failed, timed out, or Twilio
        answered non-2xx.
    """
    try:
        response = httpx.post(
            messages_url(creds),
            data={"To": to_address, "From": from_address, "Body": body},
            auth=(creds.identifier, creds.secret),
            timeout=SEND_TIMEOUT_SECONDS,
        )
    except httpx.HTTPError as e:
        raise ProviderTransportError("Twilio", str(e)) from e

    try:
        data = response.json()
    except ValueError:
        data = {}

    if not response.is_success:
        message = data.get("message") if isinstance(data, dict) else None
        raise ProviderTransportError(
            "Twilio",
            message or response.reason_phrase or str(response.status_code),
            status_code=response.status_code,
            details=data if isinstance(data, dict) else {},
        )

    return data if isinstance(data, dict) else {}


def simulated_response() -> dict[str, Any]:
    """Locally generated stand-in for a Twilio message resource."""
    return {
        "sid": f"SM{uuid.uuid4().hex}",
        "status": "sent",
        "dateCreated": datetime.now(timezone.utc).isoformat(),
        "price": SIMULATED_PRICE,
        "numSegments": "1",
        "simulated": True,
    }


def _segments(twilio_response: dict[str, Any], body: str) -> Any:
    reported = twilio_response.get("num_segments") or twilio_response.get("numSegments")
    return reported or math.ceil(len(body) / SMS_SEGMENT_LENGTH)


def build_text_metadata(
    creds: ProviderCredentials,
    to_address: str,
    from_address: str,
    body: str,
    twilio_response: dict[str, Any],
    error: Optional[str] = None,
) -> dict[str, Any]:
    metadata = {
        "from": from_address,
        "to": to_address,
        "twilioAccountSid": creds.masked_identifier,
        "credentialKind": creds.kind.value,
        "messageSid": twilio_response.get("sid"),
        "segments": _segments(twilio_response, body),
        "price": twilio_response.get("price"),
        "status": twilio_response.get("status") or "sent",
        "twilioResponse": twilio_response,
        "simulated": bool(twilio_response.get("simulated")),
    }
    if error:
        metadata["error"] = error
    return metadata


def send_text_message(
    channel: Channel,
    to: str,
    body: str,
    customer_id: str,
    resolver: Optional[CredentialResolver] = None,
) -> Communication:
    """
    Send an SMS or WhatsApp message and record it in the ledger.

    Never raises for provider problems; see the module docstring. Raises
    ValueError only when `to` contains no dialable digits.
    """
    if channel not in (Channel.SMS, Channel.WHATSAPP):
        raise ValueError(f"Twilio cannot send over channel {channel.value!r}")

    resolver = resolver or CredentialResolver()
    creds = resolver.resolve_twilio(channel)
    whatsapp = channel == Channel.WHATSAPP

    to_number = normalize_phone(to, os.getenv("DEFAULT_PHONE_REGION"))
    if not to_number:
        raise ValueError("Destination phone number is empty")

    to_address = with_channel_marker(to_number, whatsapp)
    from_address = with_channel_marker(creds.sender_address, whatsapp)

    if creds.is_fallback:
        logger.warning("Using built-in fallback Twilio credentials; the send will be simulated if rejected")
    logger.info(f"Sending {channel.value} to {to_number} using Twilio {creds.kind.value} {creds.masked_identifier}")

    error: Optional[str] = None
    if not (creds.identifier and creds.secret and creds.sender_address):
        error = "Twilio credentials not configured"
        twilio_response = simulated_response()
    else:
        try:
            twilio_response = post_message(creds, to_address, from_address, body)
            logger.info(f"Twilio accepted {channel.value} {twilio_response.get('sid')}")
        except ProviderTransportError as e:
            error = str(e)
            twilio_response = simulated_response()

    if error:
        logger.error(f"{channel.value} send failed ({error}); recording simulated send {twilio_response['sid']}")

    row = build_communication_row(
        customer_id,
        channel,
        body,
        CommunicationStatus.SENT,
        build_text_metadata(creds, to_address, from_address, body, twilio_response, error),
    )

    try:
        return insert_communication(row)
    except PersistenceError as e:
        logger.error(f"Could not record {channel.value} for customer {customer_id!r}: {e}")
        return placeholder_communication(row)
