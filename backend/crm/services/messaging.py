"""
Channel dispatch for outbound messages.

send() is the single entry point the rest of the backend uses: it picks the
gateway for the channel and returns the ledger row. The send_*_request()
helpers add first-contact handling for the HTTP API: when no customer_id is
given, the recipient is resolved (and created as a lead when unknown).
"""

import logging
import os
from typing import Optional

from crm.models.communication import (
    Channel,
    Communication,
    EmailMessage,
    SendEmailRequest,
    SendResult,
    SendTextRequest,
)
from crm.models.customer import CustomerPatch
from crm.services.credentials import CredentialResolver
from crm.services.customer_resolver import resolve_customer
from crm.services.email_gateway import send_email
from crm.services.phone import normalize_phone
from crm.services.twilio_gateway import send_text_message

logger = logging.getLogger(__name__)


def send(
    channel: Channel,
    to: str,
    body: str,
    customer_id: str,
    subject: str = "",
    resolver: Optional[CredentialResolver] = None,
) -> Communication:
    """Send one message over `channel` and return its Communication row."""
    resolver = resolver or CredentialResolver()
    if channel == Channel.EMAIL:
        message = EmailMessage(to=to, subject=subject, body=body)
        return send_email(message, customer_id, resolver).communication
    return send_text_message(channel, to, body, customer_id, resolver)


def send_email_request(
    request: SendEmailRequest,
    resolver: Optional[CredentialResolver] = None,
) -> SendResult:
    customer_id = request.customer_id
    created = False
    if not customer_id:
        resolved = resolve_customer(
            request.to,
            sender_email=request.to,
            source="Outbound email",
        )
        customer_id = resolved.customer.id
        created = resolved.created

    delivery = send_email(request, customer_id, resolver or CredentialResolver())
    return SendResult(
        message="Email sent successfully",
        communication=delivery.communication,
        customer_created=created,
        provider_response=delivery.provider_response,
    )


def send_text_request(
    channel: Channel,
    request: SendTextRequest,
    resolver: Optional[CredentialResolver] = None,
) -> SendResult:
    """
    SMS / WhatsApp send. Without a customer_id the customer is resolved by
    `request.email`, recording the destination number as their phone.

    Raises:
        ValueError: neither customer_id nor email was given.
    """
    customer_id = request.customer_id
    created = False
    if not customer_id:
        if not request.email:
            raise ValueError("customer_id or email is required")
        phone = normalize_phone(request.to, os.getenv("DEFAULT_PHONE_REGION"))
        resolved = resolve_customer(
            request.email,
            CustomerPatch(phone=phone or None),
            sender_email=request.email,
            source=f"Outbound {channel.value}",
        )
        customer_id = resolved.customer.id
        created = resolved.created

    communication = send_text_message(
        channel, request.to, request.body, customer_id, resolver or CredentialResolver()
    )
    simulated = bool(communication.metadata.get("simulated"))
    label = "WhatsApp message" if channel == Channel.WHATSAPP else "SMS"
    return SendResult(
        message=f"{label} sent (simulated)" if simulated else f"{label} sent successfully",
        communication=communication,
        customer_created=created,
        provider_response=communication.metadata.get("twilioResponse"),
    )
