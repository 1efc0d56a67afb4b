"""
Administrative messaging API.

Endpoints:
  POST /messages/email                       - send an email
  POST /messages/sms                         - send an SMS
  POST /messages/whatsapp                    - send a WhatsApp message
  GET  /customers/{customer_id}/communications - a customer's ledger, newest first
  POST /providers/{channel}/verify           - check provider credentials
  GET  /settings                             - settings document (secrets masked)
  PUT  /settings                             - merge and save settings

Failures are returned as {success: false, message} for the admin screens to
display.
"""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from crm.errors import (
    CredentialsMissingError,
    CrmError,
    PersistenceError,
    ProviderTransportError,
)
from crm.models.communication import Channel, SendEmailRequest, SendTextRequest
from crm.models.settings import SECRET_SETTING_KEYS
from crm.services.credentials import CredentialResolver, get_credential_resolver
from crm.services.ledger import list_customer_communications
from crm.services.messaging import send_email_request, send_text_request
from crm.services.settings_store import load_settings, masked_settings, save_settings

logger = logging.getLogger(__name__)

router = APIRouter()

_ERROR_STATUS = (
    (CredentialsMissingError, 400),
    (ProviderTransportError, 502),
    (PersistenceError, 500),
    (ValueError, 400),
)


def _error_response(exc: Exception) -> JSONResponse:
    status_code = 500
    for exc_type, code in _ERROR_STATUS:
        if isinstance(exc, exc_type):
            status_code = code
            break
    return JSONResponse(status_code=status_code, content={"success": False, "message": str(exc)})


@router.post("/messages/email")
async def send_email_message(
    request: SendEmailRequest,
    resolver: CredentialResolver = Depends(get_credential_resolver),
):
    try:
        result = send_email_request(request, resolver)
    except (CrmError, ValueError) as exc:
        logger.error(f"Email to {request.to!r} failed: {exc}")
        return _error_response(exc)
    return result.model_dump()


async def _send_text(channel: Channel, request: SendTextRequest, resolver: CredentialResolver):
    try:
        result = send_text_request(channel, request, resolver)
    except (CrmError, ValueError) as exc:
        logger.error(f"{channel.value} to {request.to!r} failed: {exc}")
        return _error_response(exc)
    return result.model_dump()


@router.post("/messages/sms")
async def send_sms_message(
    request: SendTextRequest,
    resolver: CredentialResolver = Depends(get_credential_resolver),
):
    return await _send_text(Channel.SMS, request, resolver)


@router.post("/messages/whatsapp")
async def send_whatsapp_message(
    request: SendTextRequest,
    resolver: CredentialResolver = Depends(get_credential_resolver),
):
    return await _send_text(Channel.WHATSAPP, request, resolver)


@router.get("/customers/{customer_id}/communications")
async def get_customer_communications(customer_id: str):
    try:
        communications = list_customer_communications(customer_id)
    except PersistenceError as exc:
        logger.error(f"Failed to list communications for {customer_id!r}: {exc}")
        return _error_response(exc)
    return [c.model_dump() for c in communications]


@router.post("/providers/{channel}/verify")
async def verify_provider(
    channel: Channel,
    resolver: CredentialResolver = Depends(get_credential_resolver),
):
    """
    An invalid credential is a normal 200 {success: false}; only failing to
    reach the provider is an error response.
    """
    try:
        result = resolver.verify(channel)
    except ProviderTransportError as exc:
        return _error_response(exc)
    return result.model_dump()


@router.get("/settings")
async def get_settings():
    return masked_settings(load_settings())


@router.put("/settings")
async def update_settings(updates: dict[str, Any] = Body(...)):
    """
    Merge `updates` into the settings document. Secret values echoed back in
    their masked form ("abcde...") are ignored rather than saved.
    """
    current = load_settings().model_dump()
    filtered = {}
    for key, value in updates.items():
        if (
            key in SECRET_SETTING_KEYS
            and isinstance(value, str)
            and value.endswith("...")
            and current.get(key)
            and str(current[key]).startswith(value[:-3])
        ):
            continue
        filtered[key] = value

    try:
        saved = save_settings(filtered)
    except (OSError, ValueError) as exc:
        logger.error(f"Failed to save settings: {exc}")
        return JSONResponse(status_code=500, content={"success": False, "message": str(exc)})
    return {"success": True, "settings": masked_settings(saved)}
