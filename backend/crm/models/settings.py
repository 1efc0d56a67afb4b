"""
Pydantic models for the persisted settings document and resolved provider
credentials.
"""

from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel


class CrmSettings(BaseModel):
    """
    The locally persisted key/value settings document.

    Only presence is ever checked; values are not validated for shape.
    Unknown keys are kept so a save never drops data written by a newer
    version of the settings screens.
    """
    model_config = {"extra": "allow"}

    company_name: Optional[str] = None

    # Email
    email_service: Optional[str] = None      # "sendgrid"
    email_method: Optional[str] = None       # "api" | "smtp"
    email_api_key: Optional[str] = None
    email_from_address: Optional[str] = None
    smtp_port: Optional[int] = None

    # SMS / WhatsApp (Twilio)
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_phone_number: Optional[str] = None
    whatsapp_phone_number: Optional[str] = None
    whatsapp_business_id: Optional[str] = None
    whatsapp_certificate: Optional[str] = None

    # Language model
    openai_api_key: Optional[str] = None

    # Webhooks
    webhook_secret: Optional[str] = None
    webhook_notification_email: Optional[str] = None
    email_webhook_enabled: Optional[bool] = None
    sms_webhook_enabled: Optional[bool] = None
    whatsapp_webhook_enabled: Optional[bool] = None


# Keys whose values are masked whenever settings leave the process
SECRET_SETTING_KEYS = (
    "email_api_key",
    "twilio_auth_token",
    "whatsapp_certificate",
    "openai_api_key",
    "webhook_secret",
)


class CredentialKind(str, Enum):
    """
    Discriminates how a Twilio-style identifier authenticates.

    ACCOUNT: account SID + auth token ("AC..." identifiers).
    API_KEY: API key SID + secret ("SK..." identifiers).
    """
    ACCOUNT = "account"
    API_KEY = "api_key"


class ProviderCredentials(BaseModel):
    """Resolved in memory for a single operation, never persisted."""

    provider: str
    identifier: str = ""
    secret: str = ""
    sender_address: str = ""
    kind: CredentialKind = CredentialKind.ACCOUNT
    account_sid: str = ""      # path segment for Twilio; equals identifier for ACCOUNT kind
    source: str = ""           # which layer supplied the identifier/secret
    is_fallback: bool = False

    @property
    def configured(self) -> bool:
        return bool(self.secret)

    @property
    def masked_identifier(self) -> str:
        return f"{self.identifier[:5]}..." if self.identifier else ""


class VerificationResult(BaseModel):
    success: bool
    message: str
    details: Optional[Dict[str, Any]] = None
