"""
Provider credential resolution.

Credentials come from an ordered list of CredentialSource layers; the first
layer holding a non-empty value wins:

  1. EnvironmentSource      - deployment configuration (env vars / .env)
  2. SettingsDocumentSource - the locally persisted settings document
  3. BuiltinFallbackSource  - documented demo defaults (INSECURE, demo only)

Nothing is memoised: every resolve_* call re-reads every layer so a changed
environment or settings document applies to the next request.

Identifier/secret pairs are always taken from the same layer, so a key SID
from the environment is never combined with a token from the settings file.

Environment variables
---------------------
TWILIO_API_KEY_SID / TWILIO_API_KEY_SECRET   API-key style Twilio credentials
TWILIO_ACCOUNT_SID / TWILIO_AUTH_TOKEN       Account style Twilio credentials
TWILIO_PHONE_NUMBER                          SMS sender number
TWILIO_WHATSAPP_NUMBER                       WhatsApp sender (default: SMS sender)
SENDGRID_API_KEY                             SendGrid key (Web API + SMTP relay)
SENDGRID_FROM_EMAIL / SENDGRID_FROM_NAME     Email sender
EMAIL_METHOD                                 "api" (default) or "smtp"
SMTP_PORT                                    SMTP relay port (default 587)
OPENAI_API_KEY                               Structured extraction key
INBOUND_WEBHOOK_SECRET                       Optional inbound email webhook secret
"""

import logging
import os
from typing import Callable, Iterable, Optional, Protocol

import httpx

from crm.errors import ProviderTransportError
from crm.models.communication import Channel, EmailMethod
from crm.models.settings import (
    CredentialKind,
    CrmSettings,
    ProviderCredentials,
    VerificationResult,
)
from crm.services.settings_store import load_settings

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"
SENDGRID_API_BASE = "https://api.sendgrid.com/v3"
SMTP_RELAY_HOST = "smtp.sendgrid.net"
SMTP_RELAY_USERNAME = "apikey"  # SendGrid's SMTP relay always uses this username

VERIFY_TIMEOUT_SECONDS = 10.0

# Identifier prefix families. The two families are disjoint.
_KIND_PREFIXES: dict[CredentialKind, tuple[str, ...]] = {
    CredentialKind.API_KEY: ("SK", "SG."),
    CredentialKind.ACCOUNT: ("AC",),
}


def classify_credential_kind(identifier: str) -> CredentialKind:
    """
    Map an identifier to its credential kind by prefix.

    "SK..." (Twilio API key SID) and "SG." (SendGrid key) are API-key style;
    "AC..." (Twilio account SID) and anything unrecognised are account style.
    """
    for kind, prefixes in _KIND_PREFIXES.items():
        if identifier.startswith(prefixes):
            return kind
    return CredentialKind.ACCOUNT


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------

class CredentialSource(Protocol):
    """One configuration layer. lookup() returns None when the key is absent."""

    name: str

    def lookup(self, key: str) -> Optional[str]:
        ...


class EnvironmentSource:
    """Deployment configuration read from environment variables."""

    name = "environment"

    _ENV_VARS = {
        "twilio_api_key_sid": "TWILIO_API_KEY_SID",
        "twilio_api_key_secret": "TWILIO_API_KEY_SECRET",
        "twilio_account_sid": "TWILIO_ACCOUNT_SID",
        "twilio_auth_token": "TWILIO_AUTH_TOKEN",
        "twilio_phone_number": "TWILIO_PHONE_NUMBER",
        "twilio_whatsapp_number": "TWILIO_WHATSAPP_NUMBER",
        "sendgrid_api_key": "SENDGRID_API_KEY",
        "sendgrid_from_email": "SENDGRID_FROM_EMAIL",
        "sendgrid_from_name": "SENDGRID_FROM_NAME",
        "email_method": "EMAIL_METHOD",
        "smtp_port": "SMTP_PORT",
        "openai_api_key": "OPENAI_API_KEY",
        "webhook_secret": "INBOUND_WEBHOOK_SECRET",
    }

    def lookup(self, key: str) -> Optional[str]:
        env_var = self._ENV_VARS.get(key)
        if env_var is None:
            return None
        return os.getenv(env_var, "").strip() or None


class SettingsDocumentSource:
    """The persisted settings document, re-read on every lookup."""

    name = "settings"

    _SETTING_KEYS = {
        "twilio_account_sid": "twilio_account_sid",
        "twilio_auth_token": "twilio_auth_token",
        "twilio_phone_number": "twilio_phone_number",
        "twilio_whatsapp_number": "whatsapp_phone_number",
        "sendgrid_api_key": "email_api_key",
        "sendgrid_from_email": "email_from_address",
        "sendgrid_from_name": "company_name",
        "email_method": "email_method",
        "smtp_port": "smtp_port",
        "openai_api_key": "openai_api_key",
        "webhook_secret": "webhook_secret",
    }

    def __init__(self, loader: Callable[[], CrmSettings] = load_settings):
        self._loader = loader

    def lookup(self, key: str) -> Optional[str]:
        attr = self._SETTING_KEYS.get(key)
        if attr is None:
            return None
        value = getattr(self._loader(), attr, None)
        if value is None:
            return None
        return str(value).strip() or None


class BuiltinFallbackSource:
    """
    Built-in defaults so a fresh install can demo the send flows.

    INSECURE: the Twilio values are placeholders, not working credentials.
    Sends using them fail at the provider and take the simulated-send path.
    """

    name = "builtin"

    _DEFAULTS = {
        "twilio_account_sid": "AC00000000000000000000000000000000",
        "twilio_auth_token": "demo-auth-token-not-a-secret",
        "twilio_phone_number": "+447700900000",
        "sendgrid_from_email": "crm@example.com",
        "sendgrid_from_name": "CRM System",
        "email_method": EmailMethod.API.value,
        "smtp_port": "587",
    }

    def lookup(self, key: str) -> Optional[str]:
        return self._DEFAULTS.get(key)


def default_sources() -> list[CredentialSource]:
    return [EnvironmentSource(), SettingsDocumentSource(), BuiltinFallbackSource()]


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class CredentialResolver:
    """Resolves provider credentials across ordered CredentialSource layers."""

    def __init__(self, sources: Optional[Iterable[CredentialSource]] = None):
        self.sources: list[CredentialSource] = (
            list(sources) if sources is not None else default_sources()
        )

    def value(self, key: str) -> tuple[Optional[str], str]:
        """Return (value, source_name) for the first layer that has `key`."""
        for source in self.sources:
            found = source.lookup(key)
            if found:
                return found, source.name
        return None, ""

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        found, _ = self.value(key)
        return found if found is not None else default

    def _pair(
        self, candidates: tuple[tuple[str, str], ...]
    ) -> tuple[str, str, str]:
        """
        Return (identifier, secret, source_name) from the first layer holding
        both halves of any candidate key pair.
        """
        for source in self.sources:
            for id_key, secret_key in candidates:
                identifier = source.lookup(id_key)
                secret = source.lookup(secret_key)
                if identifier and secret:
                    return identifier, secret, source.name
        return "", "", ""

    def _account_sid_for_key(self, key_source: str) -> Optional[str]:
        """
        Account SID to address API-key requests to: the key's own layer first,
        then any other configured layer. The builtin demo account is never
        paired with a real key.
        """
        layers = sorted(self.sources, key=lambda s: s.name != key_source)
        for source in layers:
            if source.name == BuiltinFallbackSource.name:
                continue
            found = source.lookup("twilio_account_sid")
            if found:
                return found
        return None

    # -- Twilio -------------------------------------------------------------

    def resolve_twilio(self, channel: Channel = Channel.SMS) -> ProviderCredentials:
        identifier, secret, source = self._pair((
            ("twilio_api_key_sid", "twilio_api_key_secret"),
            ("twilio_account_sid", "twilio_auth_token"),
        ))
        sender = self.get("twilio_phone_number", "")
        if channel == Channel.WHATSAPP:
            sender = self.get("twilio_whatsapp_number") or sender

        account_sid = identifier
        if classify_credential_kind(identifier) == CredentialKind.API_KEY:
            account_sid = self._account_sid_for_key(source) or identifier

        return ProviderCredentials(
            provider="twilio",
            identifier=identifier,
            secret=secret,
            account_sid=account_sid,
            sender_address=sender or "",
            kind=classify_credential_kind(identifier),
            source=source,
            is_fallback=source == BuiltinFallbackSource.name,
        )

    # -- SendGrid -----------------------------------------------------------

    def resolve_sendgrid(self) -> ProviderCredentials:
        api_key, source = self.value("sendgrid_api_key")
        return ProviderCredentials(
            provider="sendgrid",
            identifier=api_key or "",
            secret=api_key or "",
            sender_address=self.get("sendgrid_from_email", ""),
            kind=classify_credential_kind(api_key or ""),
            source=source,
        )

    def sender_name(self) -> str:
        return self.get("sendgrid_from_name", "CRM System")

    def email_method(self) -> EmailMethod:
        raw = (self.get("email_method", EmailMethod.API.value) or "").lower()
        try:
            return EmailMethod(raw)
        except ValueError:
            logger.warning(f"Unknown email method {raw!r}; using the Web API")
            return EmailMethod.API

    def smtp_port(self) -> int:
        raw = self.get("smtp_port", "587")
        try:
            return int(raw)
        except (TypeError, ValueError):
            return 587

    # -- Misc ---------------------------------------------------------------

    def openai_api_key(self) -> Optional[str]:
        return self.get("openai_api_key")

    def webhook_secret(self) -> Optional[str]:
        return self.get("webhook_secret")

    # -- Verification -------------------------------------------------------

    def verify(self, channel: Channel) -> VerificationResult:
        """
        Confirm the credentials for `channel` are accepted by the provider.

        An invalid or missing credential is reported as success=False. Only a
        failure to reach the provider raises ProviderTransportError.
        """
        if channel in (Channel.SMS, Channel.WHATSAPP):
            return verify_twilio(self.resolve_twilio(channel))
        if self.email_method() == EmailMethod.SMTP:
            return verify_smtp(self.resolve_sendgrid(), self.smtp_port(), self.sender_name())
        return verify_sendgrid(self.resolve_sendgrid())


def get_credential_resolver() -> CredentialResolver:
    """FastAPI dependency: a resolver over the default layers."""
    return CredentialResolver()


# ---------------------------------------------------------------------------
# Verification calls
# ---------------------------------------------------------------------------

def _error_message(response: httpx.Response) -> tuple[str, dict]:
    try:
        data = response.json()
    except ValueError:
        data = {}
    if not isinstance(data, dict):
        data = {"body": data}
    message = data.get("message") or response.reason_phrase or str(response.status_code)
    return str(message), data


def verify_twilio(creds: ProviderCredentials) -> VerificationResult:
    """
    Read-only Twilio call: the account resource for account credentials,
    the key list for API-key credentials.
    """
    if not creds.identifier or not creds.secret:
        return VerificationResult(success=False, message="Twilio credentials not configured")

    is_api_key = creds.kind == CredentialKind.API_KEY
    if is_api_key:
        url = f"{TWILIO_API_BASE}/Accounts/{creds.account_sid or creds.identifier}/Keys.json"
    else:
        url = f"{TWILIO_API_BASE}/Accounts/{creds.identifier}.json"

    try:
        response = httpx.get(
            url,
            auth=(creds.identifier, creds.secret),
            timeout=VERIFY_TIMEOUT_SECONDS,
        )
    except httpx.HTTPError as e:
        logger.error(f"Twilio verification request failed: {e}")
        raise ProviderTransportError("Twilio", str(e)) from e

    if not response.is_success:
        message, data = _error_message(response)
        return VerificationResult(
            success=False,
            message=f"Twilio API error: {message}",
            details=data,
        )

    data = response.json()
    identifier = f"{creds.identifier[:5]}...{creds.identifier[-5:]}"
    if is_api_key:
        return VerificationResult(
            success=True,
            message="Twilio API Key connection successful",
            details={
                "credentialType": "API Key",
                "identifier": identifier,
                "phoneNumber": creds.sender_address or "Not configured",
                "capabilities": ["SMS", "MMS"],
                "region": data.get("region") or "Global",
                "status": "Active",
                "source": creds.source,
            },
        )
    return VerificationResult(
        success=True,
        message="Twilio Account SID connection successful",
        details={
            "credentialType": "Account SID",
            "identifier": identifier,
            "phoneNumber": creds.sender_address or "Not configured",
            "capabilities": ["SMS", "MMS", "Voice"],
            "status": data.get("status") or "Active",
            "source": creds.source,
        },
    )


def verify_sendgrid(creds: ProviderCredentials) -> VerificationResult:
    """Read the key's scopes and require mail.send."""
    if not creds.secret:
        return VerificationResult(success=False, message="SendGrid API key not configured")

    try:
        response = httpx.get(
            f"{SENDGRID_API_BASE}/scopes",
            headers={"Authorization": f"Bearer {creds.secret}"},
            timeout=VERIFY_TIMEOUT_SECONDS,
        )
    except httpx.HTTPError as e:
        logger.error(f"SendGrid verification request failed: {e}")
        raise ProviderTransportError("SendGrid", str(e)) from e

    if not response.is_success:
        message, data = _error_message(response)
        return VerificationResult(success=False, message=f"SendGrid API error: {message}")

    scopes = response.json().get("scopes") or []
    has_mail_send = "mail.send" in scopes
    if not has_mail_send:
        return VerificationResult(
            success=False,
            message="SendGrid API key does not have mail.send permission",
            details={"scopes": scopes},
        )
    return VerificationResult(
        success=True,
        message="SendGrid connection successful",
        details={"scopes": scopes, "hasMailSend": has_mail_send},
    )


def verify_smtp(
    creds: ProviderCredentials, port: int, from_name: str
) -> VerificationResult:
    """SMTP relay check is configuration-only; no connection is opened."""
    if not creds.secret:
        return VerificationResult(success=False, message="SMTP password (API key) not configured")
    return VerificationResult(
        success=True,
        message="SMTP relay configured",
        details={
            "server": SMTP_RELAY_HOST,
            "port": port,
            "username": SMTP_RELAY_USERNAME,
            "fromEmail": creds.sender_address,
            "fromName": from_name,
        },
    )
