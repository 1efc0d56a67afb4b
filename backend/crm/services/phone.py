"""
Phone number normalisation for Twilio addressing.

Output is E.164-like: a single leading "+" followed by digits only.
"""

import re
from typing import Optional

# region -> (calling code, national trunk prefix, national significant length)
_REGIONS: dict[str, tuple[str, Optional[str], Optional[int]]] = {
    "GB": ("44", "0", None),
    "PT": ("351", None, 9),
    "US": ("1", None, 10),
    "CA": ("1", None, 10),
}

_NON_DIAL = re.compile(r"[^\d+]")

WHATSAPP_PREFIX = "whatsapp:"


def normalize_phone(raw: str, default_region: Optional[str] = None) -> str:
    """
    Normalise a dialled number to "+<digits>".

    - Everything except digits and a leading "+" is stripped.
    - A number already starting with "+" keeps its digits unchanged.
    - "00" international prefix becomes "+".
    - With a default_region, national formats are rewritten: a trunk "0"
      (GB: 07123 456789 -> +447123456789) or a bare national number of the
      region's length (PT: 912345678 -> +351912345678, US: 10 digits -> +1...).
    - Anything else gets "+" prepended as-is.

    >>> normalize_phone("07123 456789", "GB")
    '+447123456789'
    >>> normalize_phone("+44 (0) 7123-456789")
    '+4407123456789'
    """
    cleaned = _NON_DIAL.sub("", raw or "").strip()
    if not cleaned:
        return ""

    if cleaned.startswith("+"):
        return "+" + cleaned[1:].replace("+", "")

    digits = cleaned.replace("+", "")
    if digits.startswith("00"):
        return "+" + digits[2:]

    region = (default_region or "").upper()
    if region in _REGIONS:
        code, trunk, national_length = _REGIONS[region]
        if trunk and digits.startswith(trunk):
            return f"+{code}{digits[len(trunk):]}"
        if national_length and len(digits) == national_length:
            return f"+{code}{digits}"

    return "+" + digits


def with_channel_marker(number: str, whatsapp: bool) -> str:
    """Wrap a number in Twilio's WhatsApp address form when needed."""
    if whatsapp and not number.startswith(WHATSAPP_PREFIX):
        return f"{WHATSAPP_PREFIX}{number}"
    return number


def strip_channel_marker(address: str) -> str:
    if address.startswith(WHATSAPP_PREFIX):
        return address[len(WHATSAPP_PREFIX):]
    return address
