"""
Persisted settings document.

The settings screens write a single JSON document; the backend reads it on
every operation (no caching) so edits take effect without a restart.

Environment variables
---------------------
CRM_SETTINGS_PATH   Location of the document (default: crm_settings.json
                    in the working directory).
"""

import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from crm.models.settings import SECRET_SETTING_KEYS, CrmSettings

logger = logging.getLogger(__name__)

_DEFAULT_SETTINGS_PATH = "crm_settings.json"


def settings_path() -> Path:
    return Path(os.getenv("CRM_SETTINGS_PATH") or _DEFAULT_SETTINGS_PATH)


def load_settings() -> CrmSettings:
    """
    Read the settings document.

    A missing file is the normal first-run state and yields empty settings.
    An unreadable or malformed file is logged and also yields empty settings:
    callers then fall through to the built-in defaults.
    """
    path = settings_path()
    if not path.exists():
        return CrmSettings()

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning(f"Could not read settings document {str(path)!r}: {e}")
        return CrmSettings()

    if not isinstance(raw, dict):
        logger.warning(f"Settings document {str(path)!r} is not a JSON object; ignoring it")
        return CrmSettings()

    try:
        return CrmSettings.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"Settings document {str(path)!r} failed validation: {e}")
        return CrmSettings()


def save_settings(updates: dict[str, Any]) -> CrmSettings:
    """
    Merge `updates` into the stored document and write it back.

    Keys explicitly set to None are removed. Returns the merged settings.
    """
    current = load_settings().model_dump(exclude_none=True)
    for key, value in updates.items():
        if value is None:
            current.pop(key, None)
        else:
            current[key] = value

    merged = CrmSettings.model_validate(current)
    path = settings_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(merged.model_dump(exclude_none=True), indent=2),
        encoding="utf-8",
    )
    logger.info(f"Saved settings document {str(path)!r} ({len(current)} keys)")
    return merged


def masked_settings(settings: CrmSettings) -> dict[str, Any]:
    """Return the settings as a dict with secret values reduced to a prefix."""
    data = settings.model_dump(exclude_none=True)
    for key in SECRET_SETTING_KEYS:
        value = data.get(key)
        if value:
            data[key] = f"{str(value)[:5]}..."
    return data
