"""
Structured resume extraction.

Sends document text to an OpenAI chat completion pinned to JSON-object mode
and returns a best-effort ExtractedResumeInfo. This is a best-effort
function: it never raises. Transport errors, timeouts, bad JSON and a
missing API key all produce a FAILED result with an empty record.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import openai

from crm.models.customer import ExtractedResumeInfo

logger = logging.getLogger(__name__)

# Model configuration
DEFAULT_MODEL = "gpt-4o"
MAX_INPUT_CHARS = 8000  # documents longer than this lose their tail
REQUEST_TIMEOUT_SECONDS = 60.0

SYSTEM_PROMPT = """\
You are a resume parser. Extract contact details and career information from the resume text you are given.

Extract these fields:
- firstname: The candidate's first name
- lastname: The candidate's last name
- email: The candidate's email address
- phone: The candidate's phone number
- skills: List of skills
- experience: List of positions, each {"company", "position", "startDate", "endDate", "description"}
- education: List of qualifications, each {"institution", "degree", "field", "graduationDate"}
- summary: A short professional summary

Email rules:
- Return the COMPLETE address (username@domain.tld). Never truncate or abbreviate any part.
- Look near labels such as "Email:", "E-mail:" or "Contact:".
- Decode obfuscated forms like "name (at) domain (dot) com".
- If several addresses appear, pick the most professional one.

Phone rules:
- Return the COMPLETE number. Never drop digits.
- Always include the country calling code, written as digits only: no "+", no spaces, no punctuation (e.g. 447123456789).
- UK: a leading 0 is the trunk prefix; replace it with 44 (07123 456789 -> 447123456789).
- Portugal: 00351 becomes 351; a 9-digit number starting with 9 gets 351 prepended.
- US/Canada: a 10-digit number gets 1 prepended.
- If several numbers appear, pick the most complete one.

Rules:
- If you are not certain about a field, leave it out or set it to null. Do not guess.
- skills, experience and education are always lists (possibly empty).

Respond with ONLY a JSON object with these keys:
{
  "firstname": string | null,
  "lastname": string | null,
  "email": string | null,
  "phone": string | null,
  "skills": [string],
  "experience": [object],
  "education": [object],
  "summary": string | null
}
"""

USER_PROMPT_PREFIX = (
    "Extract structured information from this resume text. Pay special "
    "attention to the COMPLETE email address and the FULL phone number with "
    "country code:\n\n"
)


class StructuredOutcome(str, Enum):
    EXTRACTED = "extracted"
    EMPTY = "empty"      # the call worked but the model found nothing
    FAILED = "failed"    # transport, parse or configuration failure


@dataclass
class StructuredExtraction:
    outcome: StructuredOutcome
    info: ExtractedResumeInfo = field(default_factory=ExtractedResumeInfo)
    error: Optional[str] = None
    token_usage: dict = field(default_factory=dict)


def truncate_for_model(text: str) -> str:
    return text[:MAX_INPUT_CHARS]


def build_messages(text: str) -> list[dict]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": USER_PROMPT_PREFIX + truncate_for_model(text)},
    ]


def extract_resume_info(
    text: str,
    api_key: Optional[str] = None,
    model: Optional[str] = None,
) -> StructuredExtraction:
    """
    Run one chat completion over `text` and parse the JSON object it returns.

    Never raises; see the module docstring.
    """
    if api_key is None:
        api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        logger.error("OpenAI API key not configured; skipping structured extraction")
        return StructuredExtraction(
            outcome=StructuredOutcome.FAILED,
            error="OpenAI API key not configured",
        )

    try:
        client = openai.OpenAI(api_key=api_key, timeout=REQUEST_TIMEOUT_SECONDS)
        response = client.chat.completions.create(
            model=model or os.getenv("OPENAI_MODEL", DEFAULT_MODEL),
            messages=build_messages(text),
            response_format={"type": "json_object"},
        )
        raw_text = response.choices[0].message.content or "{}"
        parsed = json.loads(raw_text)
        if not isinstance(parsed, dict):
            raise ValueError(f"expected a JSON object, got {type(parsed).__name__}")
        info = ExtractedResumeInfo.model_validate(parsed)
    except Exception as e:
        logger.error(f"Error calling OpenAI for resume extraction: {e}")
        return StructuredExtraction(outcome=StructuredOutcome.FAILED, error=str(e))

    token_usage = {}
    usage = getattr(response, "usage", None)
    if usage is not None:
        token_usage = {
            "input_tokens": usage.prompt_tokens,
            "output_tokens": usage.completion_tokens,
            "total_tokens": usage.total_tokens,
        }

    outcome = StructuredOutcome.EMPTY if info.is_empty() else StructuredOutcome.EXTRACTED
    return StructuredExtraction(outcome=outcome, info=info, token_usage=token_usage)
