"""
Document text extraction for inbound attachments.

extract_text() never raises. Every outcome is a TextExtraction whose .text is
always a string that can be forwarded to the structured extractor:

  EXTRACTED    the document's text
  UNSUPPORTED  a fixed "Unsupported file type" placeholder
  FAILED       a "Failed to extract text" placeholder

The placeholders are deliberately still "text": the language model sees
them and returns an empty record, so the pipeline carries on.
"""

import io
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import httpx
import pdfplumber
from docx import Document

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"
TEXT_CONTENT_TYPE = "text/plain"
DOCX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

SUPPORTED_CONTENT_TYPES = (PDF_CONTENT_TYPE, TEXT_CONTENT_TYPE, DOCX_CONTENT_TYPE)

FETCH_TIMEOUT_SECONDS = 30.0


class ExtractionOutcome(str, Enum):
    EXTRACTED = "extracted"
    UNSUPPORTED = "unsupported"
    FAILED = "failed"


@dataclass
class TextExtraction:
    outcome: ExtractionOutcome
    text: str
    content_type: str
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome == ExtractionOutcome.EXTRACTED


def unsupported_placeholder(content_type: str) -> str:
    return (
        f"Unsupported file type: {content_type}. "
        "Please upload a PDF, DOCX, or text file."
    )


def failed_placeholder(content_type: str) -> str:
    return f"Failed to extract text from {content_type} file."


def _base_content_type(content_type: str) -> str:
    """'text/plain; charset=utf-8' -> 'text/plain'."""
    return (content_type or "").split(";", 1)[0].strip().lower()


def extract_text_from_pdf_bytes(pdf_bytes: bytes) -> str:
    """
    Extract text from a PDF using pdfplumber.
    Handles tables and complex layouts.
    Does NOT support scanned PDFs (no OCR).
    """
    text_parts = []

    with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
        for i, page in enumerate(pdf.pages, start=1):
            page_text = page.extract_text()
            if page_text:
                text_parts.append(page_text)

            for table in page.extract_tables():
                rows = []
                for row in table or []:
                    cells = [str(cell).strip() if cell else "" for cell in row]
                    rows.append(" | ".join(cells))
                if rows:
                    text_parts.append(f"[Table on page {i}]\n" + "\n".join(rows))

    full_text = "\n\n".join(text_parts)

    if not full_text.strip():
        raise ValueError(
            "No text extracted from PDF. "
            "The PDF may be scanned/image-based (OCR not supported)."
        )

    return full_text


def fetch_stored_object(url: str) -> bytes:
    """Download a stored attachment by its public URL."""
    response = httpx.get(url, timeout=FETCH_TIMEOUT_SECONDS, follow_redirects=True)
    response.raise_for_status()
    return response.content


def extract_text_from_docx(docx_bytes: bytes) -> str:
    """Paragraph text followed by table cell text, one row per line."""
    document = Document(io.BytesIO(docx_bytes))
    parts = [p.text for p in document.paragraphs if p.text.strip()]
    for table in document.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells]
            if any(cells):
                parts.append(" | ".join(cells))
    return "\n".join(parts)


def extract_text(
    content: bytes,
    content_type: str,
    locator_url: Optional[str] = None,
) -> TextExtraction:
    """
    Convert a raw file to plain text according to its declared content type.

    PDFs are read back from storage through `locator_url` (the uploaded copy
    is the one we keep); when no URL is given the in-memory bytes are used.
    """
    base_type = _base_content_type(content_type)

    if base_type not in SUPPORTED_CONTENT_TYPES:
        logger.warning(f"Unsupported file type: {content_type!r}")
        return TextExtraction(
            outcome=ExtractionOutcome.UNSUPPORTED,
            text=unsupported_placeholder(content_type),
            content_type=content_type,
        )

    try:
        if base_type == PDF_CONTENT_TYPE:
            pdf_bytes = fetch_stored_object(locator_url) if locator_url else content
            text = extract_text_from_pdf_bytes(pdf_bytes)
        elif base_type == TEXT_CONTENT_TYPE:
            text = content.decode("utf-8", errors="replace")
        else:
            text = extract_text_from_docx(content)
    except Exception as e:
        logger.error(f"Error extracting text from {content_type} file: {e}")
        return TextExtraction(
            outcome=ExtractionOutcome.FAILED,
            text=failed_placeholder(content_type),
            content_type=content_type,
            error=str(e),
        )

    if not text.strip():
        return TextExtraction(
            outcome=ExtractionOutcome.FAILED,
            text=failed_placeholder(content_type),
            content_type=content_type,
            error="Document contains no text",
        )

    return TextExtraction(
        outcome=ExtractionOutcome.EXTRACTED,
        text=text,
        content_type=content_type,
    )
