"""
Supabase Storage service for customer files (inbound resume attachments).
Handles upload and public URL generation.
"""

import logging
import re
import time

from crm.db import supabase_admin
from crm.errors import StorageUploadError

logger = logging.getLogger(__name__)

CUSTOMER_FILES_BUCKET = "customer-files"
RESUME_PREFIX = "resumes"


def build_resume_path(filename: str, now_ms: int | None = None) -> str:
    """
    Storage path: resumes/{epoch_millis}-{sanitized_filename}

    The timestamp keeps two uploads of "cv.pdf" from overwriting each other.
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    sanitized = re.sub(r"[^\w\-.]", "_", filename) or "attachment"
    return f"{RESUME_PREFIX}/{now_ms}-{sanitized}"


def upload_customer_file(
    file_content: bytes,
    filename: str,
    content_type: str,
) -> str:
    """
    Upload an attachment to the public customer-files bucket.

    Uses upsert so a retried webhook delivery does not fail on an existing
    object.

    Args:
        file_content: Binary content of the file
        filename: Original filename from the email
        content_type: Declared MIME type of the file part

    Returns:
        Public URL of the stored object.

    Raises:
        StorageUploadError: If the upload fails or no URL can be produced
    """
    storage_path = build_resume_path(filename)
    bucket = supabase_admin.storage.from_(CUSTOMER_FILES_BUCKET)

    try:
        bucket.upload(
            storage_path,
            file_content,
            {
                "content-type": content_type,
                "upsert": "true",
            },
        )
        public_url = bucket.get_public_url(storage_path)
    except Exception as e:
        raise StorageUploadError(f"Failed to upload file to storage: {str(e)}") from e

    if not public_url:
        raise StorageUploadError("Failed to upload file into storage: no public URL returned")

    logger.info(f"Uploaded {filename!r} to {CUSTOMER_FILES_BUCKET}/{storage_path}")
    return public_url
