"""
Unit tests for Supabase Storage service.
Tests attachment upload and public URL generation.
"""

import pytest
import os
from unittest.mock import patch

# Mock environment variables before importing app modules
os.environ.setdefault('SUPABASE_URL', 'https://test.supabase.co')
os.environ.setdefault('SUPABASE_SERVICE_KEY', 'eyJhbGciOiJIUzI1NiJ9.eyJyb2xlIjoic2VydmljZSJ9.dGVzdA')

from crm.errors import StorageUploadError
from crm.services.storage import (
    CUSTOMER_FILES_BUCKET,
    build_resume_path,
    upload_customer_file,
)


class TestBuildResumePath:

    def test_timestamp_prefix(self):
        assert build_resume_path("cv.pdf", now_ms=1700000000000) == "resumes/1700000000000-cv.pdf"

    def test_unsafe_characters_are_replaced(self):
        path = build_resume_path("Jane Doe (final)/cv.pdf", now_ms=1)
        assert path == "resumes/1-Jane_Doe__final__cv.pdf"

    def test_empty_filename(self):
        assert build_resume_path("", now_ms=1) == "resumes/1-attachment"


class TestUploadCustomerFile:
    """Test attachment upload to the customer-files bucket."""

    def test_successful_upload_returns_public_url(self):
        """Uploading should store the bytes and return the bucket's public URL."""
        with patch('crm.services.storage.supabase_admin') as mock_supabase:
            bucket = mock_supabase.storage.from_.return_value
            bucket.get_public_url.return_value = "https://test.supabase.co/storage/v1/object/public/customer-files/resumes/1-cv.pdf"

            url = upload_customer_file(b"%PDF-1.4", "cv.pdf", "application/pdf")

        assert url.endswith("/customer-files/resumes/1-cv.pdf")
        mock_supabase.storage.from_.assert_called_once_with(CUSTOMER_FILES_BUCKET)

        path, content, options = bucket.upload.call_args[0]
        assert path.startswith("resumes/")
        assert path.endswith("-cv.pdf")
        assert content == b"%PDF-1.4"
        assert options["content-type"] == "application/pdf"
        assert options["upsert"] == "true"
        bucket.get_public_url.assert_called_once_with(path)

    def test_upload_failure_raises(self):
        with patch('crm.services.storage.supabase_admin') as mock_supabase:
            mock_supabase.storage.from_.return_value.upload.side_effect = Exception("Bucket not found")

            with pytest.raises(StorageUploadError, match="Bucket not found"):
                upload_customer_file(b"data", "cv.pdf", "application/pdf")

    def test_missing_public_url_raises(self):
        with patch('crm.services.storage.supabase_admin') as mock_supabase:
            mock_supabase.storage.from_.return_value.get_public_url.return_value = ""

            with pytest.raises(StorageUploadError, match="no public URL"):
                upload_customer_file(b"data", "cv.pdf", "application/pdf")
