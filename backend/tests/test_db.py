"""
Database client configuration tests.

crm/db.py is executed in a fresh namespace so the shared module and its
client stay untouched.
"""

import runpy
from pathlib import Path
from unittest.mock import patch

import pytest

DB_MODULE = Path(__file__).resolve().parent.parent / "crm" / "db.py"


@pytest.fixture()
def no_dotenv():
    with patch("dotenv.load_dotenv"):
        yield


class TestDbConfiguration:

    def test_service_key_is_required(self, monkeypatch, no_dotenv):
        monkeypatch.setenv("SUPABASE_URL", "https://test.supabase.co")
        monkeypatch.delenv("SUPABASE_SERVICE_KEY", raising=False)
        monkeypatch.setenv("SUPABASE_KEY", "anon-key-only")

        with pytest.raises(ValueError, match="SUPABASE_SERVICE_KEY"):
            runpy.run_path(str(DB_MODULE))

    def test_only_the_admin_client_is_built(self, monkeypatch, no_dotenv):
        monkeypatch.setenv("SUPABASE_URL", "https://test.supabase.co")
        monkeypatch.setenv("SUPABASE_SERVICE_KEY", "service-key")
        monkeypatch.delenv("SUPABASE_KEY", raising=False)

        with patch("supabase.create_client") as mock_create:
            namespace = runpy.run_path(str(DB_MODULE))

        mock_create.assert_called_once_with("https://test.supabase.co", "service-key")
        assert namespace["supabase_admin"] is mock_create.return_value
        assert "supabase" not in namespace
