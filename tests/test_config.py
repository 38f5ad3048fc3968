"""Tests for configuration management."""

import pytest
from pydantic import ValidationError

from edugrade.config import CREDENTIAL_ENV_VARS, Settings, get_settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Start every test without credentials or a .env file."""
    monkeypatch.chdir(tmp_path)
    for name in CREDENTIAL_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    for name in ("HISTORY_BACKEND", "SUPABASE_URL", "SUPABASE_KEY", "MODEL_NAME"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestSettings:
    """Test Settings class validation and loading."""

    def test_defaults_without_env(self):
        """Test that Settings loads with no environment at all."""
        settings = Settings()

        assert settings.gemini_api_key is None
        assert settings.model_name == "gemini-3-flash-preview"
        assert settings.max_document_bytes == 4 * 1024 * 1024
        assert settings.encode_concurrency == 4
        assert settings.history_backend == "file"
        assert settings.history_limit == 50
        assert settings.data_dir == ".edugrade"

    def test_gemini_api_key_from_env(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "  test-api-key  ")

        settings = Settings()

        assert settings.gemini_api_key == "test-api-key"

    def test_google_api_key_fallback(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_API_KEY", "google-key")

        assert Settings().gemini_api_key == "google-key"

    def test_api_key_fallback(self, monkeypatch):
        monkeypatch.setenv("API_KEY", "plain-key")

        assert Settings().gemini_api_key == "plain-key"

    def test_gemini_api_key_takes_precedence(self, monkeypatch):
        monkeypatch.setenv("API_KEY", "plain-key")
        monkeypatch.setenv("GOOGLE_API_KEY", "google-key")
        monkeypatch.setenv("GEMINI_API_KEY", "gemini-key")

        assert Settings().gemini_api_key == "gemini-key"

    def test_whitespace_only_api_key_is_unset(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "   ")

        assert Settings().gemini_api_key is None

    def test_api_key_read_from_dotenv(self, tmp_path):
        (tmp_path / ".env").write_text("GEMINI_API_KEY=dotenv-key\n", encoding="utf-8")

        assert Settings().gemini_api_key == "dotenv-key"

    def test_custom_model_name(self, monkeypatch):
        monkeypatch.setenv("MODEL_NAME", "gemini-3-pro-preview")

        assert Settings().model_name == "gemini-3-pro-preview"

    def test_invalid_history_backend_raises_error(self, monkeypatch):
        monkeypatch.setenv("HISTORY_BACKEND", "redis")

        with pytest.raises(ValidationError) as exc_info:
            Settings()

        assert "HISTORY_BACKEND must be one of" in str(exc_info.value)

    def test_history_backend_is_case_insensitive(self, monkeypatch):
        monkeypatch.setenv("HISTORY_BACKEND", "FILE")

        assert Settings().history_backend == "file"

    def test_supabase_backend_requires_credentials(self, monkeypatch):
        monkeypatch.setenv("HISTORY_BACKEND", "supabase")

        with pytest.raises(ValidationError) as exc_info:
            Settings()

        assert "SUPABASE_URL" in str(exc_info.value)

    def test_supabase_backend_with_credentials(self, monkeypatch):
        monkeypatch.setenv("HISTORY_BACKEND", "supabase")
        monkeypatch.setenv("SUPABASE_URL", "https://test.supabase.co")
        monkeypatch.setenv("SUPABASE_KEY", "test-key")

        settings = Settings()

        assert settings.history_backend == "supabase"
        assert settings.supabase_url == "https://test.supabase.co"

    def test_invalid_supabase_url_raises_error(self, monkeypatch):
        monkeypatch.setenv("SUPABASE_URL", "http://test.supabase.co")

        with pytest.raises(ValidationError) as exc_info:
            Settings()

        assert "must start with https://" in str(exc_info.value)

    def test_encode_concurrency_bounds(self, monkeypatch):
        monkeypatch.setenv("ENCODE_CONCURRENCY", "0")

        with pytest.raises(ValidationError):
            Settings()

    def test_history_limit_must_be_positive(self, monkeypatch):
        monkeypatch.setenv("HISTORY_LIMIT", "0")

        with pytest.raises(ValidationError):
            Settings()


class TestGetSettings:
    """Test get_settings() function caching behavior."""

    def test_get_settings_returns_settings_instance(self):
        assert isinstance(get_settings(), Settings)

    def test_get_settings_caches_result(self):
        assert get_settings() is get_settings()

    def test_get_settings_raises_error_on_invalid_config(self, monkeypatch):
        monkeypatch.setenv("HISTORY_BACKEND", "nope")

        with pytest.raises(ValidationError):
            get_settings()
