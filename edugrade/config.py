"""Configuration management for the EduGrade evaluation service.

This module uses Pydantic Settings to load configuration from environment
variables. Settings are validated on load so configuration mistakes surface
early. The Gemini API key is optional here: a missing key is reported as a
remediable error when an evaluation is submitted, not at startup.
"""

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Lookup order for the inference credential (first non-empty wins)
CREDENTIAL_ENV_VARS = ("GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY")

HISTORY_BACKENDS = ("file", "supabase")


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Sensitive values (API keys, database credentials) must be provided via
    environment variables or a .env file.
    """

    # Gemini API Configuration
    gemini_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(*CREDENTIAL_ENV_VARS),
        description="Google Gemini API key used for grading requests"
    )

    # AI Model Configuration
    model_name: str = Field(
        default="gemini-3-flash-preview",
        description="Gemini model used for evaluation"
    )

    # Document limits
    max_document_bytes: int = Field(
        default=4 * 1024 * 1024,
        description="Largest accepted document in bytes"
    )
    encode_concurrency: int = Field(
        default=4,
        description="Documents encoded in parallel within one submission"
    )

    # History storage
    history_backend: str = Field(
        default="file",
        description="Durable history backend: 'file' or 'supabase'"
    )
    data_dir: str = Field(
        default=".edugrade",
        description="Directory holding the local history file"
    )
    history_limit: int = Field(
        default=50,
        description="Maximum number of reports kept in history"
    )

    # Supabase Configuration (only for history_backend=supabase)
    supabase_url: Optional[str] = Field(
        default=None,
        description="Supabase project URL"
    )
    supabase_key: Optional[str] = Field(
        default=None,
        description="Supabase anonymous/service role key"
    )
    supabase_history_table: str = Field(
        default="evaluation_history",
        description="Table holding the persisted history log"
    )

    # Rate limiting
    trusted_proxies: Optional[str] = Field(
        default=None,
        description="Comma-separated proxy IPs allowed to set X-Forwarded-For"
    )

    # Model configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
        protected_namespaces=(),
    )

    @field_validator("gemini_api_key", "supabase_key", "trusted_proxies")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        """Treat empty or whitespace-only values as unset."""
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator("supabase_url")
    @classmethod
    def validate_supabase_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate that the Supabase URL, when given, uses HTTPS."""
        if v is None or not v.strip():
            return None

        url = v.strip()
        if not url.startswith("https://"):
            raise ValueError(
                "SUPABASE_URL must start with https:// "
                f"(got: {url[:20]}...)"
            )

        return url

    @field_validator("history_backend")
    @classmethod
    def validate_history_backend(cls, v: str) -> str:
        backend = v.strip().lower()
        if backend not in HISTORY_BACKENDS:
            raise ValueError(
                f"HISTORY_BACKEND must be one of: {', '.join(HISTORY_BACKENDS)} "
                f"(got: {v})"
            )
        return backend

    @field_validator("max_document_bytes", "history_limit")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("value must be a positive integer")
        return v

    @field_validator("encode_concurrency")
    @classmethod
    def validate_encode_concurrency(cls, v: int) -> int:
        if v < 1 or v > 16:
            raise ValueError("ENCODE_CONCURRENCY must be between 1 and 16")
        return v

    @model_validator(mode="after")
    def validate_supabase_backend(self) -> "Settings":
        """Require Supabase credentials when history is stored in Supabase."""
        if self.history_backend == "supabase" and not (self.supabase_url and self.supabase_key):
            raise ValueError(
                "HISTORY_BACKEND=supabase requires SUPABASE_URL and SUPABASE_KEY "
                "to be set in environment variables"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached Settings instance.

    Settings are loaded once and reused across the application lifetime.
    Credential lookups do not go through this cache (see
    ``edugrade.services.credentials``) so a key exported after startup is
    still picked up.

    Returns:
        Settings: Validated application settings

    Raises:
        ValueError: If environment variables are invalid
    """
    return Settings()
