"""Credential resolution for the Gemini API.

All lookups go through one ``CredentialProvider.resolve()`` call. The
environment lookup order (GEMINI_API_KEY, GOOGLE_API_KEY, API_KEY, then the
same names in .env) is declared once on ``Settings.gemini_api_key``.
"""

from typing import Optional, Protocol, Sequence

from edugrade.config import CREDENTIAL_ENV_VARS, Settings


class CredentialProvider(Protocol):
    """Anything that can produce the API key, or None when it is absent."""

    lookup: Sequence[str]

    def resolve(self) -> Optional[str]:
        ...


class SettingsCredentialProvider:
    """Resolves the key from the environment/.env at call time.

    Settings are re-read on every call (not the cached ``get_settings()``)
    so a key configured after startup is picked up without a restart.
    """

    lookup: Sequence[str] = CREDENTIAL_ENV_VARS

    def resolve(self) -> Optional[str]:
        return Settings().gemini_api_key


class StaticCredentialProvider:
    """Wraps an explicitly supplied key (CLI --api-key, tests)."""

    lookup: Sequence[str] = ("--api-key",)

    def __init__(self, api_key: Optional[str]):
        self._api_key = api_key.strip() if api_key and api_key.strip() else None

    def resolve(self) -> Optional[str]:
        return self._api_key
