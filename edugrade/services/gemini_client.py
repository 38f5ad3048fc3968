"""Gemini inference client for grading requests.

Uses the modern google-genai SDK (not google.generativeai). One evaluation is
one ``generate_content`` round trip; there are no retries here; retrying is
the caller's decision.
"""

import asyncio
import base64
import logging
from typing import Any, Callable, List, Optional

import httpx
from google import genai
from google.genai import errors, types

from edugrade.errors import AuthRejected, EmptyResponse, MissingCredential, TransportFailure
from edugrade.models.documents import BinaryPart, InferenceRequest
from edugrade.services.credentials import CredentialProvider, SettingsCredentialProvider

logger = logging.getLogger(__name__)

# Status codes meaning the key itself was refused
AUTH_STATUS_CODES = frozenset({401, 403})

# Gemini reports an invalid key as 400 INVALID_ARGUMENT with one of these markers
INVALID_KEY_MARKERS = ("api key not valid", "api_key_invalid", "api key expired")


def _is_auth_error(error: errors.APIError) -> bool:
    code = getattr(error, "code", None)
    if code in AUTH_STATUS_CODES:
        return True
    text = " ".join(
        str(part) for part in (getattr(error, "status", ""), getattr(error, "message", ""), error)
        if part
    ).lower()
    return any(marker in text for marker in INVALID_KEY_MARKERS)


def build_contents(request: InferenceRequest) -> List[types.Part]:
    """Translate request parts into google-genai Parts, preserving order."""
    parts: List[types.Part] = []
    for part in request.parts:
        if isinstance(part, BinaryPart):
            parts.append(types.Part.from_bytes(
                data=base64.b64decode(part.base64_payload),
                mime_type=part.mime_type,
            ))
        else:
            parts.append(types.Part.from_text(text=part.text))
    return parts


class GeminiInferenceClient:
    """Sends composed grading requests to the Gemini API.

    Args:
        credentials: Source of the API key, resolved on every call
        client_factory: Builds a ``genai.Client`` from an API key
    """

    def __init__(
        self,
        credentials: Optional[CredentialProvider] = None,
        client_factory: Optional[Callable[..., Any]] = None,
    ):
        self.credentials = credentials or SettingsCredentialProvider()
        self._client_factory = client_factory or genai.Client

    def ensure_credential(self) -> str:
        """
        Resolve the API key or fail before any work is done.

        Raises:
            MissingCredential: If no key is configured
        """
        api_key = self.credentials.resolve()
        if not api_key:
            raise MissingCredential(self.credentials.lookup)
        return api_key

    async def send(self, request: InferenceRequest) -> str:
        """
        Send one grading request and return the raw response text.

        Args:
            request: Composed inference request

        Returns:
            Response text (expected to be a single JSON object)

        Raises:
            MissingCredential: No API key configured (nothing is sent)
            AuthRejected: The service refused the key
            TransportFailure: Network or service failure
            EmptyResponse: The call succeeded without any text
        """
        api_key = self.ensure_credential()
        client = self._client_factory(api_key=api_key)

        config = types.GenerateContentConfig(
            response_mime_type="application/json",
            response_schema=request.response_schema,
        )

        try:
            response = await asyncio.to_thread(
                client.models.generate_content,
                model=request.model,
                contents=[types.Content(role="user", parts=build_contents(request))],
                config=config,
            )
        except errors.ClientError as e:
            if _is_auth_error(e):
                raise AuthRejected(str(e), status_code=e.code) from e
            raise TransportFailure(str(e), status_code=e.code) from e
        except errors.APIError as e:
            raise TransportFailure(str(e), status_code=e.code) from e
        except httpx.HTTPError as e:
            raise TransportFailure(f"{type(e).__name__}: {e}") from e

        response_text = response.text
        if response_text is None or not response_text.strip():
            raise EmptyResponse()

        if getattr(response, "usage_metadata", None):
            logger.info(
                f"Gemini {request.model} call used "
                f"{response.usage_metadata.total_token_count or 0} tokens"
            )
        return response_text
