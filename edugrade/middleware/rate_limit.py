"""Per-client rate limits for the evaluation API.

Each evaluation is one Gemini call billed to the configured key, so
``POST /api/evaluations`` is limited much more tightly than history reads.
"""

from typing import FrozenSet

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from edugrade.config import get_settings

RATE_LIMITS = {
    "evaluate": "10/minute",
    "history": "100/minute",
}

DEFAULT_RETRY_AFTER = 60  # seconds


def trusted_proxies() -> FrozenSet[str]:
    raw = get_settings().trusted_proxies or ""
    return frozenset(ip.strip() for ip in raw.split(",") if ip.strip())


def get_client_ip(request: Request) -> str:
    """
    Key requests by client IP.

    X-Forwarded-For is only honoured when the direct peer is a configured
    trusted proxy; otherwise any client could pick its own rate limit key.
    """
    peer = get_remote_address(request)
    if peer not in trusted_proxies():
        return peer

    forwarded_for = request.headers.get("X-Forwarded-For", "")
    client = forwarded_for.split(",")[0].strip()
    return client or peer


limiter = Limiter(key_func=get_client_ip)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """429 in the same {"detail", "error"} shape as evaluation errors."""
    retry_after = getattr(exc, "retry_after", None) or DEFAULT_RETRY_AFTER
    limit = str(exc.detail) if getattr(exc, "detail", None) else ""

    return JSONResponse(
        status_code=429,
        content={
            "detail": f"Too many requests. Retry after {retry_after} seconds.",
            "error": {
                "type": "RateLimitExceeded",
                "stage": "submit",
                "retryable": True,
                "limit": limit,
            },
        },
        headers={
            "Retry-After": str(retry_after),
            "X-RateLimit-Limit": limit,
            "X-RateLimit-Remaining": "0",
        },
    )
