"""Logging middleware for request tracking and structured logging."""

import json
import logging
import sys
import time
import uuid
from typing import Any, Awaitable, Callable, Dict

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(message)s',  # Messages are JSON formatted by the callers
    stream=sys.stdout
)

logger = logging.getLogger(__name__)

# Response headers copied into the request log line
CONTEXT_HEADERS = {
    "X-Report-ID": "report_id",
    "X-Evaluation-Stage": "evaluation_stage",
    "X-Error-Type": "error_type",
}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware that logs request/response information in structured JSON format.

    Logs include:
    - Request ID (UUID, honours an incoming X-Request-ID)
    - HTTP method and path
    - Status code
    - Processing time
    - Client IP
    - Evaluation outcome (report id, failing stage, error type)

    Security notes:
    - Does NOT log API keys, document contents, or student answers
    - Does NOT log request/response bodies
    """

    def __init__(self, app: ASGIApp):
        super().__init__(app)

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        """Process request and log structured information."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.time()

        log_data: Dict[str, Any] = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "user_ip": request.client.host if request.client else "unknown",
        }

        try:
            response = await call_next(request)
        except Exception as e:
            processing_time_ms = (time.time() - start_time) * 1000
            error_log = {
                **log_data,
                "status_code": 500,
                "processing_time_ms": round(processing_time_ms, 2),
                "error": str(e),
                "error_type": type(e).__name__,
                "message": f"Request failed: {request.method} {request.url.path}",
            }
            logger.error(json.dumps(error_log), exc_info=True)
            raise

        processing_time_ms = (time.time() - start_time) * 1000

        log_data.update({
            "status_code": response.status_code,
            "processing_time_ms": round(processing_time_ms, 2),
        })

        for header, key in CONTEXT_HEADERS.items():
            if header in response.headers:
                log_data[key] = response.headers[header]

        logger.info(json.dumps(log_data))

        # Add request ID to response headers for client reference
        response.headers["X-Request-ID"] = request_id

        return response
