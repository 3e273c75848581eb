"""
Inbound rate limiting for the challenge and verification endpoints.
"""

import os
import logging
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request
from fastapi.responses import JSONResponse
import uuid

logger = logging.getLogger(__name__)

# Initialize limiter with IP-based key
storage_uri = os.getenv("RATE_LIMIT_STORAGE_URI", "memory://")

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["1000/hour"],  # Global default
    storage_uri=storage_uri,
    headers_enabled=True
)


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """
    Rate limit exceeded handler with the structured RELAY error response.

    slowapi's RateLimitExceeded does not expose the retry window, so the
    window is derived from the endpoint's configured limit period.
    """
    logger.warning(
        f"Rate limit exceeded: {request.client.host if request.client else 'unknown'} -> {request.url.path}"
    )

    retry_after = 60
    detail = str(getattr(exc, "detail", "") or "")
    if "hour" in detail:
        retry_after = 3600
    elif "second" in detail:
        retry_after = 1

    return JSONResponse(
        status_code=429,
        content={
            "transaction_id": str(uuid.uuid4()),
            "error_code": "RELAY-429",
            "message": "Rate limit exceeded. Please try again later.",
            "retryable": True,
            "retry_after": retry_after
        },
        headers={
            "Retry-After": str(retry_after),
            "X-RateLimit-Remaining": "0"
        }
    )
