"""
Security headers middleware for the JSON API.
"""

import os
import logging
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from typing import Callable

logger = logging.getLogger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Add security headers to all responses.
    The relay serves JSON only, so no content may be framed, sniffed or loaded.
    """

    # Swagger UI needs scripts and styles from its CDN
    DOCS_PATHS = ("/docs", "/redoc")

    async def dispatch(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        response = await call_next(request)

        if not request.url.path.startswith(self.DOCS_PATHS):
            response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"

        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"

        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"

        response.headers["Referrer-Policy"] = "no-referrer"

        # HSTS - enforce HTTPS (enable in production when HTTPS configured)
        if os.getenv("ENVIRONMENT") == "production" and os.getenv("HTTPS_ENABLED") == "true":
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )

        return response
