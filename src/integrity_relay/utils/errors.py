"""
Standardized error handling for the integrity relay
"""

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
import math
import uuid

from ..services.integrity.errors import (
    EntropySourceUnavailable,
    NoSuchChallenge,
    UnknownCallSite,
    VerificationFailed,
)

logger = logging.getLogger(__name__)

ERROR_REGISTRY = {
    400: ("RELAY-400", "Bad Request: Unknown call site", False),
    404: ("RELAY-404", "Not Found: Resource does not exist", False),
    405: ("RELAY-405", "Method Not Allowed", False),
    409: ("RELAY-409", "Conflict: No usable challenge for session, request a new one", False),
    422: ("RELAY-422", "Unprocessable Entity: Request validation failed", False),
    429: ("RELAY-429", "Too Many Requests: Rate limit exceeded", True),
    500: ("RELAY-500", "Internal Server Error: Generic server failure", True),
    503: ("RELAY-503", "Service Unavailable: Verification temporarily unavailable", True),
}


def error_response(status_code: int, message: str = None, headers: dict = None, **extra) -> JSONResponse:
    """Build the standard error envelope for a status code"""
    error_code, default_message, retryable = ERROR_REGISTRY.get(
        status_code,
        ("RELAY-500", "Internal Server Error", True)
    )
    content = {
        "transaction_id": str(uuid.uuid4()),
        "error_code": error_code,
        "message": message or default_message,
        "retryable": retryable
    }
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content, headers=headers)


async def error_handler(request: Request, exc: StarletteHTTPException):
    """Standardized error handler for all HTTP exceptions, routing 404/405 included"""
    return error_response(exc.status_code, exc.detail, headers=getattr(exc, "headers", None))


async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Name the offending fields without echoing submitted values"""
    fields = sorted({".".join(str(part) for part in err.get("loc", ())[1:]) or "body"
                     for err in exc.errors()})
    return error_response(422, fields=fields)


async def no_such_challenge_handler(request: Request, exc: NoSuchChallenge):
    """The client must restart the flow by requesting a new challenge"""
    return error_response(409)


async def verification_failed_handler(request: Request, exc: VerificationFailed):
    """Transient failure: tell the client when to retry, never why upstream failed"""
    retry_after = int(math.ceil(exc.retry_after or 0))
    return error_response(
        503,
        headers={"Retry-After": str(retry_after)},
        retry_after=retry_after
    )


async def entropy_unavailable_handler(request: Request, exc: EntropySourceUnavailable):
    logger.critical("Challenge issuance failed: secure random source unavailable")
    return error_response(500)


async def unknown_call_site_handler(request: Request, exc: UnknownCallSite):
    return error_response(400, str(exc))


def register_error_handlers(app):
    """Attach the relay's exception handlers to a FastAPI app"""
    app.add_exception_handler(StarletteHTTPException, error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(NoSuchChallenge, no_such_challenge_handler)
    app.add_exception_handler(VerificationFailed, verification_failed_handler)
    app.add_exception_handler(EntropySourceUnavailable, entropy_unavailable_handler)
    app.add_exception_handler(UnknownCallSite, unknown_call_site_handler)
