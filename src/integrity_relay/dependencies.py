"""
FastAPI dependencies for the integrity relay
"""

from fastapi import HTTPException, Request, status

from .services.integrity.service import VerificationService


def get_verification_service(request: Request) -> VerificationService:
    """Verification service built by the application lifespan"""
    service = getattr(request.app.state, "verification_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Integrity verification service unavailable"
        )
    if not request.app.state.settings.enabled:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Integrity verification is disabled"
        )
    return service
