"""
Integrity verification router
Challenge issuance and token verification for mobile clients
"""

from fastapi import APIRouter, Depends, Request, Response, status

from ..dependencies import get_verification_service
from ..metrics.performance import get_performance_stats
from ..middleware.rate_limiter import limiter
from ..schemas.integrity import (
    ChallengeRequest,
    ChallengeResponse,
    DecisionSchema,
    RelayMetricsSchema,
    VerifyRequest,
)
from ..services.integrity.config import load_settings
from ..services.integrity.service import VerificationService

router = APIRouter(prefix="/v1/integrity", tags=["Integrity"])


# slowapi passes no request to limit providers, so limits come from process settings.
def _challenge_limit() -> str:
    return load_settings().challenge_rate_limit


def _verify_limit() -> str:
    return load_settings().verify_rate_limit


@router.post("/challenges", response_model=ChallengeResponse, status_code=status.HTTP_201_CREATED,
             summary="Issue Challenge",
             description="Issue a single-use challenge for a session. Any earlier unconsumed challenge for the session is no longer honored.")
@limiter.limit(_challenge_limit)
async def issue_challenge(
    body: ChallengeRequest,
    request: Request,
    response: Response,
    service: VerificationService = Depends(get_verification_service)
):
    challenge = service.issue_challenge(body.session_id, body.mode)
    response.headers["Cache-Control"] = "no-store"
    return ChallengeResponse(
        session_id=challenge.session_id,
        challenge=challenge.value,
        mode=challenge.mode,
        expires_at=challenge.expires_at
    )


@router.post("/verdicts", response_model=DecisionSchema, status_code=status.HTTP_200_OK,
             summary="Verify Token",
             description="Relay an attestation token to the decoding authority and return an allow/deny decision. Each challenge can be used once.")
@limiter.limit(_verify_limit)
async def verify_token(
    body: VerifyRequest,
    request: Request,
    response: Response,
    service: VerificationService = Depends(get_verification_service)
):
    """
    Verify an attestation token.

    Errors:
    - 409 when the session has no usable challenge (request a new one)
    - 503 with Retry-After when the decoding authority is unavailable
    """
    decision = await service.verify(
        body.session_id,
        body.token,
        call_site=body.call_site,
        request_payload=body.request_payload
    )
    response.headers["Cache-Control"] = "no-store"
    return DecisionSchema(outcome=decision.outcome, reason_codes=decision.reason_codes)


@router.get("/metrics", response_model=RelayMetricsSchema, summary="Relay Metrics")
async def relay_metrics(service: VerificationService = Depends(get_verification_service)):
    stats = get_performance_stats(service.metrics)
    return RelayMetricsSchema(
        decisions=stats["decisions"],
        deny_reasons=stats["deny_reasons"],
        quota=stats["quota"],
        challenges=service.store.get_stats()
    )
