"""
Pydantic schemas for the integrity verification API.
"""

from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from ..services.integrity.base import ChallengeMode, Outcome


class ChallengeRequest(BaseModel):
    """Request a challenge for a session."""

    session_id: str = Field(..., min_length=1, max_length=128, description="Client session identifier")
    mode: ChallengeMode = Field(ChallengeMode.CLASSIC, description="Request mode: 'classic' or 'standard'")


class ChallengeResponse(BaseModel):
    """Issued challenge."""

    session_id: str = Field(..., description="Client session identifier")
    challenge: str = Field(..., description="Nonce or request hash seed to bind into the token")
    mode: ChallengeMode = Field(..., description="Request mode the challenge is bound into")
    expires_at: datetime = Field(..., description="When the challenge stops being honored")


class VerifyRequest(BaseModel):
    """Submit an attestation token for verification."""

    session_id: str = Field(..., min_length=1, max_length=128, description="Session the challenge was issued to")
    token: str = Field(..., min_length=1, description="Opaque attestation token from the vendor SDK")
    call_site: str = Field("default", description="Policy to apply, e.g. 'login' or 'purchase'")
    request_payload: Optional[str] = Field(
        None, description="Protected request content hashed into the request hash (standard mode)"
    )


class DecisionSchema(BaseModel):
    """Verification outcome returned to the client."""

    outcome: Outcome = Field(..., description="ALLOW or DENY")
    reason_codes: List[str] = Field(default_factory=list, description="Why the request was denied")


class RelayMetricsSchema(BaseModel):
    """Operational metrics for the relay."""

    decisions: Dict[str, int] = Field(..., description="Decisions by outcome")
    deny_reasons: Dict[str, int] = Field(..., description="DENY decisions by reason code")
    quota: Dict[str, object] = Field(..., description="Decoding authority quota usage")
    challenges: Dict[str, object] = Field(..., description="Challenge store statistics")
