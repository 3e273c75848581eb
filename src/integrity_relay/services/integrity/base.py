"""
Base classes and common types for integrity verification.
"""

import hashlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .verdict import Verdict

logger = logging.getLogger(__name__)


class ChallengeMode(str, Enum):
    """Request mode the challenge is bound into."""
    CLASSIC = "classic"
    STANDARD = "standard"


class Outcome(str, Enum):
    """Final outcome of a verification attempt."""
    ALLOW = "ALLOW"
    DENY = "DENY"


class ReasonCode:
    """DENY reason codes."""
    REQUEST_MISMATCH = "REQUEST_MISMATCH"
    PACKAGE_MISMATCH = "PACKAGE_MISMATCH"
    REQUEST_STALE = "REQUEST_STALE"
    APP_INTEGRITY_FAILED = "APP_INTEGRITY_FAILED"
    DEVICE_INTEGRITY_FAILED = "DEVICE_INTEGRITY_FAILED"
    ACCOUNT_INVALID = "ACCOUNT_INVALID"
    ENVIRONMENT_RISK = "ENVIRONMENT_RISK"
    UPSTREAM_REJECTED = "UPSTREAM_REJECTED"


@dataclass
class Challenge:
    """A single-use random value bound to one verification attempt."""

    session_id: str
    value: str
    mode: ChallengeMode = ChallengeMode.CLASSIC
    ttl_seconds: int = 300
    issued_at: Optional[datetime] = None
    consumed: bool = False

    def __post_init__(self):
        if self.issued_at is None:
            self.issued_at = datetime.now(timezone.utc)

    @property
    def expires_at(self) -> datetime:
        return self.issued_at + timedelta(seconds=self.ttl_seconds)

    def expected_binding(self, request_payload: Optional[str] = None) -> str:
        """
        Value the verdict's binding field must carry.

        In standard mode with a request payload the binding is the request
        hash derived from the challenge and the payload; otherwise it is the
        challenge value itself.
        """
        if self.mode == ChallengeMode.STANDARD and request_payload is not None:
            from .challenge import compute_request_hash
            return compute_request_hash(self.value, request_payload)
        return self.value


@dataclass(frozen=True)
class Decision:
    """Allow/deny outcome for one verification attempt."""

    outcome: Outcome
    reason_codes: List[str] = field(default_factory=list)

    def __post_init__(self):
        if self.outcome == Outcome.DENY and not self.reason_codes:
            raise ValueError("A DENY decision must cite at least one reason code")

    @classmethod
    def allow(cls) -> "Decision":
        return cls(Outcome.ALLOW, [])

    @classmethod
    def deny(cls, *reason_codes: str) -> "Decision":
        return cls(Outcome.DENY, list(reason_codes))

    @property
    def is_allowed(self) -> bool:
        return self.outcome == Outcome.ALLOW


def calculate_token_hash(token: str) -> str:
    """SHA-256 of the token, used to identify it in logs."""
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


class TokenDecoder(ABC):
    """
    Capability that turns an opaque attestation token into a Verdict.

    The decoding authority is the only party that can read a token;
    implementations relay it and never inspect it locally.
    """

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @abstractmethod
    async def decode_token(self, token: str) -> "Verdict":
        """
        Decode an attestation token.

        Args:
            token: Opaque token produced by the vendor SDK

        Returns:
            Parsed Verdict

        Raises:
            UpstreamUnavailable: transient failure after retries
            UpstreamRejected: the authority refused the token
            RateLimited: the authority's quota is exhausted
        """
        pass

    @abstractmethod
    def get_decoder_type(self) -> str:
        """Get the decoder type identifier."""
        pass

    def get_configuration_status(self) -> dict:
        return {"decoder_type": self.get_decoder_type()}

    def _log_decode_attempt(self, token_hash: str, attempt: int):
        self.logger.info(
            f"Decode attempt - Decoder: {self.get_decoder_type()}, "
            f"Token hash: {token_hash[:8]}..., "
            f"Attempt: {attempt}"
        )
