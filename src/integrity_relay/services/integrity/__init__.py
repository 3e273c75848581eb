"""
Integrity Verification Package

Backend relay for mobile app/device/account integrity verdicts.

Features:
- Single-use challenges (classic nonce or standard request hash)
- Relay to the Play Integrity decoding authority with service credentials
- Retry with exponential backoff, 429 handling and quota awareness
- Per call site policies for verdict interpretation
"""

from .base import Challenge, ChallengeMode, Decision, Outcome, ReasonCode, TokenDecoder
from .challenge import ChallengeIssuer, ChallengeStore, compute_request_hash
from .config import RelaySettings
from .credentials import CredentialProvider, ServiceAccountCredentialProvider, StaticCredentialProvider
from .errors import (
    CredentialUnavailable,
    EntropySourceUnavailable,
    IntegrityError,
    NoSuchChallenge,
    UnknownCallSite,
    RateLimited,
    UpstreamRejected,
    UpstreamUnavailable,
    VerificationFailed,
)
from .play_integrity import PlayIntegrityClient, StubTokenDecoder
from .policy import IntegrityPolicy, VerdictInterpreter
from .service import VerificationService
from .verdict import Verdict

__all__ = [
    # Core types
    "Challenge",
    "ChallengeMode",
    "Decision",
    "Outcome",
    "ReasonCode",
    "Verdict",
    "TokenDecoder",

    # Components
    "ChallengeIssuer",
    "ChallengeStore",
    "compute_request_hash",
    "RelaySettings",
    "CredentialProvider",
    "ServiceAccountCredentialProvider",
    "StaticCredentialProvider",
    "PlayIntegrityClient",
    "StubTokenDecoder",
    "IntegrityPolicy",
    "VerdictInterpreter",
    "VerificationService",

    # Errors
    "IntegrityError",
    "EntropySourceUnavailable",
    "NoSuchChallenge",
    "UnknownCallSite",
    "UpstreamUnavailable",
    "CredentialUnavailable",
    "UpstreamRejected",
    "RateLimited",
    "VerificationFailed",
]
