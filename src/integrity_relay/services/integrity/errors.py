"""
Exception hierarchy for the integrity verification relay.

Policy failures are not exceptions: they surface as DENY reason codes on a
Decision. Everything here is an operational or client-flow failure.
"""

from typing import Optional


class IntegrityError(Exception):
    """Base class for all integrity relay errors."""


class EntropySourceUnavailable(IntegrityError):
    """The secure random source could not be read."""


class NoSuchChallenge(IntegrityError):
    """No unconsumed, unexpired challenge exists for the session."""

    def __init__(self, session_id: str, reason: str = "missing"):
        self.session_id = session_id
        self.reason = reason
        super().__init__(f"No usable challenge for session {session_id} ({reason})")


class UnknownCallSite(IntegrityError, ValueError):
    """No policy is configured for the requested call site."""

    def __init__(self, call_site: str):
        self.call_site = call_site
        super().__init__(f"Unknown call site: {call_site}")


class UpstreamError(IntegrityError):
    """Base class for failures talking to the decoding authority."""


class UpstreamUnavailable(UpstreamError):
    """Transient failure: network error, timeout or 5xx. Retryable."""


class CredentialUnavailable(UpstreamUnavailable):
    """The service credential could not be obtained or refreshed."""


class UpstreamRejected(UpstreamError):
    """The decoding authority rejected the token (4xx). Not retryable."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class RateLimited(UpstreamError):
    """The decoding authority answered 429."""

    def __init__(self, retry_after: float):
        self.retry_after = max(0.0, float(retry_after))
        super().__init__(f"Decoding authority rate limited, retry after {self.retry_after:.0f}s")


class VerificationFailed(IntegrityError):
    """
    Verification could not reach a decision.

    Wraps the underlying cause so callers can tell the client to retry
    without exposing upstream details.
    """

    def __init__(self, cause: Exception, retry_after: Optional[float] = None):
        self.cause = cause
        self.retry_after = retry_after
        super().__init__(f"Verification failed: {type(cause).__name__}")
