"""
Verification orchestration.

Correlates a submitted token with the session's challenge, relays it to the
decoding authority and applies the call site's policy.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from ...metrics.performance import MetricsCollector, metrics as default_metrics
from .base import Challenge, ChallengeMode, Decision, ReasonCode, TokenDecoder, calculate_token_hash
from .challenge import ChallengeIssuer, ChallengeStore
from .config import RelaySettings
from .errors import RateLimited, UpstreamRejected, UpstreamUnavailable, VerificationFailed
from .policy import VerdictInterpreter

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class VerificationService:
    """
    Issue challenges and verify attestation tokens.

    The only shared mutable state is the challenge store. The raw token and
    the verdict never leave this class; callers see a Decision or a
    VerificationFailed.
    """

    def __init__(self, config: RelaySettings, decoder: TokenDecoder,
                 store: Optional[ChallengeStore] = None,
                 issuer: Optional[ChallengeIssuer] = None,
                 interpreter: Optional[VerdictInterpreter] = None,
                 collector: Optional[MetricsCollector] = None,
                 now: Callable[[], datetime] = _utc_now):
        self.config = config
        self.decoder = decoder
        # An empty ChallengeStore is falsy, so compare against None.
        if store is None:
            store = issuer.store if issuer is not None else ChallengeStore(
                maxsize=config.challenge_store_size,
                ttl=config.challenge_ttl,
            )
        if issuer is not None and issuer.store is not store:
            raise ValueError("issuer must write to the service's challenge store")
        self.store = store
        self.issuer = issuer if issuer is not None else ChallengeIssuer(self.store)
        self.interpreter = (interpreter if interpreter is not None
                            else VerdictInterpreter(config.policies.get("default")))
        self.metrics = collector if collector is not None else default_metrics
        self._now = now

    def issue_challenge(self, session_id: str,
                        mode: ChallengeMode = ChallengeMode.CLASSIC) -> Challenge:
        """Issue a challenge; any earlier unconsumed one for the session stops being honored."""
        return self.issuer.issue_challenge(session_id, mode)

    async def verify(self, session_id: str, token: str, call_site: str = "default",
                     request_payload: Optional[str] = None) -> Decision:
        """
        Verify an attestation token for a session.

        Args:
            session_id: Session the challenge was issued to
            token: Opaque attestation token
            call_site: Name of the policy to apply
            request_payload: Protected request content (standard mode)

        Returns:
            Decision with outcome and reason codes

        Raises:
            UnknownCallSite: unknown call site
            NoSuchChallenge: challenge missing, expired or already used
            VerificationFailed: the decoding authority could not be used
        """
        policy = self.config.get_policy(call_site)
        challenge = self.store.consume(session_id)
        token_hash = calculate_token_hash(token or "")

        try:
            verdict = await self.decoder.decode_token(token)
        except UpstreamRejected as e:
            logger.info(f"Token rejected by decoding authority - Session: {session_id}, "
                        f"Token hash: {token_hash[:8]}..., Status: {e.status_code or 'n/a'}")
            decision = Decision.deny(ReasonCode.UPSTREAM_REJECTED)
            self._record(session_id, call_site, token_hash, decision)
            return decision
        except RateLimited as e:
            logger.warning(f"Verification deferred by upstream rate limit - Session: {session_id}, "
                           f"Retry after: {e.retry_after:.0f}s")
            raise VerificationFailed(e, retry_after=e.retry_after) from e
        except UpstreamUnavailable as e:
            logger.error(f"Verification failed, decoding authority unavailable - "
                         f"Session: {session_id}, Cause: {e}")
            raise VerificationFailed(e, retry_after=self.config.backoff_max_delay) from e

        decision = self.interpreter.evaluate(
            verdict, challenge, policy,
            request_payload=request_payload,
            now=self._now(),
        )
        self._record(session_id, call_site, token_hash, decision)
        return decision

    def _record(self, session_id: str, call_site: str, token_hash: str, decision: Decision) -> None:
        self.metrics.record_decision(decision.outcome.value, decision.reason_codes)
        logger.info(
            f"Verification decision - Session: {session_id}, "
            f"Call site: {call_site}, "
            f"Token hash: {token_hash[:8]}..., "
            f"Outcome: {decision.outcome.value}, "
            f"Reasons: {','.join(decision.reason_codes) or 'none'}"
        )

    def get_status(self) -> dict:
        return {
            "decoder": self.decoder.get_configuration_status(),
            "challenges": self.store.get_stats(),
            "call_sites": sorted(self.config.policies),
        }
