"""
Verdict interpretation against per-call-site integrity policies.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from .base import Challenge, ChallengeMode, Decision, ReasonCode
from .verdict import DEVICE_LABELS, Verdict

logger = logging.getLogger(__name__)


class IntegrityPolicy(BaseModel):
    """Which verdict checks are mandatory for a call site."""

    require_app_integrity: bool = Field(True, description="Require a Play-recognized app")
    require_device_integrity: bool = Field(True, description="Require a genuine device")
    min_device_label: str = Field("MEETS_DEVICE_INTEGRITY", description="Weakest acceptable device label")
    require_licensed_account: bool = Field(False, description="Require a licensed user account")
    require_play_protect: bool = Field(False, description="Require an acceptable Play Protect verdict")
    accepted_play_protect_verdicts: List[str] = Field(
        default_factory=lambda: ["NO_ISSUES", "NO_DATA"],
        description="Play Protect verdicts treated as safe"
    )
    block_risky_apps: bool = Field(False, description="Deny when capturing or controlling apps are detected")
    risky_app_labels: List[str] = Field(
        default_factory=lambda: ["UNKNOWN_CAPTURING", "UNKNOWN_CONTROLLING"],
        description="App access risk labels treated as risky"
    )
    package_name: Optional[str] = Field(None, description="Expected request package name")
    max_token_age_seconds: Optional[int] = Field(None, description="Maximum verdict age")

    @field_validator("min_device_label")
    @classmethod
    def validate_device_label(cls, v: str) -> str:
        if v not in DEVICE_LABELS:
            raise ValueError(f"min_device_label must be one of {', '.join(DEVICE_LABELS)}")
        return v


DEFAULT_POLICY = IntegrityPolicy()


class VerdictInterpreter:
    """
    Applies an IntegrityPolicy to a Verdict.

    The result depends only on the verdict, the challenge, the policy and
    ``now``, so repeated evaluation yields the same Decision. The clock is
    read only when ``now`` is omitted and the policy has a freshness limit.
    """

    def __init__(self, default_policy: Optional[IntegrityPolicy] = None):
        self.default_policy = default_policy or DEFAULT_POLICY

    def evaluate(self, verdict: Verdict, expected_challenge: Challenge,
                 policy: Optional[IntegrityPolicy] = None,
                 request_payload: Optional[str] = None,
                 now: Optional[datetime] = None) -> Decision:
        """
        Evaluate a verdict.

        Args:
            verdict: Decoded verdict
            expected_challenge: Challenge issued for this attempt
            policy: Policy for the call site (default policy if omitted)
            request_payload: Protected request content for standard mode
            now: Reference time for freshness checks

        Returns:
            Decision; a binding mismatch short-circuits to REQUEST_MISMATCH
        """
        policy = policy or self.default_policy

        if not self._binding_matches(verdict, expected_challenge, request_payload):
            return Decision.deny(ReasonCode.REQUEST_MISMATCH)

        reasons = []

        if policy.package_name and verdict.request_details.request_package_name != policy.package_name:
            reasons.append(ReasonCode.PACKAGE_MISMATCH)

        if policy.max_token_age_seconds is not None and not self._is_fresh(
                verdict, policy.max_token_age_seconds, now or datetime.now(timezone.utc)):
            reasons.append(ReasonCode.REQUEST_STALE)

        if policy.require_app_integrity and not verdict.app_integrity.is_recognized:
            reasons.append(ReasonCode.APP_INTEGRITY_FAILED)

        if policy.require_device_integrity and not verdict.device_integrity.meets(policy.min_device_label):
            reasons.append(ReasonCode.DEVICE_INTEGRITY_FAILED)

        if policy.require_licensed_account and not verdict.account_details.is_licensed:
            reasons.append(ReasonCode.ACCOUNT_INVALID)

        if self._environment_at_risk(verdict, policy):
            reasons.append(ReasonCode.ENVIRONMENT_RISK)

        if reasons:
            return Decision.deny(*reasons)
        return Decision.allow()

    def _binding_matches(self, verdict: Verdict, challenge: Challenge,
                         request_payload: Optional[str]) -> bool:
        details = verdict.request_details
        if challenge.mode == ChallengeMode.STANDARD:
            bound = details.request_hash
        else:
            bound = details.nonce
        expected = challenge.expected_binding(request_payload)
        if bound != expected:
            logger.debug(f"Binding mismatch for session {challenge.session_id} "
                         f"(mode: {challenge.mode.value})")
            return False
        return True

    def _is_fresh(self, verdict: Verdict, max_age_seconds: int, reference: datetime) -> bool:
        # Verdicts without a timestamp cannot prove freshness.
        issued = verdict.request_details.timestamp
        if issued is None:
            return False
        if reference.tzinfo is None:
            reference = reference.replace(tzinfo=timezone.utc)
        return reference - issued <= timedelta(seconds=max_age_seconds)

    def _environment_at_risk(self, verdict: Verdict, policy: IntegrityPolicy) -> bool:
        environment = verdict.environment_details
        if policy.require_play_protect and (
                environment.play_protect_verdict not in policy.accepted_play_protect_verdicts):
            return True
        if policy.block_risky_apps and any(
                label in policy.risky_app_labels for label in environment.app_access_risk):
            return True
        return False
