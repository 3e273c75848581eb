"""
Verdict data model.

Parses the decoded payload returned by the decoding authority
(``tokenPayloadExternal``) into typed fields. Parsing is tolerant: missing
sections become empty values, which the interpreter then treats as failing
whatever checks the policy requires.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .errors import UpstreamRejected

# Device recognition labels ordered from weakest to strongest.
DEVICE_LABELS = (
    "MEETS_BASIC_INTEGRITY",
    "MEETS_DEVICE_INTEGRITY",
    "MEETS_STRONG_INTEGRITY",
)


@dataclass(frozen=True)
class RequestDetails:
    request_package_name: Optional[str] = None
    nonce: Optional[str] = None
    request_hash: Optional[str] = None
    timestamp_millis: Optional[int] = None

    @property
    def timestamp(self) -> Optional[datetime]:
        if self.timestamp_millis is None:
            return None
        return datetime.fromtimestamp(self.timestamp_millis / 1000, tz=timezone.utc)


@dataclass(frozen=True)
class AppIntegrity:
    app_recognition_verdict: str = "UNEVALUATED"
    package_name: Optional[str] = None
    certificate_sha256_digest: List[str] = field(default_factory=list)
    version_code: Optional[int] = None

    @property
    def is_recognized(self) -> bool:
        return self.app_recognition_verdict == "PLAY_RECOGNIZED"


@dataclass(frozen=True)
class DeviceIntegrity:
    device_recognition_verdict: List[str] = field(default_factory=list)

    def meets(self, minimum_label: str) -> bool:
        """True if the device holds ``minimum_label`` or a stronger label."""
        if minimum_label not in DEVICE_LABELS:
            raise ValueError(f"Unknown device integrity label: {minimum_label}")
        required = DEVICE_LABELS.index(minimum_label)
        return any(
            label in self.device_recognition_verdict
            for label in DEVICE_LABELS[required:]
        )


@dataclass(frozen=True)
class AccountDetails:
    app_licensing_verdict: str = "UNEVALUATED"

    @property
    def is_licensed(self) -> bool:
        return self.app_licensing_verdict == "LICENSED"


@dataclass(frozen=True)
class EnvironmentDetails:
    play_protect_verdict: Optional[str] = None
    app_access_risk: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class Verdict:
    """Structured content of a decoded attestation token."""

    request_details: RequestDetails = field(default_factory=RequestDetails)
    app_integrity: AppIntegrity = field(default_factory=AppIntegrity)
    device_integrity: DeviceIntegrity = field(default_factory=DeviceIntegrity)
    account_details: AccountDetails = field(default_factory=AccountDetails)
    environment_details: EnvironmentDetails = field(default_factory=EnvironmentDetails)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Verdict":
        """Build a Verdict from a ``tokenPayloadExternal`` dictionary."""
        request = payload.get("requestDetails") or {}
        app = payload.get("appIntegrity") or {}
        device = payload.get("deviceIntegrity") or {}
        account = payload.get("accountDetails") or {}
        environment = payload.get("environmentDetails") or {}
        access_risk = environment.get("appAccessRiskVerdict") or {}

        timestamp = request.get("timestampMillis")
        version_code = app.get("versionCode")

        return cls(
            request_details=RequestDetails(
                request_package_name=request.get("requestPackageName"),
                nonce=request.get("nonce"),
                request_hash=request.get("requestHash"),
                timestamp_millis=int(timestamp) if timestamp is not None else None,
            ),
            app_integrity=AppIntegrity(
                app_recognition_verdict=app.get("appRecognitionVerdict", "UNEVALUATED"),
                package_name=app.get("packageName"),
                certificate_sha256_digest=list(app.get("certificateSha256Digest") or []),
                version_code=int(version_code) if version_code is not None else None,
            ),
            device_integrity=DeviceIntegrity(
                device_recognition_verdict=list(device.get("deviceRecognitionVerdict") or []),
            ),
            account_details=AccountDetails(
                app_licensing_verdict=account.get("appLicensingVerdict", "UNEVALUATED"),
            ),
            environment_details=EnvironmentDetails(
                play_protect_verdict=environment.get("playProtectVerdict"),
                app_access_risk=list(access_risk.get("appsDetected") or []),
            ),
        )

    @classmethod
    def from_response(cls, body: Dict[str, Any]) -> "Verdict":
        """
        Build a Verdict from the decoding authority's response body.

        Raises:
            UpstreamRejected: if the body carries no usable token payload
        """
        payload = body.get("tokenPayloadExternal") if isinstance(body, dict) else None
        if not isinstance(payload, dict):
            raise UpstreamRejected("Decoded response missing token payload")
        try:
            return cls.from_payload(payload)
        except (ValueError, TypeError, AttributeError) as e:
            # Upstream content is not echoed back to clients.
            raise UpstreamRejected("Malformed token payload") from e
