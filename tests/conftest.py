"""
Pytest configuration and fixtures for the integrity relay tests.

This module provides common test fixtures and configuration for the test suite.
"""

import os

import pytest

# Set test environment before application modules load settings
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("INTEGRITY_STUB_MODE", "true")

from integrity_relay.metrics.performance import MetricsCollector
from integrity_relay.middleware.rate_limiter import limiter
from integrity_relay.services.integrity.base import TokenDecoder
from integrity_relay.services.integrity.challenge import ChallengeIssuer, ChallengeStore
from integrity_relay.services.integrity.config import RelaySettings
from integrity_relay.services.integrity.service import VerificationService
from integrity_relay.services.integrity.verdict import Verdict


def make_verdict(nonce="N1", request_hash=None,
                 app_verdict="PLAY_RECOGNIZED",
                 device_labels=("MEETS_BASIC_INTEGRITY", "MEETS_DEVICE_INTEGRITY"),
                 licensing="LICENSED",
                 package_name="com.example.app",
                 timestamp_millis=None,
                 play_protect="NO_ISSUES",
                 apps_detected=("KNOWN_INSTALLED",)) -> Verdict:
    """Build a verdict from decoding-authority shaped fields."""
    request_details = {
        "requestPackageName": package_name,
        "nonce": nonce,
    }
    if request_hash is not None:
        request_details["requestHash"] = request_hash
    if timestamp_millis is not None:
        request_details["timestampMillis"] = str(timestamp_millis)

    return Verdict.from_payload({
        "requestDetails": request_details,
        "appIntegrity": {
            "appRecognitionVerdict": app_verdict,
            "packageName": package_name,
            "certificateSha256Digest": ["6a6a1474b5cbbb2b1aa57e0bc3"],
            "versionCode": "42",
        },
        "deviceIntegrity": {"deviceRecognitionVerdict": list(device_labels)},
        "accountDetails": {"appLicensingVerdict": licensing},
        "environmentDetails": {
            "playProtectVerdict": play_protect,
            "appAccessRiskVerdict": {"appsDetected": list(apps_detected)},
        },
    })


class FakeTokenDecoder(TokenDecoder):
    """Decoder returning canned verdicts or raising canned errors."""

    def __init__(self, verdict=None, error=None):
        super().__init__()
        self.verdict = verdict
        self.error = error
        self.tokens = []

    def get_decoder_type(self) -> str:
        return "fake"

    async def decode_token(self, token: str) -> Verdict:
        self.tokens.append(token)
        if self.error is not None:
            raise self.error
        return self.verdict


class SequenceGenerator:
    """Deterministic challenge values N1, N2, ..."""

    def __init__(self, prefix="N"):
        self.prefix = prefix
        self.count = 0

    def __call__(self) -> str:
        self.count += 1
        return f"{self.prefix}{self.count}"


class FakeClock:
    """Monotonic clock advanced manually."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """Isolate inbound rate limit counters between tests."""
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def verdict_factory():
    """Factory for decoding-authority shaped verdicts."""
    return make_verdict


@pytest.fixture
def settings():
    """Relay settings for production-mode wiring."""
    return RelaySettings(
        enabled=True,
        stub_mode=False,
        package_name="com.example.app",
        static_token="test-service-token",
        challenge_ttl=300,
        max_retries=3,
        backoff_base_delay=0.5,
        backoff_max_delay=8.0,
        max_retry_after_wait=10.0,
        daily_quota=100,
        quota_alert_threshold=0.8,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(settings, clock):
    return ChallengeStore(maxsize=1000, ttl=settings.challenge_ttl, timer=clock)


@pytest.fixture
def collector():
    return MetricsCollector(daily_quota=100, quota_alert_threshold=0.8)


@pytest.fixture
def decoder():
    return FakeTokenDecoder(verdict=make_verdict())


@pytest.fixture
def service(settings, decoder, store, collector):
    """VerificationService with deterministic challenge values N1, N2, ..."""
    issuer = ChallengeIssuer(store, generator=SequenceGenerator())
    return VerificationService(settings, decoder, store=store, issuer=issuer, collector=collector)
