"""
Google Play Integrity relay client.

Forwards opaque integrity tokens to the Play Integrity
``decodeIntegrityToken`` endpoint and turns the response into a Verdict.
Tokens are never decoded locally.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from ...metrics.performance import MetricsCollector, metrics as default_metrics
from ...utils.resilience import retry_with_backoff
from .base import TokenDecoder, calculate_token_hash
from .config import RelaySettings
from .credentials import CredentialProvider
from .errors import RateLimited, UpstreamRejected, UpstreamUnavailable
from .verdict import Verdict

logger = logging.getLogger(__name__)


def parse_retry_after(value: Optional[str], default: float) -> float:
    """Seconds to wait from a Retry-After header (delta-seconds form)."""
    if value is None:
        return default
    try:
        return max(0.0, float(value))
    except ValueError:
        return default


class PlayIntegrityClient(TokenDecoder):
    """
    Relay client for the Play Integrity decoding authority.

    Transient failures are retried with exponential backoff; a 429 is
    retried after the advertised window when it is short enough, then
    surfaced as RateLimited; any other 4xx is a non-retryable rejection.
    """

    DECODE_PATH = "/v1/{package_name}:decodeIntegrityToken"

    def __init__(self, config: RelaySettings, credentials: CredentialProvider,
                 http_client: httpx.AsyncClient,
                 collector: Optional[MetricsCollector] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        super().__init__()
        if not config.package_name:
            raise ValueError("package_name is required for the Play Integrity client")
        self.config = config
        self.credentials = credentials
        self._http = http_client
        self.metrics = collector if collector is not None else default_metrics
        self._sleep = sleep
        self.url = config.decoder_base_url.rstrip("/") + self.DECODE_PATH.format(
            package_name=config.package_name
        )

    def get_decoder_type(self) -> str:
        return "playintegrity"

    def get_configuration_status(self) -> Dict[str, Any]:
        return {
            "decoder_type": self.get_decoder_type(),
            "package_name": self.config.package_name,
            "endpoint": self.url,
            "timeout": self.config.request_timeout,
            "max_retries": self.config.max_retries,
        }

    async def decode_token(self, token: str) -> Verdict:
        """
        Decode a Play Integrity token.

        Args:
            token: The integrity token from the app

        Returns:
            Verdict parsed from ``tokenPayloadExternal``
        """
        if not token:
            raise UpstreamRejected("Empty integrity token")

        token_hash = calculate_token_hash(token)
        attempts = 0

        async def attempt() -> Dict[str, Any]:
            nonlocal attempts
            attempts += 1
            self._log_decode_attempt(token_hash, attempts)
            return await self._post(token)

        try:
            body = await retry_with_backoff(
                attempt,
                max_retries=self.config.max_retries,
                base_delay=self.config.backoff_base_delay,
                max_delay=self.config.backoff_max_delay,
                retry_on=(UpstreamUnavailable, RateLimited),
                max_retry_after=self.config.max_retry_after_wait,
                sleep=self._sleep,
            )
        except UpstreamUnavailable:
            self.metrics.record_upstream_failure()
            raise

        verdict = Verdict.from_response(body)
        logger.info(f"Token decoded - Token hash: {token_hash[:8]}..., Attempts: {attempts}")
        return verdict

    async def _post(self, token: str) -> Dict[str, Any]:
        access_token = await self.credentials.get_token()
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json"
        }
        payload = {
            "integrity_token": token
        }

        started = time.monotonic()
        try:
            response = await self._http.post(
                self.url, json=payload, headers=headers, timeout=self.config.request_timeout
            )
        except httpx.TimeoutException as e:
            logger.warning(f"Play Integrity request timed out after {time.monotonic() - started:.2f}s")
            raise UpstreamUnavailable("Decoding authority timed out") from e
        except httpx.RequestError as e:
            logger.warning(f"Play Integrity request failed: {type(e).__name__}")
            raise UpstreamUnavailable("Decoding authority unreachable") from e

        self.metrics.record_decode_call()

        status = response.status_code
        if status == 200:
            try:
                return response.json()
            except ValueError as e:
                raise UpstreamRejected("Decoding authority returned invalid JSON", status) from e

        if status == 429:
            retry_after = parse_retry_after(
                response.headers.get("Retry-After"),
                self.config.rate_limit_default_retry_after,
            )
            self.metrics.record_rate_limited(retry_after)
            raise RateLimited(retry_after)

        if status >= 500:
            logger.error(f"Play Integrity API error: {status}")
            raise UpstreamUnavailable(f"Decoding authority returned {status}")

        if status in (401, 403):
            # The cached service credential may have been revoked or expired early.
            self.credentials.invalidate()
        logger.info(f"Play Integrity API rejected token: {status}")
        raise UpstreamRejected(f"Decoding authority rejected token ({status})", status)


class StubTokenDecoder(TokenDecoder):
    """
    Local decoder for development.

    Treats the token as the binding value and returns a passing verdict.
    Tokens prefixed with ``emulator:`` yield a verdict without device
    integrity labels.
    """

    EMULATOR_PREFIX = "emulator:"

    def __init__(self, package_name: Optional[str] = None,
                 clock: Callable[[], float] = time.time):
        super().__init__()
        self.package_name = package_name
        self._clock = clock

    def get_decoder_type(self) -> str:
        return "stub"

    async def decode_token(self, token: str) -> Verdict:
        if not token:
            raise UpstreamRejected("Empty integrity token")

        device_labels = ["MEETS_BASIC_INTEGRITY", "MEETS_DEVICE_INTEGRITY"]
        binding = token
        if token.startswith(self.EMULATOR_PREFIX):
            binding = token[len(self.EMULATOR_PREFIX):]
            device_labels = []

        logger.warning("Using stub integrity decoder - verdicts are not authentic")
        return Verdict.from_payload({
            "requestDetails": {
                "requestPackageName": self.package_name,
                "nonce": binding,
                "requestHash": binding,
                "timestampMillis": int(self._clock() * 1000),
            },
            "appIntegrity": {
                "appRecognitionVerdict": "PLAY_RECOGNIZED",
                "packageName": self.package_name,
            },
            "deviceIntegrity": {"deviceRecognitionVerdict": device_labels},
            "accountDetails": {"appLicensingVerdict": "LICENSED"},
            "environmentDetails": {
                "playProtectVerdict": "NO_ISSUES",
                "appAccessRiskVerdict": {"appsDetected": ["KNOWN_INSTALLED"]},
            },
        })
