"""
Configuration management for the integrity verification relay.
"""

import os
import logging
from functools import lru_cache
from typing import Dict, Optional
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator

from .errors import UnknownCallSite
from .policy import IntegrityPolicy

logger = logging.getLogger(__name__)


def _default_policies() -> Dict[str, IntegrityPolicy]:
    return {
        "default": IntegrityPolicy(),
        "login": IntegrityPolicy(require_licensed_account=False),
        "purchase": IntegrityPolicy(
            require_licensed_account=True,
            require_play_protect=True,
            block_risky_apps=True,
            min_device_label="MEETS_DEVICE_INTEGRITY",
        ),
    }


class RelaySettings(BaseSettings):
    """
    Configuration for the integrity relay.

    Loads from ``INTEGRITY_*`` environment variables with sensible defaults
    for development. ``INTEGRITY_POLICIES`` takes a JSON object mapping call
    site names to policies.
    """

    # Feature flags
    enabled: bool = Field(default=True)
    stub_mode: bool = Field(default=True)

    # Decoding authority
    package_name: Optional[str] = Field(default=None)
    decoder_base_url: str = Field(default="https://playintegrity.googleapis.com")

    # Service credentials
    service_account_file: Optional[str] = Field(default=None)
    token_uri: str = Field(default="https://oauth2.googleapis.com/token")
    static_token: Optional[str] = Field(default=None)
    credential_refresh_skew: int = Field(default=60)

    # Challenge store
    challenge_ttl: int = Field(default=300)  # 5 minutes
    challenge_store_size: int = Field(default=100000)
    sweep_interval: int = Field(default=60)

    # Outbound call and retry policy
    request_timeout: float = Field(default=5.0)
    max_retries: int = Field(default=3)
    backoff_base_delay: float = Field(default=0.5)
    backoff_max_delay: float = Field(default=8.0)
    max_retry_after_wait: float = Field(default=10.0)
    rate_limit_default_retry_after: float = Field(default=60.0)

    # Quota awareness
    daily_quota: int = Field(default=10000)
    quota_alert_threshold: float = Field(default=0.8)

    # Per call site policies
    policies: Dict[str, IntegrityPolicy] = Field(default_factory=_default_policies)

    # Inbound rate limits (slowapi syntax)
    challenge_rate_limit: str = Field(default="30/minute")
    verify_rate_limit: str = Field(default="30/minute")

    class Config:
        env_prefix = "INTEGRITY_"
        env_file = None  # Don't use .env files in production
        case_sensitive = False

    @field_validator("challenge_ttl", "max_retries", "daily_quota")
    @classmethod
    def validate_positive(cls, v: int, info) -> int:
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive (current: {v})")
        return v

    @field_validator("quota_alert_threshold")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError("quota_alert_threshold must be within (0, 1]")
        return v

    @field_validator("stub_mode")
    @classmethod
    def block_stub_mode_in_production(cls, v: bool) -> bool:
        """Stub decoding accepts any token, so it must never run in production."""
        environment = os.getenv('ENVIRONMENT', 'development')
        if environment == 'production' and v:
            raise ValueError(
                "stub_mode=True is FORBIDDEN in production. "
                "Set INTEGRITY_STUB_MODE=false in environment."
            )
        return v

    def get_policy(self, call_site: str) -> IntegrityPolicy:
        """
        Policy for a call site.

        Raises:
            UnknownCallSite: if the call site is not configured
        """
        try:
            return self.policies[call_site]
        except KeyError:
            raise UnknownCallSite(call_site)

    def is_production_ready(self) -> bool:
        """
        Check if configuration is ready for production use.

        Returns:
            True if the decoding authority and credentials are configured
        """
        if self.stub_mode:
            return True
        return bool(self.package_name) and bool(self.service_account_file or self.static_token)

    def validate_config(self) -> list[str]:
        """
        Validate configuration and return list of issues.

        Returns:
            List of configuration issues (empty if valid)
        """
        issues = []

        if not self.enabled:
            return issues

        if self.stub_mode:
            logger.info("Integrity relay running in stub mode - no credential validation needed")
            return issues

        if not self.package_name:
            issues.append("INTEGRITY_PACKAGE_NAME is required to call the decoding authority")
        if not self.service_account_file and not self.static_token:
            issues.append("Either INTEGRITY_SERVICE_ACCOUNT_FILE or INTEGRITY_STATIC_TOKEN is required")
        elif self.service_account_file and not os.path.exists(self.service_account_file):
            issues.append(f"Service account file not found: {self.service_account_file}")
        if "default" not in self.policies:
            issues.append("A 'default' call site policy is required")

        return issues

    def log_config_summary(self):
        """Log configuration summary without secrets."""
        logger.info(f"Integrity config - Enabled: {self.enabled}, "
                    f"Stub mode: {self.stub_mode}, "
                    f"Package: {self.package_name or 'not configured'}, "
                    f"Challenge TTL: {self.challenge_ttl}s, "
                    f"Retries: {self.max_retries}, "
                    f"Timeout: {self.request_timeout}s, "
                    f"Daily quota: {self.daily_quota}")
        logger.info(f"Call sites: {', '.join(sorted(self.policies))}, "
                    f"Credentials: {'service account' if self.service_account_file else 'static' if self.static_token else 'not configured'}")


@lru_cache
def load_settings() -> RelaySettings:
    """Process settings, loaded once from the environment."""
    settings = RelaySettings()
    for issue in settings.validate_config():
        logger.warning(f"Integrity config issue: {issue}")
    return settings
