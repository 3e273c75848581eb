"""
Test suite for relay settings validators.
Tests production stub mode blocking, numeric bounds and policy loading.
"""

import pytest
from pydantic import ValidationError

from integrity_relay.services.integrity.config import RelaySettings
from integrity_relay.services.integrity.errors import UnknownCallSite


def test_stub_mode_blocked_in_production(monkeypatch):
    """Stub decoding accepts any token and must never run in production"""
    monkeypatch.setenv("ENVIRONMENT", "production")

    with pytest.raises(ValidationError) as exc_info:
        RelaySettings(stub_mode=True)

    assert "FORBIDDEN in production" in str(exc_info.value)


def test_real_decoder_allowed_in_production(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "production")

    settings = RelaySettings(
        stub_mode=False,
        package_name="com.example.app",
        static_token="service-token",
    )

    assert settings.stub_mode is False
    assert settings.is_production_ready()


def test_stub_mode_allowed_outside_production(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "development")

    assert RelaySettings(stub_mode=True).stub_mode is True


@pytest.mark.parametrize("field", ["challenge_ttl", "max_retries", "daily_quota"])
def test_non_positive_values_rejected(field):
    with pytest.raises(ValidationError) as exc_info:
        RelaySettings(**{field: 0})

    assert "must be positive" in str(exc_info.value)


@pytest.mark.parametrize("threshold", [0, 1.5, -0.2])
def test_quota_threshold_bounds(threshold):
    with pytest.raises(ValidationError):
        RelaySettings(quota_alert_threshold=threshold)


def test_env_prefix(monkeypatch):
    monkeypatch.setenv("INTEGRITY_CHALLENGE_TTL", "120")
    monkeypatch.setenv("INTEGRITY_PACKAGE_NAME", "com.example.app")

    settings = RelaySettings()

    assert settings.challenge_ttl == 120
    assert settings.package_name == "com.example.app"


def test_policies_from_environment(monkeypatch):
    monkeypatch.setenv(
        "INTEGRITY_POLICIES",
        '{"default": {}, "checkout": {"require_licensed_account": true, "max_token_age_seconds": 60}}'
    )

    settings = RelaySettings()

    checkout = settings.get_policy("checkout")
    assert checkout.require_licensed_account is True
    assert checkout.max_token_age_seconds == 60
    assert settings.get_policy("default").require_licensed_account is False


def test_invalid_policy_label_rejected(monkeypatch):
    monkeypatch.setenv("INTEGRITY_POLICIES", '{"default": {"min_device_label": "MEETS_NOTHING"}}')

    with pytest.raises(ValidationError):
        RelaySettings()


def test_unknown_call_site():
    with pytest.raises(UnknownCallSite):
        RelaySettings().get_policy("checkout")


def test_validate_config_reports_missing_credentials():
    settings = RelaySettings(stub_mode=False)

    issues = settings.validate_config()

    assert any("INTEGRITY_PACKAGE_NAME" in issue for issue in issues)
    assert any("INTEGRITY_STATIC_TOKEN" in issue for issue in issues)
    assert not settings.is_production_ready()


def test_validate_config_missing_service_account_file(tmp_path):
    settings = RelaySettings(
        stub_mode=False,
        package_name="com.example.app",
        service_account_file=str(tmp_path / "missing.json"),
    )

    assert settings.validate_config() == [
        f"Service account file not found: {tmp_path / 'missing.json'}"
    ]


def test_validate_config_requires_default_policy():
    settings = RelaySettings(
        stub_mode=False,
        package_name="com.example.app",
        static_token="service-token",
        policies={"login": {}},
    )

    assert settings.validate_config() == ["A 'default' call site policy is required"]


def test_config_summary_omits_secrets(caplog):
    settings = RelaySettings(
        stub_mode=False,
        package_name="com.example.app",
        static_token="very-secret-service-token",
    )

    with caplog.at_level("INFO"):
        settings.log_config_summary()

    assert "com.example.app" in caplog.text
    assert "very-secret-service-token" not in caplog.text
