"""
Tests for application and telephony configuration.
"""

import pytest
from pydantic import ValidationError

from callhelm.config import Settings, get_settings
from callhelm.main import _advisory_lock_id
from callhelm.telephony.config import (
    ProviderType,
    TelephonyConfig,
    get_telephony_config,
)


class TestSettings:
    def test_declared_defaults(self) -> None:
        # Environment variables may override runtime values; check the model fields.
        fields = Settings.model_fields
        assert fields["orphan_initiated_after_seconds"].default == 120
        assert fields["orphan_ringing_after_seconds"].default == 180
        assert fields["leg_correlation_window_seconds"].default == 3600
        assert fields["health_lookback_minutes"].default == 10
        assert fields["health_max_recent_timeouts"].default == 3
        assert fields["sweeper_enabled"].default is False

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LEG_CORRELATION_WINDOW_SECONDS", "600")
        monkeypatch.setenv("CORS_ORIGINS", "https://a.example, https://b.example")

        settings = get_settings()

        assert settings.leg_correlation_window_seconds == 600
        assert settings.cors_origins_list == ["https://a.example", "https://b.example"]

    def test_rejects_tiny_sweep_interval(self) -> None:
        with pytest.raises(ValidationError):
            Settings(sweeper_interval_seconds=1)

    def test_advisory_lock_id_is_stable_and_positive(self) -> None:
        first = _advisory_lock_id("callhelm_orphan_sweeper_v1")

        assert first == _advisory_lock_id("callhelm_orphan_sweeper_v1")
        assert first != _advisory_lock_id("other")
        assert 0 <= first < 2**63


class TestTelephonyConfig:
    def test_default_provider(self) -> None:
        default = TelephonyConfig.model_fields["provider_type"].default
        assert default == ProviderType.TWILIO

    def test_signing_requires_token(self) -> None:
        assert not TelephonyConfig(verify_signatures=True, auth_token="").signing_enabled
        assert not TelephonyConfig(verify_signatures=False, auth_token="t").signing_enabled
        assert TelephonyConfig(verify_signatures=True, auth_token="t").signing_enabled

    def test_allowed_cidrs_list(self) -> None:
        config = TelephonyConfig(allowed_source_cidrs=" 10.0.0.0/8, ,192.168.1.1 ")

        assert config.allowed_source_cidrs_list == ["10.0.0.0/8", "192.168.1.1"]

    def test_environment_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TELEPHONY_PROVIDER_TYPE", "signalwire")
        monkeypatch.setenv("TELEPHONY_SIGNALWIRE_SPACE_URL", "example.signalwire.com")

        config = get_telephony_config()

        assert config.provider_type == ProviderType.SIGNALWIRE
        assert config.signalwire_space_url == "example.signalwire.com"

    def test_provider_types(self) -> None:
        assert [p.value for p in ProviderType] == ["twilio", "signalwire", "mock"]
