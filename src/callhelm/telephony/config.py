"""
Telephony provider configuration.

Twilio and SignalWire share the status-callback and signing scheme;
``mock`` is for local runs without a provider account.
"""

from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderType(str, Enum):
    """Supported telephony provider types."""

    TWILIO = "twilio"
    SIGNALWIRE = "signalwire"
    MOCK = "mock"


class TelephonyConfig(BaseSettings):
    """Telephony provider configuration from environment."""

    model_config = SettingsConfigDict(
        env_prefix="TELEPHONY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Provider selection
    provider_type: ProviderType = Field(default=ProviderType.TWILIO)

    # Provider credentials
    account_sid: str = Field(default="")
    auth_token: str = Field(default="")

    # SignalWire space, e.g. example.signalwire.com
    signalwire_space_url: str = Field(default="")

    # Public base URL the provider posts callbacks to; used to rebuild the
    # signed URL when running behind a proxy or tunnel.
    webhook_base_url: str = Field(default="")

    # Webhook handling
    verify_signatures: bool = Field(
        default=True,
        description="Reject status callbacks without a valid provider signature.",
    )
    webhook_ack_malformed: bool = Field(
        default=False,
        description="Answer malformed callbacks with 200 + ignored instead of 400.",
    )

    allowed_source_cidrs: str = Field(
        default="",
        description="Comma-separated CIDR ranges callbacks may come from; empty allows any.",
    )

    request_timeout_seconds: float = Field(default=10.0, gt=0, le=120)

    @property
    def signing_enabled(self) -> bool:
        return self.verify_signatures and bool(self.auth_token)

    @property
    def allowed_source_cidrs_list(self) -> list[str]:
        return [c.strip() for c in self.allowed_source_cidrs.split(",") if c.strip()]


def get_telephony_config() -> TelephonyConfig:
    return TelephonyConfig()
