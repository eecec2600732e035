"""
Telephony provider factory.

Single source of truth for configuration: TelephonyConfig (pydantic
settings, OS env + .env). Never read raw provider env vars here.
"""

from __future__ import annotations

from functools import lru_cache

from callhelm.shared.logging import get_logger
from callhelm.telephony.adapters.mock import MockTelephonyProvider
from callhelm.telephony.adapters.twilio import SignalWireAdapter, TwilioAdapter
from callhelm.telephony.config import ProviderType, TelephonyConfig
from callhelm.telephony.config import get_telephony_config as _load_telephony_config
from callhelm.telephony.interface import TelephonyProvider

logger = get_logger(__name__)


def _mask(s: str, keep: int = 6) -> str:
    if not s:
        return ""
    if len(s) <= keep:
        return "*" * len(s)
    return f"{s[:keep]}***"


@lru_cache(maxsize=1)
def get_telephony_config() -> TelephonyConfig:
    """Return cached TelephonyConfig loaded from OS env + .env."""
    return _load_telephony_config()


def build_provider(cfg: TelephonyConfig) -> TelephonyProvider:
    """Instantiate the adapter selected by ``cfg.provider_type``."""
    if cfg.provider_type == ProviderType.TWILIO:
        return TwilioAdapter(
            account_sid=cfg.account_sid,
            auth_token=cfg.auth_token,
            timeout=cfg.request_timeout_seconds,
        )

    if cfg.provider_type == ProviderType.SIGNALWIRE:
        if not cfg.signalwire_space_url:
            raise ValueError("TELEPHONY_SIGNALWIRE_SPACE_URL is required for signalwire")
        return SignalWireAdapter(
            project_id=cfg.account_sid,
            auth_token=cfg.auth_token,
            space_url=cfg.signalwire_space_url,
            timeout=cfg.request_timeout_seconds,
        )

    if cfg.provider_type == ProviderType.MOCK:
        return MockTelephonyProvider()

    raise ValueError(f"Unsupported telephony provider_type: {cfg.provider_type}")


@lru_cache(maxsize=1)
def get_telephony_provider() -> TelephonyProvider:
    """Create and cache the telephony provider using TelephonyConfig."""
    cfg = get_telephony_config()

    logger.info(
        "Telephony config resolved",
        extra={
            "provider_type": cfg.provider_type.value,
            "account_sid": _mask(cfg.account_sid),
            "webhook_base_url": cfg.webhook_base_url,
            "verify_signatures": cfg.verify_signatures,
        },
    )
    return build_provider(cfg)
