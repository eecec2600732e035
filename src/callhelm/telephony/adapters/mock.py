"""
Mock provider for local development and tests.

Accepts Twilio-shaped callbacks, trusts every signature and records hangups
instead of calling any API.
"""

from dataclasses import dataclass, field
from typing import Any, Mapping

from callhelm.shared.logging import get_logger
from callhelm.telephony.adapters.twilio import parse_recording_form, parse_status_form
from callhelm.telephony.events import CallStatusEvent, RecordingEvent
from callhelm.telephony.interface import ProviderUnreachable, TelephonyProvider

logger = get_logger(__name__)


@dataclass
class MockTelephonyProvider(TelephonyProvider):
    """In-memory provider; set ``fail_hangup`` to simulate an unreachable API."""

    name = "mock"
    fail_hangup: bool = False
    hangups: list[str] = field(default_factory=list)

    def parse_webhook_event(self, payload: Mapping[str, Any]) -> CallStatusEvent:
        return parse_status_form(payload)

    def parse_recording_event(self, payload: Mapping[str, Any]) -> RecordingEvent:
        return parse_recording_form(payload)

    def validate_webhook_signature(
        self,
        params: Mapping[str, Any],
        signature: str | None,
        url: str,
    ) -> bool:
        return True

    async def hangup_call(self, leg_sid: str) -> None:
        if self.fail_hangup:
            raise ProviderUnreachable(f"mock provider unreachable for {leg_sid}")
        logger.info("Mock hangup", extra={"leg_sid": leg_sid})
        self.hangups.append(leg_sid)
