"""
Telephony provider interface definition.

Adapters turn provider webhook payloads into CallStatusEvent objects,
check webhook signatures and hang up calls.
"""

from abc import ABC, abstractmethod
from typing import Any, Mapping

from callhelm.telephony.events import CallStatusEvent, RecordingEvent


class TelephonyProviderError(Exception):
    """Base exception for telephony provider errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        provider_response: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.provider_response = provider_response or {}


class WebhookParseError(TelephonyProviderError):
    """Error parsing webhook event."""


class MalformedWebhook(WebhookParseError):
    """Webhook lacks the leg SID or one of the phone numbers."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(
            f"Webhook payload missing required fields: {', '.join(missing)}",
            error_code="malformed_webhook",
        )


class InvalidWebhookSignature(TelephonyProviderError):
    """Webhook signature absent or not matching the payload."""


class ProviderUnreachable(TelephonyProviderError):
    """Provider API could not be reached or rejected the request."""


class TelephonyProvider(ABC):
    """Abstract interface for telephony providers."""

    name: str = "provider"
    signature_headers: tuple[str, ...] = ()

    @abstractmethod
    def parse_webhook_event(
        self,
        payload: Mapping[str, Any],
    ) -> CallStatusEvent:
        """Parse a status callback from the provider.

        Raises:
            MalformedWebhook: If the leg SID or either number is missing.
        """
        ...

    @abstractmethod
    def parse_recording_event(
        self,
        payload: Mapping[str, Any],
    ) -> RecordingEvent:
        """Parse a recording-complete callback from the provider."""
        ...

    @abstractmethod
    def validate_webhook_signature(
        self,
        params: Mapping[str, Any],
        signature: str | None,
        url: str,
    ) -> bool:
        """Validate webhook signature for authenticity."""
        ...

    @abstractmethod
    async def hangup_call(self, leg_sid: str) -> None:
        """Ask the provider to terminate a call leg.

        Raises:
            ProviderUnreachable: If the provider could not be reached.
        """
        ...

    async def close(self) -> None:
        """Release provider resources."""
        return None
