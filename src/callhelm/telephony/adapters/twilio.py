"""
Twilio-compatible telephony provider adapters.

SignalWire's LaML API mirrors Twilio's: same callback fields, same
signing scheme, same REST shape under a per-space base URL.
"""

from typing import Any, Mapping

import httpx

from callhelm.shared.logging import get_logger
from callhelm.telephony.events import CallStatusEvent, RecordingEvent
from callhelm.telephony.interface import (
    MalformedWebhook,
    ProviderUnreachable,
    TelephonyProvider,
)
from callhelm.telephony.signatures import verify_twilio_signature

logger = get_logger(__name__)

REQUIRED_STATUS_FIELDS = ("CallSid", "From", "To")
REQUIRED_RECORDING_FIELDS = ("CallSid", "RecordingSid", "RecordingUrl")


def _field(payload: Mapping[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_seconds(value: Any) -> int | None:
    """Parse a whole-second count; non-numeric input is treated as absent."""
    if value is None:
        return None
    text = str(value).strip()
    # isdigit() alone admits superscripts and other non-ASCII digits
    if not (text.isascii() and text.isdigit()):
        return None
    return int(text)


def parse_status_form(payload: Mapping[str, Any]) -> CallStatusEvent:
    """Parse a Twilio-style status callback form into a CallStatusEvent.

    Raises:
        MalformedWebhook: If CallSid, From or To is missing.
    """
    missing = [key for key in REQUIRED_STATUS_FIELDS if not _field(payload, key)]
    if missing:
        raise MalformedWebhook(missing)

    return CallStatusEvent(
        leg_sid=_field(payload, "CallSid"),
        provider_status=(_field(payload, "CallStatus") or "").lower(),
        from_number=_field(payload, "From"),
        to_number=_field(payload, "To"),
        duration_seconds=parse_seconds(payload.get("CallDuration")),
        direction=_field(payload, "Direction"),
        recording_url=_field(payload, "RecordingUrl"),
        recording_sid=_field(payload, "RecordingSid"),
    )


def parse_recording_form(payload: Mapping[str, Any]) -> RecordingEvent:
    """Parse a Twilio-style recording-complete callback form.

    Raises:
        MalformedWebhook: If CallSid, RecordingSid or RecordingUrl is missing.
    """
    missing = [key for key in REQUIRED_RECORDING_FIELDS if not _field(payload, key)]
    if missing:
        raise MalformedWebhook(missing)

    return RecordingEvent(
        leg_sid=_field(payload, "CallSid"),
        recording_sid=_field(payload, "RecordingSid"),
        recording_url=_field(payload, "RecordingUrl"),
        recording_duration=parse_seconds(payload.get("RecordingDuration")),
    )


class TwilioAdapter(TelephonyProvider):
    """Twilio-compatible telephony provider adapter.

    Implements the TelephonyProvider interface for Twilio's REST API
    and webhook format.
    """

    name = "twilio"
    signature_headers: tuple[str, ...] = ("X-Twilio-Signature",)

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        base_url: str = "https://api.twilio.com",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize Twilio adapter.

        Args:
            account_sid: Twilio account SID.
            auth_token: Twilio auth token; also the webhook signing key.
            base_url: Twilio API base URL.
            timeout: HTTP request timeout in seconds.
            transport: Optional httpx transport (tests).
        """
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                auth=(self._account_sid, self._auth_token),
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    def _call_url(self, leg_sid: str) -> str:
        return f"{self._base_url}/2010-04-01/Accounts/{self._account_sid}/Calls/{leg_sid}.json"

    def parse_webhook_event(self, payload: Mapping[str, Any]) -> CallStatusEvent:
        """Parse Twilio status callback form data into a CallStatusEvent.

        Args:
            payload: Form fields merged with query parameters.

        Returns:
            Parsed CallStatusEvent.

        Raises:
            MalformedWebhook: If CallSid, From or To is missing.
        """
        return parse_status_form(payload)

    def parse_recording_event(self, payload: Mapping[str, Any]) -> RecordingEvent:
        return parse_recording_form(payload)

    def validate_webhook_signature(
        self,
        params: Mapping[str, Any],
        signature: str | None,
        url: str,
    ) -> bool:
        """Validate Twilio webhook signature.

        Args:
            params: POST form parameters exactly as received.
            signature: Signature header value.
            url: Full public URL the provider posted to, query string included.

        Returns:
            True if signature is valid.
        """
        return verify_twilio_signature(self._auth_token, signature, url, params)

    async def hangup_call(self, leg_sid: str) -> None:
        """Complete a live call leg via the REST API.

        Raises:
            ProviderUnreachable: If the request fails or the API rejects it.
        """
        client = await self._get_client()
        logger.info(
            "Requesting provider hangup",
            extra={"provider": self.name, "leg_sid": leg_sid},
        )
        try:
            response = await client.post(self._call_url(leg_sid), data={"Status": "completed"})
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            error_data: dict[str, Any] = {}
            try:
                error_data = e.response.json()
            except ValueError:
                pass
            logger.error(
                "Provider hangup rejected",
                extra={
                    "provider": self.name,
                    "leg_sid": leg_sid,
                    "status_code": e.response.status_code,
                    "error": error_data,
                },
            )
            raise ProviderUnreachable(
                f"{self.name} API error: {e.response.status_code}",
                error_code=str(error_data.get("code", "unknown")),
                provider_response=error_data,
            ) from e
        except httpx.RequestError as e:
            logger.error(
                "Provider request failed",
                extra={"provider": self.name, "leg_sid": leg_sid, "error": str(e)},
            )
            raise ProviderUnreachable(f"{self.name} request failed: {e}") from e


class SignalWireAdapter(TwilioAdapter):
    """SignalWire LaML adapter; the project ID plays the account SID role."""

    name = "signalwire"
    signature_headers = ("X-SignalWire-Signature", "X-Twilio-Signature")

    def __init__(
        self,
        project_id: str,
        auth_token: str,
        space_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        space = space_url.removeprefix("https://").removeprefix("http://").rstrip("/")
        super().__init__(
            account_sid=project_id,
            auth_token=auth_token,
            base_url=f"https://{space}/api/laml",
            timeout=timeout,
            transport=transport,
        )
