"""
HTTP tests for the telephony webhook endpoints.
"""

import pytest

from callhelm.calls.enums import CallStatus
from callhelm.telephony.adapters.mock import MockTelephonyProvider
from callhelm.telephony.adapters.twilio import TwilioAdapter
from callhelm.telephony.config import TelephonyConfig
from callhelm.telephony.signatures import compute_twilio_signature
from callhelm.telephony.webhooks import router as webhook_router

STATUS_URL = "/webhooks/telephony/status"
RECORDING_URL = "/webhooks/telephony/recording"
AUTH_TOKEN = "test-auth-token"


def status_form(call_sid: str = "CA_primary", status: str = "ringing", **extra: str) -> dict[str, str]:
    form = {
        "CallSid": call_sid,
        "CallStatus": status,
        "From": "+16138000000",
        "To": "+16135550199",
    }
    form.update(extra)
    return form


def use_provider(app, provider, cfg: TelephonyConfig) -> None:
    app.dependency_overrides[webhook_router.get_telephony_provider] = lambda: provider
    app.dependency_overrides[webhook_router.get_webhook_config] = lambda: cfg


@pytest.fixture
def unsigned(app) -> None:
    use_provider(app, MockTelephonyProvider(), TelephonyConfig(verify_signatures=False))


@pytest.fixture
def signed(app) -> TwilioAdapter:
    adapter = TwilioAdapter(account_sid="AC123", auth_token=AUTH_TOKEN)
    use_provider(
        app,
        adapter,
        TelephonyConfig(verify_signatures=True, auth_token=AUTH_TOKEN, account_sid="AC123"),
    )
    return adapter


class TestStatusCallback:
    @pytest.mark.asyncio
    async def test_status_update_is_applied(self, client, unsigned, make_call, fetch_call) -> None:
        call = await make_call()

        response = await client.post(STATUS_URL, data=status_form(status="completed", CallDuration="42"))

        assert response.status_code == 200
        assert response.json() == {"received": True}
        stored = await fetch_call(call.id)
        assert stored.status == CallStatus.COMPLETED
        assert stored.duration == 42

    @pytest.mark.asyncio
    async def test_stale_update_is_acknowledged_as_ignored(
        self, client, unsigned, make_call, fetch_call
    ) -> None:
        call = await make_call(status=CallStatus.COMPLETED)

        response = await client.post(STATUS_URL, data=status_form(status="ringing"))

        assert response.status_code == 200
        assert response.json() == {"received": True, "ignored": True}
        assert (await fetch_call(call.id)).status == CallStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_unknown_leg_is_acknowledged(self, client, unsigned) -> None:
        response = await client.post(STATUS_URL, data=status_form(call_sid="CA_ghost"))

        assert response.status_code == 200
        assert response.json() == {"received": True, "ignored": True}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("duration", ["abc", "4²"])
    async def test_non_numeric_duration_is_treated_as_absent(
        self, client, unsigned, make_call, fetch_call, duration
    ) -> None:
        call = await make_call(status=CallStatus.ANSWERED)

        response = await client.post(
            STATUS_URL, data=status_form(status="completed", CallDuration=duration)
        )

        assert response.status_code == 200
        stored = await fetch_call(call.id)
        assert stored.status == CallStatus.COMPLETED
        assert stored.duration is None
        assert stored.end_time is not None

    @pytest.mark.asyncio
    async def test_missing_fields_are_rejected(self, client, unsigned) -> None:
        response = await client.post(STATUS_URL, data={"CallSid": "CA_primary", "CallStatus": "ringing"})

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_missing_fields_acknowledged_when_configured(self, app, client) -> None:
        use_provider(
            app,
            MockTelephonyProvider(),
            TelephonyConfig(verify_signatures=False, webhook_ack_malformed=True),
        )

        response = await client.post(STATUS_URL, data={"CallStatus": "ringing"})

        assert response.status_code == 200
        assert response.json() == {"received": True, "ignored": True}

    @pytest.mark.asyncio
    async def test_processing_error_still_acknowledged(
        self, app, client, unsigned, make_call, monkeypatch
    ) -> None:
        await make_call()

        async def boom(self, event):
            raise RuntimeError("database exploded")

        monkeypatch.setattr(
            "callhelm.telephony.webhooks.handler.WebhookHandler.handle_status_event", boom
        )

        response = await client.post(STATUS_URL, data=status_form())

        assert response.status_code == 200
        assert response.json() == {"received": True}


class TestSignatures:
    @pytest.mark.asyncio
    async def test_missing_signature_is_forbidden(self, client, signed, make_call, fetch_call) -> None:
        call = await make_call()

        response = await client.post(STATUS_URL, data=status_form(status="completed"))

        assert response.status_code == 403
        assert (await fetch_call(call.id)).status == CallStatus.INITIATED

    @pytest.mark.asyncio
    async def test_bad_signature_is_forbidden(self, client, signed) -> None:
        response = await client.post(
            STATUS_URL,
            data=status_form(),
            headers={"X-Twilio-Signature": "bm90LXRoZS1yaWdodC1zaWc="},
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_valid_signature_is_accepted(self, client, signed, make_call, fetch_call) -> None:
        call = await make_call()
        form = status_form(status="ringing")
        signature = compute_twilio_signature(AUTH_TOKEN, f"http://testserver{STATUS_URL}", form)

        response = await client.post(STATUS_URL, data=form, headers={"X-Twilio-Signature": signature})

        assert response.status_code == 200
        assert (await fetch_call(call.id)).status == CallStatus.RINGING

    @pytest.mark.asyncio
    async def test_signature_uses_configured_public_url(self, app, client, make_call) -> None:
        await make_call()
        adapter = TwilioAdapter(account_sid="AC123", auth_token=AUTH_TOKEN)
        use_provider(
            app,
            adapter,
            TelephonyConfig(
                verify_signatures=True,
                auth_token=AUTH_TOKEN,
                webhook_base_url="https://hooks.example.com/",
            ),
        )
        form = status_form()
        signature = compute_twilio_signature(AUTH_TOKEN, f"https://hooks.example.com{STATUS_URL}", form)

        response = await client.post(STATUS_URL, data=form, headers={"X-Twilio-Signature": signature})

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_source_outside_allowlist_is_forbidden(self, app, client) -> None:
        use_provider(
            app,
            MockTelephonyProvider(),
            TelephonyConfig(verify_signatures=False, allowed_source_cidrs="10.0.0.0/8"),
        )

        response = await client.post(STATUS_URL, data=status_form())

        assert response.status_code == 403


class TestRecordingCallback:
    @pytest.mark.asyncio
    async def test_recording_is_attached(self, client, unsigned, make_call, fetch_call) -> None:
        call = await make_call(status=CallStatus.COMPLETED)

        response = await client.post(
            RECORDING_URL,
            data={
                "CallSid": "CA_primary",
                "RecordingSid": "RE1",
                "RecordingUrl": "https://api.example.com/rec/RE1",
                "RecordingDuration": "12",
            },
        )

        assert response.status_code == 200
        assert response.json() == {"received": True}
        stored = await fetch_call(call.id)
        assert stored.recording_sid == "RE1"
        assert stored.call_metadata["recording_duration"] == 12

    @pytest.mark.asyncio
    async def test_malformed_recording_is_acknowledged(self, client, unsigned) -> None:
        response = await client.post(RECORDING_URL, data={"CallSid": "CA_primary"})

        assert response.status_code == 200
        assert response.json() == {"received": True, "ignored": True}
