"""
Tests for the orphaned call sweep.
"""

from datetime import timedelta

import pytest

from callhelm.calls.enums import CallStatus
from callhelm.calls.sweeper import OrphanSweeper
from callhelm.shared.timeutils import utcnow
from callhelm.telephony.events import CallStatusEvent
from callhelm.telephony.webhooks.handler import WebhookHandler


def status_event(status: str, **fields) -> CallStatusEvent:
    return CallStatusEvent(
        leg_sid="CA_primary",
        provider_status=status,
        from_number="+16138000000",
        to_number="+16135550199",
        **fields,
    )


@pytest.fixture
def sweeper(db_session) -> OrphanSweeper:
    return OrphanSweeper(db_session, initiated_after_seconds=120, ringing_after_seconds=180)


class TestOrphanSweep:
    @pytest.mark.asyncio
    async def test_stuck_initiated_call_is_failed(self, sweeper, make_call, fetch_call) -> None:
        call = await make_call(age=timedelta(minutes=3))

        cleaned = await sweeper.sweep()

        assert cleaned == 1
        stored = await fetch_call(call.id)
        assert stored.status == CallStatus.FAILED
        assert stored.end_time is not None
        assert stored.call_metadata["auto_closed"] is True
        assert stored.call_metadata["cleanup_reason"] == "stuck_initiated"
        assert stored.call_metadata["initial_status"] == "initiated"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "provider_status"),
        [(CallStatus.RINGING, "ringing"), (CallStatus.ANSWERED, "answered")],
    )
    async def test_stuck_ringing_call_is_no_answer(
        self, sweeper, make_call, fetch_call, status, provider_status
    ) -> None:
        call = await make_call(
            status=status,
            age=timedelta(minutes=4),
            metadata={"call_status": provider_status},
        )

        assert await sweeper.sweep() == 1

        stored = await fetch_call(call.id)
        assert stored.status == CallStatus.NO_ANSWER
        assert stored.call_metadata["cleanup_reason"] == "stuck_ringing"
        assert stored.call_metadata["call_status"] == "no-answer"

    @pytest.mark.asyncio
    async def test_thresholds_are_respected(self, sweeper, make_call, fetch_call) -> None:
        initiated = await make_call(external_id="CA_1", age=timedelta(seconds=90))
        ringing = await make_call(external_id="CA_2", status=CallStatus.RINGING, age=timedelta(seconds=150))

        assert await sweeper.sweep() == 0

        assert (await fetch_call(initiated.id)).status == CallStatus.INITIATED
        assert (await fetch_call(ringing.id)).status == CallStatus.RINGING

    @pytest.mark.asyncio
    async def test_connected_and_ended_calls_are_left_alone(self, sweeper, make_call, fetch_call) -> None:
        connected = await make_call(
            external_id="CA_1", status=CallStatus.CONTACT_CONNECTED, age=timedelta(hours=1)
        )
        ended = await make_call(
            external_id="CA_2", status=CallStatus.RINGING, age=timedelta(hours=1), end_time=utcnow()
        )

        assert await sweeper.sweep() == 0

        assert (await fetch_call(connected.id)).status == CallStatus.CONTACT_CONNECTED
        assert (await fetch_call(ended.id)).status == CallStatus.RINGING

    @pytest.mark.asyncio
    async def test_in_progress_call_is_not_swept(self, sweeper, make_call, fetch_call) -> None:
        call = await make_call(
            status=CallStatus.ANSWERED,
            age=timedelta(minutes=10),
            metadata={"call_status": "in-progress"},
        )

        assert await sweeper.sweep() == 0
        assert (await fetch_call(call.id)).status == CallStatus.ANSWERED

    @pytest.mark.asyncio
    async def test_recent_webhook_keeps_ringing_call_open(self, sweeper, make_call, fetch_call) -> None:
        call = await make_call(
            status=CallStatus.RINGING,
            age=timedelta(minutes=4),
            metadata={"call_status": "ringing"},
            webhook_last_received_at=utcnow() - timedelta(seconds=20),
        )

        assert await sweeper.sweep() == 0
        assert (await fetch_call(call.id)).status == CallStatus.RINGING

    @pytest.mark.asyncio
    async def test_live_call_survives_sweep_and_completes(
        self, sweeper, db_session, make_call, fetch_call
    ) -> None:
        call = await make_call(age=timedelta(minutes=4))
        handler = WebhookHandler(db_session)
        await handler.handle_status_event(status_event("in-progress"))

        assert await sweeper.sweep() == 0

        result = await handler.handle_status_event(status_event("completed", duration_seconds=240))
        assert result.outcome == "applied"
        stored = await fetch_call(call.id)
        assert stored.status == CallStatus.COMPLETED
        assert stored.duration == 240
        assert "cleanup_reason" not in stored.call_metadata

    @pytest.mark.asyncio
    async def test_sweep_is_idempotent(self, sweeper, make_call) -> None:
        await make_call(age=timedelta(minutes=10))

        assert await sweeper.sweep() == 1
        assert await sweeper.sweep() == 0

    @pytest.mark.asyncio
    async def test_sweep_covers_every_organization(self, sweeper, make_call) -> None:
        await make_call(external_id="CA_1", organization_id="org-1", age=timedelta(minutes=10))
        await make_call(external_id="CA_2", organization_id="org-2", age=timedelta(minutes=10))

        assert await sweeper.sweep() == 2
