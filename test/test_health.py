"""
Tests for the webhook delivery health scan.
"""

from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from callhelm.calls.enums import CallStatus
from callhelm.calls.health import (
    MSG_HEALTHY,
    MSG_HIGH_FAILURES,
    MSG_STALE,
    MSG_UNAVAILABLE,
    HealthMonitor,
    is_timed_out,
)
from callhelm.calls.models import CallRecord
from callhelm.shared.timeutils import utcnow


@pytest.fixture
def monitor(repository) -> HealthMonitor:
    return HealthMonitor(repository)


class TestHealthVerdict:
    @pytest.mark.asyncio
    async def test_quiet_organization_is_healthy(self, monitor) -> None:
        verdict = await monitor.check("org-1")

        assert verdict.healthy
        assert verdict.total_recent_calls == 0
        assert verdict.failure_rate == 0
        assert verdict.message == MSG_HEALTHY

    @pytest.mark.asyncio
    async def test_four_timeouts_out_of_twenty(self, monitor, make_call) -> None:
        now = utcnow()
        for i in range(20):
            if i < 4:
                await make_call(
                    external_id=f"CA_{i}",
                    status=CallStatus.FAILED,
                    age=timedelta(minutes=2),
                    end_time=now,
                    timeout_detected_at=now,
                )
            else:
                await make_call(
                    external_id=f"CA_{i}",
                    status=CallStatus.COMPLETED,
                    age=timedelta(minutes=2),
                    end_time=now,
                )

        verdict = await monitor.check("org-1")

        assert not verdict.healthy
        assert verdict.recent_timeouts == 4
        assert verdict.total_recent_calls == 20
        assert verdict.failure_rate == 20
        assert verdict.active_calls_count == 0
        assert verdict.message == MSG_HIGH_FAILURES

    @pytest.mark.asyncio
    async def test_three_timeouts_is_still_healthy(self, monitor, make_call) -> None:
        now = utcnow()
        for i in range(3):
            await make_call(
                external_id=f"CA_{i}",
                status=CallStatus.FAILED,
                end_time=now,
                failure_reason="Timeout at initiated stage",
            )

        verdict = await monitor.check("org-1")

        assert verdict.healthy
        assert verdict.recent_timeouts == 3
        assert verdict.failure_rate == 100

    @pytest.mark.asyncio
    async def test_open_call_without_webhook_is_stale(self, monitor, make_call) -> None:
        await make_call(age=timedelta(seconds=45))

        verdict = await monitor.check("org-1")

        assert not verdict.healthy
        assert verdict.webhook_stale
        assert verdict.active_calls_count == 1
        assert verdict.message == MSG_STALE

    @pytest.mark.asyncio
    async def test_recent_webhook_keeps_open_call_fresh(self, monitor, make_call) -> None:
        await make_call(
            status=CallStatus.ANSWERED,
            age=timedelta(minutes=3),
            webhook_last_received_at=utcnow() - timedelta(seconds=60),
        )

        verdict = await monitor.check("org-1")

        assert verdict.healthy
        assert not verdict.webhook_stale

    @pytest.mark.asyncio
    async def test_old_webhook_is_stale(self, monitor, make_call) -> None:
        await make_call(
            status=CallStatus.ANSWERED,
            age=timedelta(minutes=5),
            webhook_last_received_at=utcnow() - timedelta(minutes=3),
        )

        verdict = await monitor.check("org-1")

        assert verdict.webhook_stale

    @pytest.mark.asyncio
    async def test_calls_outside_lookback_are_ignored(self, monitor, make_call) -> None:
        await make_call(age=timedelta(minutes=30))

        verdict = await monitor.check("org-1")

        assert verdict.healthy
        assert verdict.total_recent_calls == 0

    @pytest.mark.asyncio
    async def test_query_failure_is_reported_as_unavailable(self) -> None:
        class BrokenRepository:
            async def list_created_since(self, organization_id, since):
                raise OperationalError("SELECT 1", {}, Exception("database is down"))

        verdict = await HealthMonitor(BrokenRepository()).check("org-1")

        assert verdict.healthy
        assert verdict.message == MSG_UNAVAILABLE


def test_is_timed_out() -> None:
    assert is_timed_out(CallRecord(failure_reason="Timeout at ringing stage"))
    assert is_timed_out(CallRecord(timeout_detected_at=utcnow()))
    assert not is_timed_out(CallRecord(failure_reason="busy"))
