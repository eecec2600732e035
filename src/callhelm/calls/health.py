"""
Webhook delivery health scan.

Advisory only: the verdict is for dashboards and never gates call placement.
"""

from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError

from callhelm.calls.models import CallRecord
from callhelm.calls.repository import CallRecordRepository
from callhelm.calls.schemas import HealthResponse
from callhelm.shared.logging import get_logger
from callhelm.shared.timeutils import as_utc, utcnow

logger = get_logger(__name__)

MSG_HIGH_FAILURES = "High number of call failures detected"
MSG_STALE = "Call system not receiving updates"
MSG_HEALTHY = "System healthy"
MSG_UNAVAILABLE = "Unable to check system health"


def is_timed_out(record: CallRecord) -> bool:
    if record.timeout_detected_at is not None:
        return True
    return "timeout" in (record.failure_reason or "").lower()


class HealthMonitor:
    """Scans one organization's recent calls for timeouts and webhook staleness."""

    def __init__(
        self,
        repository: CallRecordRepository,
        lookback_minutes: int = 10,
        max_recent_timeouts: int = 3,
        no_webhook_after_seconds: int = 30,
        stale_webhook_after_seconds: int = 120,
    ) -> None:
        self._repository = repository
        self._lookback = timedelta(minutes=lookback_minutes)
        self._max_recent_timeouts = max_recent_timeouts
        self._no_webhook_after = timedelta(seconds=no_webhook_after_seconds)
        self._stale_webhook_after = timedelta(seconds=stale_webhook_after_seconds)

    def _is_stale(self, record: CallRecord, now: datetime) -> bool:
        last_webhook = as_utc(record.webhook_last_received_at)
        if last_webhook is None:
            return now - as_utc(record.created_at) > self._no_webhook_after
        return now - last_webhook > self._stale_webhook_after

    async def check(self, organization_id: str, now: datetime | None = None) -> HealthResponse:
        """Compute the health verdict for an organization.

        Args:
            organization_id: Organization to scan.
            now: Scan time; defaults to the current UTC time.

        Returns:
            HealthResponse. Query failures yield a healthy verdict with
            an "unable to check" message.
        """
        now = now or utcnow()
        try:
            recent = await self._repository.list_created_since(organization_id, now - self._lookback)
        except SQLAlchemyError:
            logger.exception(
                "Health scan query failed",
                extra={"organization_id": organization_id},
            )
            return HealthResponse(healthy=True, message=MSG_UNAVAILABLE)

        timed_out = sum(1 for record in recent if is_timed_out(record))
        open_calls = [record for record in recent if record.end_time is None]
        webhook_stale = any(self._is_stale(record, now) for record in open_calls)

        total = len(recent)
        too_many_timeouts = timed_out > self._max_recent_timeouts
        if too_many_timeouts:
            message = MSG_HIGH_FAILURES
        elif webhook_stale:
            message = MSG_STALE
        else:
            message = MSG_HEALTHY

        verdict = HealthResponse(
            healthy=not too_many_timeouts and not webhook_stale,
            recent_timeouts=timed_out,
            webhook_stale=webhook_stale,
            total_recent_calls=total,
            active_calls_count=len(open_calls),
            failure_rate=round(100 * timed_out / total) if total else 0,
            message=message,
        )
        if not verdict.healthy:
            logger.warning(
                "Call system health degraded",
                extra={
                    "organization_id": organization_id,
                    "recent_timeouts": timed_out,
                    "webhook_stale": webhook_stale,
                    "total_recent_calls": total,
                },
            )
        return verdict
