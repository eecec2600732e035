"""
Orphaned call sweep.

Closes calls whose client watchdog went away (tab closed, network lost)
before the provider ever reported a final status. Runs every minute from
the app lifespan and on demand through the cleanup endpoint.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from callhelm.calls.enums import CallStatus
from callhelm.calls.models import CallRecord
from callhelm.calls.repository import CallRecordRepository
from callhelm.shared.logging import get_logger
from callhelm.shared.timeutils import as_utc, utcnow

logger = get_logger(__name__)


@dataclass(frozen=True)
class SweepRule:
    """Open calls in ``statuses`` older than ``after`` are closed as ``close_as``.

    ``provider_statuses`` narrows the match to the last provider-native status
    recorded in ``metadata.call_status``.
    """

    statuses: tuple[CallStatus, ...]
    provider_statuses: tuple[str, ...]
    after: timedelta
    close_as: CallStatus
    reason: str


class OrphanSweeper:
    """Closes open calls stuck in a setup stage. Idempotent."""

    def __init__(
        self,
        session: AsyncSession,
        repository: CallRecordRepository | None = None,
        initiated_after_seconds: int = 120,
        ringing_after_seconds: int = 180,
    ) -> None:
        self._session = session
        self._repository = repository or CallRecordRepository(session)
        # contact-connected calls are live conversations and never swept
        self._rules = (
            SweepRule(
                statuses=(CallStatus.INITIATED,),
                provider_statuses=("queued", "initiated"),
                after=timedelta(seconds=initiated_after_seconds),
                close_as=CallStatus.FAILED,
                reason="stuck_initiated",
            ),
            SweepRule(
                statuses=(CallStatus.RINGING, CallStatus.ANSWERED),
                provider_statuses=("ringing", "answered"),
                after=timedelta(seconds=ringing_after_seconds),
                close_as=CallStatus.NO_ANSWER,
                reason="stuck_ringing",
            ),
        )

    @staticmethod
    def _is_orphaned(record: CallRecord, rule: SweepRule, now: datetime) -> bool:
        metadata = record.call_metadata or {}
        provider_status = (
            metadata.get("call_status") or metadata.get("initial_status") or record.status.value
        )
        if str(provider_status).lower() not in rule.provider_statuses:
            # e.g. "in-progress": the primary leg is live
            return False
        last_webhook = as_utc(record.webhook_last_received_at)
        return last_webhook is None or last_webhook < now - rule.after

    def _close_values(self, record: CallRecord, rule: SweepRule, now: datetime) -> dict:
        metadata = dict(record.call_metadata or {})
        metadata.update(
            call_status=rule.close_as.value,
            auto_closed=True,
            cleanup_reason=rule.reason,
            cleanup_at=now.isoformat(),
        )
        return {
            "status": rule.close_as,
            "end_time": now,
            "call_metadata": metadata,
        }

    async def sweep(self, now: datetime | None = None) -> int:
        """Close every orphaned call once.

        Returns:
            Number of calls closed by this run.
        """
        now = now or utcnow()
        cleaned = 0
        for rule in self._rules:
            candidates = await self._repository.list_open_older_than(rule.statuses, now - rule.after)
            for record in candidates:
                if not self._is_orphaned(record, rule, now):
                    continue
                values = self._close_values(record, rule, now)
                if await self._repository.conditional_update(record.id, record.version, values):
                    cleaned += 1
                else:
                    # A webhook got there first; the call is no longer orphaned.
                    logger.info(
                        "Skipping orphan changed during sweep",
                        extra={"call_id": record.id},
                    )
        await self._session.commit()

        if cleaned:
            logger.info("Orphaned calls closed", extra={"cleaned_count": cleaned})
        return cleaned
