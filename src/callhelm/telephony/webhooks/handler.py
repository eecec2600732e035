"""
Webhook event handler for processing telephony events.

Resolve the leg, let the reconciler decide, then write with a
version-guarded conditional update. A lost race re-reads the record and
decides again, so every decision is made against the latest status.
"""

from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from callhelm.calls.exceptions import ConcurrentUpdateError, StaleUpdate, UnresolvedLeg
from callhelm.calls.models import CallRecord
from callhelm.calls.repository import CallRecordRepository
from callhelm.reconciliation.reconciler import StatusReconciler
from callhelm.reconciliation.resolver import CallLegResolver
from callhelm.shared.logging import get_logger
from callhelm.shared.timeutils import utcnow
from callhelm.telephony.events import CallStatusEvent, RecordingEvent

logger = get_logger(__name__)

MAX_WRITE_ATTEMPTS = 3


@dataclass(frozen=True)
class WebhookResult:
    """What happened to one callback; ``ignored`` events were valid but unused."""

    ignored: bool
    call_id: str | None = None
    outcome: str | None = None

    def as_ack(self) -> dict[str, Any]:
        body: dict[str, Any] = {"received": True}
        if self.ignored:
            body["ignored"] = True
        return body


class WebhookHandler:
    """Handler for processing telephony webhook events.

    Never raises for data problems: unresolved legs, stale updates and
    exhausted retries are logged and reported as ignored.
    """

    def __init__(
        self,
        session: AsyncSession,
        repository: CallRecordRepository | None = None,
        resolver: CallLegResolver | None = None,
        reconciler: StatusReconciler | None = None,
        correlation_window_seconds: int = 3600,
        max_attempts: int = MAX_WRITE_ATTEMPTS,
    ) -> None:
        """Initialize webhook handler.

        Args:
            session: Async database session.
            repository: Call record store; built from ``session`` if omitted.
            resolver: Leg resolver; built from the repository if omitted.
            reconciler: Status state machine.
            correlation_window_seconds: Look-back for number correlation.
            max_attempts: Conditional write attempts before giving up.
        """
        self._session = session
        self._repository = repository or CallRecordRepository(session)
        self._resolver = resolver or CallLegResolver(
            self._repository,
            correlation_window_seconds=correlation_window_seconds,
        )
        self._reconciler = reconciler or StatusReconciler()
        self._max_attempts = max_attempts

    async def rollback(self) -> None:
        await self._session.rollback()

    async def handle_status_event(self, event: CallStatusEvent) -> WebhookResult:
        """Apply a status callback to its call record.

        Args:
            event: Parsed status event.

        Returns:
            WebhookResult describing the outcome.
        """
        try:
            resolution = await self._resolver.resolve(event)
        except UnresolvedLeg as e:
            logger.warning(
                "Discarding status webhook for unknown leg",
                extra={"leg_sid": e.leg_sid, "provider_status": event.provider_status},
            )
            return WebhookResult(ignored=True, outcome="unresolved")

        record: CallRecord | None = resolution.record
        for attempt in range(1, self._max_attempts + 1):
            decision = self._reconciler.decide(record, event, resolution.leg, now=utcnow())

            if not decision.applied:
                stale = StaleUpdate(record.id, record.status.value, decision.reason or "")
                logger.info(
                    "Status webhook ignored",
                    extra={
                        "call_id": record.id,
                        "leg_sid": event.leg_sid,
                        "leg": resolution.leg.value,
                        "provider_status": event.provider_status,
                        "outcome": decision.outcome.value,
                        "reason": stale.reason,
                    },
                )
                if not decision.has_write:
                    return WebhookResult(True, record.id, decision.outcome.value)

            if await self._repository.conditional_update(record.id, record.version, decision.values):
                await self._session.commit()
                if decision.applied:
                    logger.info(
                        "Call status reconciled",
                        extra={
                            "call_id": record.id,
                            "leg_sid": event.leg_sid,
                            "leg": resolution.leg.value,
                            "matched_by": resolution.matched_by,
                            "provider_status": event.provider_status,
                            "status": decision.status.value,
                            "attempt": attempt,
                        },
                    )
                return WebhookResult(not decision.applied, record.id, decision.outcome.value)

            logger.info(
                "Conditional write lost race, re-reading call",
                extra={"call_id": record.id, "attempt": attempt},
            )
            record = await self._repository.get_by_id(resolution.call_id)
            if record is None:
                return WebhookResult(ignored=True, call_id=resolution.call_id, outcome="missing")

        conflict = ConcurrentUpdateError(resolution.call_id, self._max_attempts)
        logger.error(
            "Giving up on status webhook",
            extra={"call_id": conflict.call_id, "attempts": conflict.attempts, "leg_sid": event.leg_sid},
        )
        return WebhookResult(ignored=True, call_id=resolution.call_id, outcome="conflict")

    async def handle_recording_event(self, event: RecordingEvent) -> WebhookResult:
        """Attach recording fields to the call owning the leg.

        Recordings complete after the call does, so terminal calls accept them.
        """
        record = await self._repository.get_by_leg_sid(event.leg_sid)
        if record is None:
            logger.warning(
                "Discarding recording webhook for unknown leg",
                extra={"leg_sid": event.leg_sid, "recording_sid": event.recording_sid},
            )
            return WebhookResult(ignored=True, outcome="unresolved")

        for _ in range(self._max_attempts):
            metadata = dict(record.call_metadata or {})
            if event.recording_duration is not None:
                metadata["recording_duration"] = event.recording_duration
            values = {
                "recording_url": event.recording_url,
                "recording_sid": event.recording_sid,
                "transcription_status": "pending",
                "call_metadata": metadata,
            }
            if await self._repository.conditional_update(record.id, record.version, values):
                await self._session.commit()
                logger.info(
                    "Recording attached to call",
                    extra={"call_id": record.id, "recording_sid": event.recording_sid},
                )
                return WebhookResult(ignored=False, call_id=record.id, outcome="recording")
            record = await self._repository.get_by_id(record.id)
            if record is None:
                return WebhookResult(ignored=True, outcome="missing")

        logger.error(
            "Giving up on recording webhook",
            extra={"call_id": record.id, "recording_sid": event.recording_sid},
        )
        return WebhookResult(ignored=True, call_id=record.id, outcome="conflict")
