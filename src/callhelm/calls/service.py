"""
Call status service: status reads, user end-call and watchdog timeout marks.

Writes go through StatusReconciler and the version-guarded conditional
update, the same path webhook callbacks take.
"""

from collections.abc import Callable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from callhelm.calls.exceptions import CallNotFoundError, ConcurrentUpdateError, StaleUpdate
from callhelm.calls.models import CallRecord
from callhelm.calls.repository import CallRecordRepository
from callhelm.calls.schemas import CallStatusResponse, EndCallResponse, TimeoutResponse
from callhelm.reconciliation.reconciler import ReconcileDecision, StatusReconciler
from callhelm.shared.logging import get_logger
from callhelm.shared.timeutils import as_utc
from callhelm.telephony.interface import ProviderUnreachable, TelephonyProvider

logger = get_logger(__name__)

MAX_WRITE_ATTEMPTS = 3


def display_status(record: CallRecord) -> str:
    """Provider-native status when recorded, then the initial status, then the enum."""
    metadata = record.call_metadata or {}
    return metadata.get("call_status") or metadata.get("initial_status") or record.status.value


class CallStatusService:
    """Service for client-facing call status operations."""

    def __init__(
        self,
        session: AsyncSession,
        provider: TelephonyProvider | None = None,
        repository: CallRecordRepository | None = None,
        reconciler: StatusReconciler | None = None,
        max_attempts: int = MAX_WRITE_ATTEMPTS,
    ) -> None:
        """Initialize service.

        Args:
            session: Async database session.
            provider: Telephony provider used for best-effort hangups.
            repository: Call record store; built from ``session`` if omitted.
            reconciler: Status state machine.
            max_attempts: Conditional write attempts before giving up.
        """
        self._session = session
        self._provider = provider
        self._repository = repository or CallRecordRepository(session)
        self._reconciler = reconciler or StatusReconciler()
        self._max_attempts = max_attempts

    async def _get_record(self, call_id: str) -> CallRecord:
        record = await self._repository.get_by_id(call_id)
        if record is None:
            raise CallNotFoundError(call_id)
        return record

    async def _reconcile_write(
        self,
        record: CallRecord,
        decide: Callable[[CallRecord], ReconcileDecision],
    ) -> tuple[CallRecord, ReconcileDecision]:
        """Decide and write, re-reading and re-deciding when the write loses a race."""
        call_id = record.id
        for _ in range(self._max_attempts):
            decision = decide(record)
            if not decision.has_write:
                return record, decision
            if await self._repository.conditional_update(call_id, record.version, decision.values):
                await self._session.commit()
                return await self._get_record(call_id), decision
            record = await self._get_record(call_id)
        raise ConcurrentUpdateError(call_id, self._max_attempts)

    async def get_status(self, call_id: str) -> CallStatusResponse:
        """Get the status snapshot polled by the client watchdog.

        Raises:
            CallNotFoundError: If the call does not exist.
        """
        record = await self._get_record(call_id)
        return CallStatusResponse(
            call_id=record.id,
            status=display_status(record),
            start_time=as_utc(record.start_time),
            end_time=as_utc(record.end_time),
            duration=record.duration,
            external_id=record.external_id,
        )

    async def _hangup_legs(self, record: CallRecord) -> bool:
        """Ask the provider to hang up every known leg; failures are logged only."""
        if self._provider is None:
            return False
        legs = [sid for sid in (record.external_id, record.contact_call_sid) if sid]
        if not legs:
            return False
        acknowledged = True
        for leg_sid in legs:
            try:
                await self._provider.hangup_call(leg_sid)
            except ProviderUnreachable as e:
                acknowledged = False
                logger.warning(
                    "Provider hangup failed, ending call locally",
                    extra={"call_id": record.id, "leg_sid": leg_sid, "error": str(e)},
                )
        return acknowledged

    async def end_call(
        self,
        call_id: str,
        ended_by: str,
        force: bool = False,
    ) -> EndCallResponse:
        """End a call on behalf of a user.

        Args:
            call_id: Internal call ID.
            ended_by: Identifier of the user ending the call.
            force: Replace an existing terminal status with canceled.

        Returns:
            EndCallResponse; ``already_ended`` when a terminal status was kept.

        Raises:
            CallNotFoundError: If the call does not exist.
            ConcurrentUpdateError: If every write attempt lost a race.
        """
        record = await self._get_record(call_id)
        hangup_ok = False
        if not record.status.is_terminal:
            hangup_ok = await self._hangup_legs(record)

        record, decision = await self._reconcile_write(
            record,
            lambda current: self._reconciler.decide_end_call(current, ended_by, force=force),
        )

        logger.info(
            "End call processed",
            extra={
                "call_id": call_id,
                "ended_by": ended_by,
                "force": force,
                "outcome": decision.outcome.value,
                "status": decision.status.value,
            },
        )
        return EndCallResponse(
            success=True,
            call_id=call_id,
            status=decision.status.value,
            already_ended=not decision.applied,
            provider_hangup=hangup_ok,
        )

    async def mark_timeout(
        self,
        call_id: str,
        stage: str,
        timeout_at: datetime | None = None,
    ) -> TimeoutResponse:
        """Record a watchdog-declared setup timeout.

        Raises:
            CallNotFoundError: If the call does not exist.
            StaleUpdate: If the call is already terminal or ended.
        """
        record = await self._get_record(call_id)
        record, decision = await self._reconcile_write(
            record,
            lambda current: self._reconciler.decide_timeout(current, stage, timeout_at),
        )
        if not decision.applied:
            logger.info(
                "Timeout mark rejected",
                extra={"call_id": call_id, "stage": stage, "status": record.status.value},
            )
            raise StaleUpdate(call_id, record.status.value, decision.reason or "call already ended")

        logger.info(
            "Call marked as timed out",
            extra={"call_id": call_id, "stage": stage},
        )
        return TimeoutResponse(
            success=True,
            call_id=call_id,
            status=record.status.value,
            failure_reason=record.failure_reason,
        )
