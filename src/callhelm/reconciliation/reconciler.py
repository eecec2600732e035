"""
Status reconciliation state machine.

Decides whether an incoming status for a call record is applied, and if so
which column values the conditional write carries. Decisions are pure: the
reconciler reads the record it is given, never mutates it and never raises.
Webhook callbacks, watchdog timeout marks and user end-call requests all
go through here so terminal stickiness holds for every writer.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from callhelm.calls.enums import CallStatus, LegRole
from callhelm.calls.models import CallRecord
from callhelm.reconciliation.statuses import (
    is_answer_status,
    map_provider_status,
    normalize_provider_status,
)
from callhelm.shared.timeutils import as_utc, utcnow
from callhelm.telephony.events import CallStatusEvent


class ReconcileOutcome(str, enum.Enum):
    APPLIED = "applied"
    IGNORED_TERMINAL = "ignored_terminal"
    IGNORED_REGRESSION = "ignored_regression"


@dataclass(frozen=True)
class ReconcileDecision:
    """Result of reconciling one update against the current record.

    ``values`` holds the columns to write. It can be non-empty for an ignored
    status when the update still binds a contact leg SID.
    """

    outcome: ReconcileOutcome
    status: CallStatus
    values: dict[str, Any] = field(default_factory=dict)
    reason: str | None = None

    @property
    def applied(self) -> bool:
        return self.outcome == ReconcileOutcome.APPLIED

    @property
    def has_write(self) -> bool:
        return bool(self.values)


def _iso(value: datetime) -> str:
    return value.isoformat()


class StatusReconciler:
    """Pure decision function over (current record, incoming update)."""

    def decide(
        self,
        record: CallRecord,
        event: CallStatusEvent,
        leg: LegRole,
        now: datetime | None = None,
    ) -> ReconcileDecision:
        """Reconcile a provider status callback.

        Args:
            record: Current state of the target call record.
            event: Normalized status event.
            leg: Role of the leg the event came from.
            now: Decision time; defaults to the current UTC time.

        Returns:
            ReconcileDecision describing the write, if any.
        """
        now = now or utcnow()
        current = record.status
        if current.is_terminal:
            return ReconcileDecision(
                outcome=ReconcileOutcome.IGNORED_TERMINAL,
                status=current,
                reason=f"call already {current.value}",
            )

        provider_status = normalize_provider_status(event.provider_status)
        mapped = map_provider_status(provider_status)
        metadata = dict(record.call_metadata or {})

        binds_contact_leg = (
            leg == LegRole.SECONDARY and metadata.get("contact_call_sid") != event.leg_sid
        )
        if binds_contact_leg:
            metadata["contact_call_sid"] = event.leg_sid

        if leg == LegRole.SECONDARY and is_answer_status(provider_status):
            # A contact leg answering always moves the call forward.
            if "contact_answered_at" not in metadata:
                metadata["contact_answered_at"] = _iso(now)
            return self._accept(
                record,
                event,
                CallStatus.CONTACT_CONNECTED,
                CallStatus.CONTACT_CONNECTED.value,
                metadata,
                now,
            )

        if mapped.progression_index < current.progression_index:
            reason = f"{mapped.value} would regress {current.value}"
            if binds_contact_leg:
                return ReconcileDecision(
                    outcome=ReconcileOutcome.IGNORED_REGRESSION,
                    status=current,
                    values={"call_metadata": metadata, "webhook_last_received_at": now},
                    reason=reason,
                )
            return ReconcileDecision(
                outcome=ReconcileOutcome.IGNORED_REGRESSION,
                status=current,
                reason=reason,
            )

        return self._accept(record, event, mapped, provider_status, metadata, now)

    def _accept(
        self,
        record: CallRecord,
        event: CallStatusEvent,
        new_status: CallStatus,
        call_status: str,
        metadata: dict[str, Any],
        now: datetime,
    ) -> ReconcileDecision:
        metadata["call_status"] = call_status
        metadata["webhook_updated_at"] = _iso(now)
        values: dict[str, Any] = {
            "status": new_status,
            "call_metadata": metadata,
            "webhook_last_received_at": now,
        }

        if new_status == CallStatus.COMPLETED and event.duration_seconds is not None:
            values["duration"] = event.duration_seconds
            values["end_time"] = now
        if new_status.is_terminal and record.end_time is None:
            values.setdefault("end_time", now)

        if event.recording_url:
            values["recording_url"] = event.recording_url
            values["recording_sid"] = event.recording_sid
            values["transcription_status"] = "pending"

        return ReconcileDecision(
            outcome=ReconcileOutcome.APPLIED,
            status=new_status,
            values=values,
        )

    def decide_timeout(
        self,
        record: CallRecord,
        stage: str,
        timeout_at: datetime | None = None,
        now: datetime | None = None,
    ) -> ReconcileDecision:
        """Reconcile a watchdog timeout mark.

        A call that is terminal or already ended keeps its state; the mark
        is ignored.
        """
        now = now or utcnow()
        detected_at = as_utc(timeout_at) or now
        if record.status.is_terminal or record.end_time is not None:
            return ReconcileDecision(
                outcome=ReconcileOutcome.IGNORED_TERMINAL,
                status=record.status,
                reason=f"call already {record.status.value}",
            )

        metadata = dict(record.call_metadata or {})
        metadata["call_status"] = CallStatus.FAILED.value
        metadata["timeout_detected"] = {
            "stage": stage,
            "detected_at": _iso(detected_at),
        }
        return ReconcileDecision(
            outcome=ReconcileOutcome.APPLIED,
            status=CallStatus.FAILED,
            values={
                "status": CallStatus.FAILED,
                "failure_reason": f"Timeout at {stage} stage",
                "timeout_detected_at": detected_at,
                "end_time": now,
                "call_metadata": metadata,
            },
        )

    def decide_end_call(
        self,
        record: CallRecord,
        ended_by: str,
        force: bool = False,
        now: datetime | None = None,
    ) -> ReconcileDecision:
        """Reconcile a user end-call request.

        Only ``force`` lets the request replace an existing terminal status,
        and even then only with ``canceled``.
        """
        now = now or utcnow()
        if record.status.is_terminal and not force:
            return ReconcileDecision(
                outcome=ReconcileOutcome.IGNORED_TERMINAL,
                status=record.status,
                reason=f"call already {record.status.value}",
            )

        metadata = dict(record.call_metadata or {})
        metadata["call_status"] = "ended"
        metadata["ended_by"] = ended_by
        metadata["ended_at"] = _iso(now)

        values: dict[str, Any] = {
            "status": CallStatus.CANCELED,
            "call_metadata": metadata,
        }
        if record.end_time is None:
            values["end_time"] = now
            start_time = as_utc(record.start_time)
            if record.duration is None and start_time is not None:
                values["duration"] = max(0, int((now - start_time).total_seconds()))

        return ReconcileDecision(
            outcome=ReconcileOutcome.APPLIED,
            status=CallStatus.CANCELED,
            values=values,
        )
