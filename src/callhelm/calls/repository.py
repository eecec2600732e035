"""
Repository for call record database operations.

This is the CallRecordStore contract: reads by identifier plus a
version-guarded conditional update. Callers own the transaction.
"""

from datetime import datetime
from typing import Any, Protocol, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from callhelm.calls.enums import CallDirection, CallStatus, TERMINAL_STATUSES
from callhelm.calls.models import CallRecord, PhoneNumber, normalize_number
from callhelm.shared.timeutils import utcnow


class CallRecordRepositoryProtocol(Protocol):
    """Protocol for call record store operations."""

    async def get_by_id(self, call_id: str) -> CallRecord | None:
        ...

    async def get_by_external_id(self, leg_sid: str) -> CallRecord | None:
        ...

    async def get_by_contact_sid(self, leg_sid: str) -> CallRecord | None:
        ...

    async def find_organization_for_numbers(
        self, from_number: str, to_number: str
    ) -> str | None:
        ...

    async def find_open_by_numbers(
        self,
        organization_id: str,
        from_number: str,
        to_number: str,
        since: datetime,
    ) -> CallRecord | None:
        ...

    async def conditional_update(
        self,
        call_id: str,
        expected_version: int,
        values: dict[str, Any],
    ) -> bool:
        ...


class CallRecordRepository:
    """Repository for call record database operations."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async database session.
        """
        self._session = session

    async def create(
        self,
        organization_id: str,
        caller_number: str | None,
        called_number: str | None,
        external_id: str | None = None,
        direction: CallDirection = CallDirection.OUTBOUND,
        status: CallStatus = CallStatus.INITIATED,
        metadata: dict[str, Any] | None = None,
        created_at: datetime | None = None,
    ) -> CallRecord:
        """Create a call record for a freshly initiated primary leg.

        Args:
            organization_id: Owning organization.
            caller_number: Number the call is placed from.
            called_number: Number being called.
            external_id: Provider SID of the primary leg, if already known.
            direction: Call direction.
            status: Initial platform status.
            metadata: Initial metadata (``initial_status``, ``provider`` ...).
            created_at: Creation timestamp override (backfills, tests).

        Returns:
            Created CallRecord instance.
        """
        now = created_at or utcnow()
        record = CallRecord(
            organization_id=organization_id,
            caller_number=caller_number,
            called_number=called_number,
            external_id=external_id,
            direction=direction,
            status=status,
            start_time=now,
            created_at=now,
            updated_at=now,
            version=1,
            call_metadata=dict(metadata or {}),
        )
        self._session.add(record)
        await self._session.flush()
        await self._session.refresh(record)
        return record

    async def _first(self, stmt) -> CallRecord | None:
        # populate_existing: conditional_update bypasses the identity map
        result = await self._session.execute(stmt.execution_options(populate_existing=True))
        return result.scalars().first()

    async def get_by_id(self, call_id: str) -> CallRecord | None:
        """Get call record by internal call ID."""
        return await self._first(select(CallRecord).where(CallRecord.id == call_id))

    async def get_by_external_id(self, leg_sid: str) -> CallRecord | None:
        """Get call record whose primary leg SID is ``leg_sid``."""
        stmt = (
            select(CallRecord)
            .where(CallRecord.external_id == leg_sid)
            .order_by(CallRecord.created_at.desc())
            .limit(1)
        )
        return await self._first(stmt)

    async def get_by_contact_sid(self, leg_sid: str) -> CallRecord | None:
        """Get call record that already bound ``leg_sid`` as its contact leg."""
        stmt = (
            select(CallRecord)
            .where(CallRecord.call_metadata["contact_call_sid"].as_string() == leg_sid)
            .order_by(CallRecord.created_at.desc())
            .limit(1)
        )
        return await self._first(stmt)

    async def get_by_leg_sid(self, leg_sid: str) -> CallRecord | None:
        """Get call record by either its primary or its contact leg SID."""
        return await self.get_by_external_id(leg_sid) or await self.get_by_contact_sid(leg_sid)

    async def find_organization_for_numbers(
        self,
        from_number: str,
        to_number: str,
    ) -> str | None:
        """Find the organization owning either number, preferring ``from_number``.

        Returns:
            Organization ID, or None when neither number is in any inventory.
        """
        from_digits = normalize_number(from_number)
        to_digits = normalize_number(to_number)
        candidates = [d for d in (from_digits, to_digits) if d]
        if not candidates:
            return None

        stmt = select(PhoneNumber.organization_id, PhoneNumber.digits).where(
            PhoneNumber.digits.in_(candidates)
        )
        rows = (await self._session.execute(stmt)).all()
        if not rows:
            return None
        for row in rows:
            if row.digits == from_digits:
                return row.organization_id
        return rows[0].organization_id

    async def find_open_by_numbers(
        self,
        organization_id: str,
        from_number: str,
        to_number: str,
        since: datetime,
    ) -> CallRecord | None:
        """Most recent open call in the organization matching the leg's numbers.

        Only calls that have not ended, are not terminal and have no contact
        leg bound yet are candidates. A match is caller == From or
        called == To, compared digits-only.
        """
        from_digits = normalize_number(from_number)
        to_digits = normalize_number(to_number)
        if not from_digits and not to_digits:
            return None

        stmt = (
            select(CallRecord)
            .where(
                CallRecord.organization_id == organization_id,
                CallRecord.end_time.is_(None),
                CallRecord.status.not_in(list(TERMINAL_STATUSES)),
                CallRecord.created_at >= since,
                CallRecord.call_metadata["contact_call_sid"].as_string().is_(None),
            )
            .order_by(CallRecord.created_at.desc())
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        # Stored numbers keep whatever formatting the initiation flow wrote
        for record in result.scalars():
            if from_digits and normalize_number(record.caller_number) == from_digits:
                return record
            if to_digits and normalize_number(record.called_number) == to_digits:
                return record
        return None

    async def conditional_update(
        self,
        call_id: str,
        expected_version: int,
        values: dict[str, Any],
    ) -> bool:
        """Apply ``values`` only if the row is still at ``expected_version``.

        Returns:
            True when the row was updated, False when another writer got there first.
        """
        stmt = (
            update(CallRecord)
            .where(CallRecord.id == call_id, CallRecord.version == expected_version)
            .values(
                **values,
                version=CallRecord.version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def list_created_since(
        self,
        organization_id: str,
        since: datetime,
    ) -> Sequence[CallRecord]:
        """Calls of an organization created at or after ``since``."""
        stmt = select(CallRecord).where(
            CallRecord.organization_id == organization_id,
            CallRecord.created_at >= since,
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def list_open_older_than(
        self,
        statuses: Sequence[CallStatus],
        created_before: datetime,
        limit: int = 500,
    ) -> Sequence[CallRecord]:
        """Open calls in ``statuses`` created before ``created_before`` (all organizations)."""
        stmt = (
            select(CallRecord)
            .where(
                CallRecord.status.in_(list(statuses)),
                CallRecord.end_time.is_(None),
                CallRecord.created_at < created_before,
            )
            .order_by(CallRecord.created_at)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()
