"""
Attribution of provider call legs to logical call records.

A bridged call has two legs with unrelated SIDs. The primary leg SID is
stored when the call is initiated; the contact leg is discovered here, the
first time one of its callbacks arrives, and bound to the record so later
callbacks resolve by SID.
"""

from dataclasses import dataclass, field
from datetime import timedelta

from callhelm.calls.enums import LegRole
from callhelm.calls.exceptions import UnresolvedLeg
from callhelm.calls.models import CallRecord
from callhelm.calls.repository import CallRecordRepositoryProtocol
from callhelm.shared.logging import get_logger
from callhelm.telephony.events import CallStatusEvent

logger = get_logger(__name__)

MATCHED_BY_EXTERNAL_ID = "external_id"
MATCHED_BY_CONTACT_SID = "contact_call_sid"
MATCHED_BY_NUMBERS = "number_correlation"


@dataclass(frozen=True)
class LegResolution:
    """Target record of a callback and the role of the leg that sent it."""

    call_id: str
    leg: LegRole
    matched_by: str
    record: CallRecord = field(compare=False, repr=False)

    @property
    def is_secondary(self) -> bool:
        return self.leg == LegRole.SECONDARY


class CallLegResolver:
    """Resolve a CallStatusEvent to its CallRecord.

    Lookup order: primary SID, bound contact SID, then number correlation
    inside the owning organization. Never creates records.
    """

    def __init__(
        self,
        repository: CallRecordRepositoryProtocol,
        correlation_window_seconds: int = 3600,
    ) -> None:
        """Initialize resolver.

        Args:
            repository: Call record store.
            correlation_window_seconds: How far back number correlation looks.
        """
        self._repository = repository
        self._window = timedelta(seconds=correlation_window_seconds)

    async def resolve(self, event: CallStatusEvent) -> LegResolution:
        """Find the call record a leg belongs to.

        Args:
            event: Validated status event.

        Returns:
            LegResolution for the matching record.

        Raises:
            UnresolvedLeg: If no record matches the leg.
        """
        record = await self._repository.get_by_external_id(event.leg_sid)
        if record is not None:
            return LegResolution(record.id, LegRole.PRIMARY, MATCHED_BY_EXTERNAL_ID, record)

        record = await self._repository.get_by_contact_sid(event.leg_sid)
        if record is not None:
            return LegResolution(record.id, LegRole.SECONDARY, MATCHED_BY_CONTACT_SID, record)

        organization_id = await self._repository.find_organization_for_numbers(
            event.from_number, event.to_number
        )
        if organization_id is None:
            logger.info(
                "No organization owns webhook numbers",
                extra={"leg_sid": event.leg_sid},
            )
            raise UnresolvedLeg(event.leg_sid)

        record = await self._repository.find_open_by_numbers(
            organization_id,
            event.from_number,
            event.to_number,
            since=event.received_at - self._window,
        )
        if record is None:
            raise UnresolvedLeg(event.leg_sid)

        logger.info(
            "Correlated new leg to call by number",
            extra={
                "leg_sid": event.leg_sid,
                "call_id": record.id,
                "organization_id": organization_id,
            },
        )
        return LegResolution(record.id, LegRole.SECONDARY, MATCHED_BY_NUMBERS, record)
