"""ORM models for call records and the organization number inventory."""

import re
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Enum as SAEnum, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, validates

from callhelm.calls.enums import CallDirection, CallStatus
from callhelm.shared.database import Base
from callhelm.shared.timeutils import utcnow

JSONType = JSON().with_variant(JSONB(), "postgresql")

_NON_DIGITS = re.compile(r"\D")


def normalize_number(value: str | None) -> str:
    """Strip everything but digits: ``+1 (613) 800-0000`` -> ``16138000000``."""
    return _NON_DIGITS.sub("", value or "")


def _enum_values(enum_cls: type) -> list[str]:
    return [member.value for member in enum_cls]


class CallRecord(Base):
    """One logical end-user call, possibly spanning two provider legs.

    The primary leg SID lives in ``external_id``; a bridged contact leg is
    recorded as ``metadata.contact_call_sid`` once the resolver binds it.
    ``version`` is bumped by every conditional write.
    """

    __tablename__ = "calls"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    organization_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    direction: Mapped[CallDirection] = mapped_column(
        SAEnum(
            CallDirection,
            name="call_direction",
            native_enum=False,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=CallDirection.OUTBOUND,
    )
    caller_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    called_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    external_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    status: Mapped[CallStatus] = mapped_column(
        SAEnum(
            CallStatus,
            name="call_status",
            native_enum=False,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=CallStatus.INITIATED,
        index=True,
    )
    start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    recording_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    recording_sid: Mapped[str | None] = mapped_column(String(64), nullable=True)
    transcription_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    webhook_last_received_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    timeout_detected_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    # "metadata" is reserved on declarative classes
    call_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
    )

    @property
    def contact_call_sid(self) -> str | None:
        return (self.call_metadata or {}).get("contact_call_sid")

    def __repr__(self) -> str:
        return f"<CallRecord id={self.id} status={self.status.value} version={self.version}>"


class PhoneNumber(Base):
    """A number owned by an organization; webhooks are attributed through it."""

    __tablename__ = "phone_numbers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    number: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    digits: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    @validates("number")
    def _set_digits(self, _key: str, value: str) -> str:
        self.digits = normalize_number(value)
        return value
