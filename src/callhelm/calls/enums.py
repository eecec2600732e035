"""Enum definitions for call records."""

import enum


class CallDirection(str, enum.Enum):
    """Direction of a logical call."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"
    INTERNAL = "internal"


class CallStatus(str, enum.Enum):
    """Platform-level call status.

    Providers speak a richer vocabulary; their native string is kept in
    ``metadata.call_status`` while this enum drives the state machine.
    """

    INITIATED = "initiated"
    RINGING = "ringing"
    ANSWERED = "answered"
    CONTACT_CONNECTED = "contact-connected"
    COMPLETED = "completed"
    BUSY = "busy"
    NO_ANSWER = "no-answer"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def progression_index(self) -> int:
        return PROGRESSION_INDEX[self]


class LegRole(str, enum.Enum):
    """Which half of a bridged call a provider leg belongs to."""

    PRIMARY = "primary"
    SECONDARY = "secondary"


TERMINAL_STATUSES: frozenset[CallStatus] = frozenset(
    {
        CallStatus.COMPLETED,
        CallStatus.BUSY,
        CallStatus.NO_ANSWER,
        CallStatus.FAILED,
        CallStatus.CANCELED,
    }
)

# Every terminal status shares the last index; stickiness, not ordering,
# keeps one terminal status from replacing another.
PROGRESSION_INDEX: dict[CallStatus, int] = {
    CallStatus.INITIATED: 0,
    CallStatus.RINGING: 1,
    CallStatus.ANSWERED: 2,
    CallStatus.CONTACT_CONNECTED: 3,
    **{status: 4 for status in TERMINAL_STATUSES},
}
