"""
Provider status vocabulary mapped onto the platform CallStatus enum.
"""

from callhelm.calls.enums import CallStatus
from callhelm.shared.logging import get_logger

logger = get_logger(__name__)

# Twilio and SignalWire share the status callback vocabulary.
PROVIDER_STATUS_MAP: dict[str, CallStatus] = {
    "queued": CallStatus.INITIATED,
    "initiated": CallStatus.INITIATED,
    "ringing": CallStatus.RINGING,
    "answered": CallStatus.ANSWERED,
    "in-progress": CallStatus.ANSWERED,
    "completed": CallStatus.COMPLETED,
    "busy": CallStatus.BUSY,
    "no-answer": CallStatus.NO_ANSWER,
    "failed": CallStatus.FAILED,
    "canceled": CallStatus.CANCELED,
}

# Provider strings that mean "this leg was picked up".
ANSWER_STATUSES: frozenset[str] = frozenset({"answered", "in-progress"})


def normalize_provider_status(raw_status: str | None) -> str:
    return (raw_status or "").strip().lower()


def map_provider_status(raw_status: str | None) -> CallStatus:
    """Map a provider-native status string to a platform status.

    Unknown strings map to ``failed`` rather than passing through.
    """
    key = normalize_provider_status(raw_status)
    status = PROVIDER_STATUS_MAP.get(key)
    if status is None:
        logger.warning(
            "Unmapped provider call status",
            extra={"provider_status": raw_status},
        )
        return CallStatus.FAILED
    return status


def is_answer_status(raw_status: str | None) -> bool:
    return normalize_provider_status(raw_status) in ANSWER_STATUSES
