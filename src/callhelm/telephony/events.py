"""
Normalized call status event parsed from provider webhooks.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from callhelm.shared.timeutils import utcnow


class CallStatusEvent(BaseModel):
    """Provider-agnostic view of one status callback for one call leg.

    Built by a provider adapter; never persisted on its own.
    """

    model_config = ConfigDict(frozen=True)

    leg_sid: str = Field(
        ...,
        min_length=1,
        description="Provider identifier of the leg that emitted the callback",
    )
    provider_status: str = Field(
        default="",
        description="Provider-native status string, normalized to lower case",
    )
    from_number: str = Field(
        ...,
        min_length=1,
        description="Calling number as reported by the provider",
    )
    to_number: str = Field(
        ...,
        min_length=1,
        description="Called number as reported by the provider",
    )
    duration_seconds: int | None = Field(
        default=None,
        ge=0,
        description="Leg duration; None when absent or non-numeric",
    )
    direction: str | None = Field(
        default=None,
        description="Provider direction string (outbound-api, outbound-dial ...)",
    )
    recording_url: str | None = Field(default=None)
    recording_sid: str | None = Field(default=None)
    received_at: datetime = Field(
        default_factory=utcnow,
        description="When the callback reached this service",
    )


class RecordingEvent(BaseModel):
    """Recording-complete callback for a call leg."""

    model_config = ConfigDict(frozen=True)

    leg_sid: str = Field(..., min_length=1)
    recording_sid: str = Field(..., min_length=1)
    recording_url: str = Field(..., min_length=1)
    recording_duration: int | None = Field(default=None, ge=0)
    received_at: datetime = Field(default_factory=utcnow)
