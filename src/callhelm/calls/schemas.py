"""
Pydantic schemas for the call status API.

Wire names are camelCase; Python attributes stay snake_case.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CallStatusResponse(CamelModel):
    """Status read used by the client watchdog."""

    call_id: str = Field(..., description="Internal call identifier")
    status: str = Field(
        ...,
        description="Provider-native status when known, else the platform status",
    )
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration: int | None = Field(None, description="Duration in seconds")
    external_id: str | None = Field(None, description="Primary leg SID")


class TimeoutRequest(CamelModel):
    """Watchdog timeout mark."""

    timeout_stage: str = Field(
        ...,
        min_length=1,
        max_length=32,
        description="Stage the watchdog was waiting in (initiated, ringing)",
    )
    timeout_at: datetime | None = Field(
        None,
        description="When the client timer fired; defaults to receipt time",
    )


class TimeoutResponse(CamelModel):
    success: bool
    call_id: str
    status: str
    failure_reason: str | None = None


class EndCallRequest(CamelModel):
    force: bool = Field(
        default=False,
        description="Replace an existing terminal status with canceled",
    )


class EndCallResponse(CamelModel):
    success: bool
    call_id: str
    status: str
    already_ended: bool = False
    provider_hangup: bool = Field(
        False,
        description="Whether the provider acknowledged the hangup request",
    )


class HealthResponse(CamelModel):
    """Advisory webhook-delivery health for one organization."""

    healthy: bool
    recent_timeouts: int = 0
    webhook_stale: bool = False
    total_recent_calls: int = 0
    active_calls_count: int = 0
    failure_rate: int = Field(0, description="Timed-out share of recent calls, in percent")
    message: str


class CleanupResponse(CamelModel):
    success: bool
    message: str
    cleaned_count: int
    timestamp: datetime
