"""
Call status API router.

Endpoints polled and written by the client watchdog, plus the operator
health and cleanup endpoints.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from callhelm.calls.health import HealthMonitor
from callhelm.calls.repository import CallRecordRepository
from callhelm.calls.schemas import (
    CallStatusResponse,
    CleanupResponse,
    EndCallRequest,
    EndCallResponse,
    HealthResponse,
    TimeoutRequest,
    TimeoutResponse,
)
from callhelm.calls.service import CallStatusService
from callhelm.calls.sweeper import OrphanSweeper
from callhelm.config import get_settings
from callhelm.shared.database import get_db_session
from callhelm.shared.logging import get_logger
from callhelm.shared.timeutils import utcnow
from callhelm.telephony.factory import get_telephony_provider as _cached_provider
from callhelm.telephony.interface import TelephonyProvider

logger = get_logger(__name__)

router = APIRouter(prefix="/api/calls", tags=["calls"])


async def get_current_user_id(
    x_user_id: Annotated[str | None, Header()] = None,
) -> str:
    """Caller identity, asserted by the upstream auth layer."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return x_user_id


async def get_organization_id(
    x_organization_id: Annotated[str | None, Header()] = None,
) -> str:
    if not x_organization_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing X-Organization-Id header",
        )
    return x_organization_id


def get_telephony_provider() -> TelephonyProvider:
    return _cached_provider()


def get_call_service(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    provider: Annotated[TelephonyProvider, Depends(get_telephony_provider)],
) -> CallStatusService:
    """Dependency for call status service."""
    return CallStatusService(session=session, provider=provider)


def get_health_monitor(
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> HealthMonitor:
    settings = get_settings()
    return HealthMonitor(
        CallRecordRepository(session),
        lookback_minutes=settings.health_lookback_minutes,
        max_recent_timeouts=settings.health_max_recent_timeouts,
        no_webhook_after_seconds=settings.health_no_webhook_after_seconds,
        stale_webhook_after_seconds=settings.health_stale_webhook_after_seconds,
    )


def get_orphan_sweeper(
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> OrphanSweeper:
    settings = get_settings()
    return OrphanSweeper(
        session,
        initiated_after_seconds=settings.orphan_initiated_after_seconds,
        ringing_after_seconds=settings.orphan_ringing_after_seconds,
    )


@router.get(
    "/health-check",
    response_model=HealthResponse,
    responses={400: {"description": "Missing organization"}},
)
async def health_check(
    user_id: Annotated[str, Depends(get_current_user_id)],
    organization_id: Annotated[str, Depends(get_organization_id)],
    monitor: Annotated[HealthMonitor, Depends(get_health_monitor)],
) -> HealthResponse:
    """Report webhook delivery health for the caller's organization.

    Advisory: unhealthy verdicts never block call placement.
    """
    return await monitor.check(organization_id)


@router.post("/cleanup-orphaned", response_model=CleanupResponse)
async def cleanup_orphaned(
    user_id: Annotated[str, Depends(get_current_user_id)],
    sweeper: Annotated[OrphanSweeper, Depends(get_orphan_sweeper)],
) -> CleanupResponse:
    """Close calls stuck in a setup stage (all organizations)."""
    logger.info("Orphan cleanup requested", extra={"user_id": user_id})
    cleaned = await sweeper.sweep()
    return CleanupResponse(
        success=True,
        message="Orphaned calls cleanup completed",
        cleaned_count=cleaned,
        timestamp=utcnow(),
    )


@router.get(
    "/{call_id}/status",
    response_model=CallStatusResponse,
    responses={404: {"description": "Call not found"}},
)
async def get_call_status(
    call_id: str,
    user_id: Annotated[str, Depends(get_current_user_id)],
    service: Annotated[CallStatusService, Depends(get_call_service)],
) -> CallStatusResponse:
    """Status snapshot polled by the client watchdog."""
    return await service.get_status(call_id)


@router.post(
    "/{call_id}/end",
    response_model=EndCallResponse,
    responses={404: {"description": "Call not found"}},
)
async def end_call(
    call_id: str,
    user_id: Annotated[str, Depends(get_current_user_id)],
    service: Annotated[CallStatusService, Depends(get_call_service)],
    body: EndCallRequest | None = None,
) -> EndCallResponse:
    """End a call: best-effort provider hangup, then a local canceled status.

    A call that already reached a terminal status keeps it unless
    ``force`` is set.
    """
    force = body.force if body is not None else False
    return await service.end_call(call_id, ended_by=user_id, force=force)


@router.post(
    "/{call_id}/timeout",
    response_model=TimeoutResponse,
    responses={
        404: {"description": "Call not found"},
        409: {"description": "Call already terminal"},
    },
)
async def mark_call_timeout(
    call_id: str,
    body: TimeoutRequest,
    user_id: Annotated[str, Depends(get_current_user_id)],
    service: Annotated[CallStatusService, Depends(get_call_service)],
) -> TimeoutResponse:
    """Record a client watchdog timeout for a call still in setup."""
    logger.info(
        "Timeout mark requested",
        extra={"call_id": call_id, "user_id": user_id, "stage": body.timeout_stage},
    )
    return await service.mark_timeout(call_id, body.timeout_stage, body.timeout_at)
