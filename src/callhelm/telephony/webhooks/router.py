"""
FastAPI router for telephony webhook endpoints.

Key constraints:
- Providers must get a fast 200 for anything we can parse; processing
  errors are logged, never surfaced, so providers do not retry-storm.
- Malformed payloads get 400 (or 200 + ignored when configured).
- Unsigned or badly signed payloads get 403 when signing is enabled.
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from callhelm.config import get_settings
from callhelm.shared.database import get_db_session
from callhelm.shared.logging import get_logger
from callhelm.telephony.config import TelephonyConfig
from callhelm.telephony.factory import get_telephony_config as _cached_telephony_config
from callhelm.telephony.factory import get_telephony_provider as _cached_provider
from callhelm.telephony.interface import (
    InvalidWebhookSignature,
    MalformedWebhook,
    TelephonyProvider,
)
from callhelm.telephony.signatures import ip_in_allowlist
from callhelm.telephony.webhooks.handler import WebhookHandler

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks/telephony", tags=["webhooks"])


def get_telephony_provider() -> TelephonyProvider:
    return _cached_provider()


def get_webhook_config() -> TelephonyConfig:
    return _cached_telephony_config()


def get_webhook_handler(
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> WebhookHandler:
    settings = get_settings()
    return WebhookHandler(
        session=session,
        correlation_window_seconds=settings.leg_correlation_window_seconds,
    )


def _public_url(request: Request, cfg: TelephonyConfig) -> str:
    """URL the provider signed.

    Priority:
      1) TELEPHONY_WEBHOOK_BASE_URL
      2) X-Forwarded-Proto / X-Forwarded-Host (behind tunnel/proxy)
      3) the request URL
    """
    path = request.url.path
    query = request.url.query
    suffix = f"{path}?{query}" if query else path

    if cfg.webhook_base_url:
        return f"{cfg.webhook_base_url.rstrip('/')}{suffix}"

    xf_host = (request.headers.get("x-forwarded-host") or "").strip()
    if xf_host:
        proto = (request.headers.get("x-forwarded-proto") or "https").strip()
        return f"{proto}://{xf_host}{suffix}"

    return str(request.url)


async def _read_payload(request: Request) -> tuple[dict[str, str], dict[str, str]]:
    """Return (signed form params, form params merged with query params)."""
    form = await request.form()
    form_params = {key: str(value) for key, value in form.items()}
    payload = dict(form_params)
    payload.update(dict(request.query_params))
    return form_params, payload


def _verify_source(
    request: Request,
    provider: TelephonyProvider,
    cfg: TelephonyConfig,
    form_params: dict[str, str],
) -> None:
    """Raise InvalidWebhookSignature unless the callback is authentic."""
    allowed = cfg.allowed_source_cidrs_list
    if allowed:
        client_ip = request.client.host if request.client else None
        if not ip_in_allowlist(client_ip, allowed):
            raise InvalidWebhookSignature(f"Callback source {client_ip} not allowed")

    if not cfg.signing_enabled:
        return

    signature = None
    for header in provider.signature_headers:
        signature = request.headers.get(header)
        if signature:
            break
    if not signature:
        raise InvalidWebhookSignature("Missing webhook signature")

    url = _public_url(request, cfg)
    if not provider.validate_webhook_signature(form_params, signature, url):
        raise InvalidWebhookSignature("Invalid webhook signature")


def _reject_unsigned(request: Request, error: InvalidWebhookSignature) -> HTTPException:
    logger.warning(
        "Rejected webhook",
        extra={"path": request.url.path, "error": str(error)},
    )
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(error))


@router.post("/status", status_code=status.HTTP_200_OK)
async def receive_status_callback(
    request: Request,
    provider: Annotated[TelephonyProvider, Depends(get_telephony_provider)],
    handler: Annotated[WebhookHandler, Depends(get_webhook_handler)],
    cfg: Annotated[TelephonyConfig, Depends(get_webhook_config)],
) -> dict[str, Any]:
    """Receive a call status callback for either leg of a call."""
    form_params, payload = await _read_payload(request)

    try:
        _verify_source(request, provider, cfg, form_params)
    except InvalidWebhookSignature as e:
        raise _reject_unsigned(request, e) from e

    try:
        event = provider.parse_webhook_event(payload)
    except MalformedWebhook as e:
        logger.warning(
            "Malformed status webhook",
            extra={"missing": e.missing, "ack": cfg.webhook_ack_malformed},
        )
        if cfg.webhook_ack_malformed:
            return {"received": True, "ignored": True}
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    try:
        result = await handler.handle_status_event(event)
    except Exception:
        logger.exception(
            "Failed to process status webhook (ACKing 200 to provider)",
            extra={"leg_sid": event.leg_sid},
        )
        await handler.rollback()
        return {"received": True}

    return result.as_ack()


@router.post("/recording", status_code=status.HTTP_200_OK)
async def receive_recording_callback(
    request: Request,
    provider: Annotated[TelephonyProvider, Depends(get_telephony_provider)],
    handler: Annotated[WebhookHandler, Depends(get_webhook_handler)],
    cfg: Annotated[TelephonyConfig, Depends(get_webhook_config)],
) -> dict[str, Any]:
    """Receive a recording-complete callback and attach it to its call."""
    form_params, payload = await _read_payload(request)

    try:
        _verify_source(request, provider, cfg, form_params)
    except InvalidWebhookSignature as e:
        raise _reject_unsigned(request, e) from e

    try:
        event = provider.parse_recording_event(payload)
    except MalformedWebhook as e:
        logger.warning("Malformed recording webhook", extra={"missing": e.missing})
        return {"received": True, "ignored": True}

    try:
        result = await handler.handle_recording_event(event)
    except Exception:
        logger.exception(
            "Failed to process recording webhook (ACKing 200 to provider)",
            extra={"leg_sid": event.leg_sid},
        )
        await handler.rollback()
        return {"received": True}

    return result.as_ack()
