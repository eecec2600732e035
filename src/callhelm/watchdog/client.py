"""
HTTP client for the call status API, used by the client watchdog.

Constructed explicitly and owned by whoever composes the watchdog; call
``connect()`` before use and ``disconnect()`` when done (or use it as an
async context manager).
"""

from datetime import datetime

import httpx

from callhelm.calls.schemas import (
    CallStatusResponse,
    CleanupResponse,
    EndCallResponse,
    HealthResponse,
)
from callhelm.shared.logging import get_logger
from callhelm.shared.timeutils import utcnow

logger = get_logger(__name__)


class CallApiClient:
    """Async client for ``/api/calls``."""

    def __init__(
        self,
        base_url: str,
        user_id: str,
        organization_id: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize client.

        Args:
            base_url: Service base URL.
            user_id: Identity sent as ``X-User-Id``.
            organization_id: Organization sent as ``X-Organization-Id``.
            timeout: HTTP request timeout in seconds.
            transport: Optional httpx transport (tests).
        """
        self._base_url = base_url.rstrip("/")
        self._headers = {"X-User-Id": user_id}
        if organization_id:
            self._headers["X-Organization-Id"] = organization_id
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def connected(self) -> bool:
        return self._client is not None and not self._client.is_closed

    async def connect(self) -> None:
        if self.connected:
            return
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def disconnect(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "CallApiClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.disconnect()

    def _http(self) -> httpx.AsyncClient:
        if not self.connected:
            raise RuntimeError("CallApiClient is not connected")
        return self._client

    async def get_status(self, call_id: str) -> CallStatusResponse:
        response = await self._http().get(f"/api/calls/{call_id}/status")
        response.raise_for_status()
        return CallStatusResponse.model_validate(response.json())

    async def mark_timeout(
        self,
        call_id: str,
        stage: str,
        timeout_at: datetime | None = None,
    ) -> bool:
        """Post a timeout mark.

        Returns:
            True when the server recorded the timeout, False when it kept a
            terminal status (409).
        """
        body = {
            "timeoutStage": stage,
            "timeoutAt": (timeout_at or utcnow()).isoformat(),
        }
        response = await self._http().post(f"/api/calls/{call_id}/timeout", json=body)
        if response.status_code == httpx.codes.CONFLICT:
            logger.info(
                "Timeout mark rejected; call already terminal",
                extra={"call_id": call_id, "stage": stage},
            )
            return False
        response.raise_for_status()
        return True

    async def end_call(self, call_id: str, force: bool = False) -> EndCallResponse:
        response = await self._http().post(f"/api/calls/{call_id}/end", json={"force": force})
        response.raise_for_status()
        return EndCallResponse.model_validate(response.json())

    async def cleanup_orphaned(self) -> CleanupResponse:
        response = await self._http().post("/api/calls/cleanup-orphaned")
        response.raise_for_status()
        return CleanupResponse.model_validate(response.json())

    async def health_check(self) -> HealthResponse:
        response = await self._http().get("/api/calls/health-check")
        response.raise_for_status()
        return HealthResponse.model_validate(response.json())
