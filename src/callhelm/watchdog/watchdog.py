"""
Client-side call watchdog.

Gives the user who placed a call live feedback by polling the status
endpoint, and declares a setup timeout when the provider goes quiet:

    idle -> initiated (30 s timer) -> ringing (45 s timer) -> answered /
    contact-connected / in-progress (no timer) -> terminal display ->
    idle after a 5 s grace period

Everything runs on one asyncio loop. A session owns at most one stage
timer; ``_arm_timer`` is the only place one is created and it cancels the
previous handle first.
"""

import asyncio
from collections.abc import Callable

import httpx

from callhelm.calls.exceptions import TimeoutDetected
from callhelm.calls.schemas import CallStatusResponse
from callhelm.shared.logging import get_logger
from callhelm.shared.timeutils import utcnow
from callhelm.watchdog.client import CallApiClient
from callhelm.watchdog.session import (
    STAGE_TIMEOUT_STATES,
    ClientCallSession,
    DisplayState,
    WatchdogConfig,
    display_state_for,
)

logger = get_logger(__name__)

# Final statuses accepted as-is when the record already has an end time.
_END_TIME_STATES = frozenset(
    {
        DisplayState.COMPLETED,
        DisplayState.BUSY,
        DisplayState.FAILED,
        DisplayState.NO_ANSWER,
        DisplayState.ENDED,
    }
)


def _cancel(task: asyncio.Task | None) -> None:
    if task is not None and not task.done() and task is not asyncio.current_task():
        task.cancel()


class ClientCallWatchdog:
    """Poll-and-timeout state machine for one active call at a time."""

    def __init__(
        self,
        client: CallApiClient,
        config: WatchdogConfig | None = None,
        on_change: Callable[[ClientCallSession], None] | None = None,
    ) -> None:
        """Initialize watchdog.

        Args:
            client: Connected API client.
            config: Timings; production defaults when omitted.
            on_change: Called after every display change (UI hook).
        """
        self._client = client
        self._config = config or WatchdogConfig()
        self._on_change = on_change
        self._session: ClientCallSession | None = None
        self._cleanup_task: asyncio.Task | None = None

    @property
    def session(self) -> ClientCallSession | None:
        return self._session

    @property
    def state(self) -> DisplayState:
        if self._session is None:
            return DisplayState.IDLE
        return self._session.state

    def _notify(self, session: ClientCallSession) -> None:
        if self._on_change is not None and session is self._session:
            self._on_change(session)

    # -- lifecycle -----------------------------------------------------

    async def start(self, call_id: str) -> ClientCallSession:
        """Start watching a freshly placed call.

        Any previous session is torn down first so none of its callbacks
        can fire against the new one.
        """
        await self.stop()
        session = ClientCallSession(call_id=call_id, started_at=utcnow())
        self._session = session
        logger.info("Watching call", extra={"call_id": call_id})

        self._arm_timer(session, "initiated", self._config.initiated_timeout)
        session.poll_task = asyncio.create_task(self._poll_loop(session))
        self._notify(session)
        return session

    async def stop(self) -> None:
        """Tear down the current session (user navigated away)."""
        session = self._session
        if session is None:
            return
        tasks = [t for t in (session.poll_task, session.timer, session.reset_task) if t is not None]
        self._stop_polling(session)
        self._cancel_timer(session)
        _cancel(session.reset_task)
        session.reset_task = None
        session.active = False
        self._session = None
        current = asyncio.current_task()
        await asyncio.gather(*(t for t in tasks if t is not current), return_exceptions=True)

    async def end_call(self, force: bool = False) -> None:
        """End the current call on the user's request, whatever its stage."""
        session = self._session
        if session is None or not session.active:
            return
        session.active = False
        self._stop_polling(session)
        self._cancel_timer(session)

        try:
            await self._client.end_call(session.call_id, force=force)
        except httpx.HTTPError as e:
            session.error = str(e)
            logger.warning(
                "End call request failed",
                extra={"call_id": session.call_id, "error": str(e)},
            )

        session.show(DisplayState.ENDED)
        self._notify(session)
        self._schedule_reset(session)

    # -- timers ----------------------------------------------------------

    def _arm_timer(self, session: ClientCallSession, stage: str, delay: float) -> None:
        self._cancel_timer(session)
        session.timer_stage = stage
        session.timer = asyncio.create_task(self._timer_fired(session, stage, delay))

    def _cancel_timer(self, session: ClientCallSession) -> None:
        _cancel(session.timer)
        session.timer = None
        session.timer_stage = None

    async def _timer_fired(self, session: ClientCallSession, stage: str, delay: float) -> None:
        await asyncio.sleep(delay)
        session.timer = None
        session.timer_stage = None
        if session is not self._session or not session.active:
            return

        detected = TimeoutDetected(session.call_id, stage)
        session.timeout = detected
        logger.warning(
            "Call setup timeout",
            extra={"call_id": session.call_id, "stage": stage},
        )
        self._stop_polling(session)
        session.active = False
        session.show(STAGE_TIMEOUT_STATES[stage])
        self._notify(session)

        try:
            await self._client.mark_timeout(session.call_id, stage, timeout_at=utcnow())
        except httpx.HTTPError as e:
            session.error = str(e)
            logger.warning(
                "Timeout mark failed",
                extra={"call_id": session.call_id, "stage": stage, "error": str(e)},
            )

        self._schedule_reset(session)

    # -- polling ---------------------------------------------------------

    def _stop_polling(self, session: ClientCallSession) -> None:
        _cancel(session.poll_task)
        session.poll_task = None

    async def _poll_loop(self, session: ClientCallSession) -> None:
        while True:
            try:
                snapshot = await self._client.get_status(session.call_id)
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(
                    "Status poll failed",
                    extra={"call_id": session.call_id, "error": str(e)},
                )
            else:
                if self._apply_status(session, snapshot):
                    return
            await asyncio.sleep(self._config.poll_interval)

    def _apply_status(self, session: ClientCallSession, snapshot: CallStatusResponse) -> bool:
        """Move the session to the polled status.

        Returns:
            True when the call reached a terminal display state.
        """
        session.last_status = snapshot.status
        state = display_state_for(snapshot.status)

        if snapshot.end_time is not None or (state is not None and state.is_terminal):
            if state not in _END_TIME_STATES:
                state = DisplayState.COMPLETED
            self._finish(session, state)
            return True

        if state is None:
            logger.info(
                "Unrecognized call status",
                extra={"call_id": session.call_id, "status": snapshot.status},
            )
            return False
        if state == session.state:
            return False

        session.show(state)
        if state == DisplayState.RINGING:
            self._arm_timer(session, "ringing", self._config.ringing_timeout)
        elif state.is_live:
            self._cancel_timer(session)
        self._notify(session)
        return False

    def _finish(self, session: ClientCallSession, state: DisplayState) -> None:
        session.poll_task = None
        session.active = False
        self._cancel_timer(session)
        session.show(state)
        self._notify(session)
        self._schedule_reset(session)

    # -- reset -----------------------------------------------------------

    def _schedule_reset(self, session: ClientCallSession) -> None:
        _cancel(session.reset_task)
        session.reset_task = asyncio.create_task(self._reset_after_grace(session))

    async def _reset_after_grace(self, session: ClientCallSession) -> None:
        await asyncio.sleep(self._config.display_grace)
        session.active = False
        session.show(DisplayState.IDLE)
        session.reset_task = None
        self._notify(session)
        if session is self._session:
            self._session = None

    # -- orphan cleanup ------------------------------------------------

    def start_orphan_cleanup(self) -> None:
        """Periodically ask the server to close abandoned calls."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def stop_orphan_cleanup(self) -> None:
        task = self._cleanup_task
        self._cleanup_task = None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _cleanup_loop(self) -> None:
        await asyncio.sleep(self._config.cleanup_initial_delay)
        while True:
            try:
                result = await self._client.cleanup_orphaned()
                if result.cleaned_count:
                    logger.info(
                        "Orphaned calls cleaned",
                        extra={"cleaned_count": result.cleaned_count},
                    )
            except httpx.HTTPError as e:
                logger.warning("Orphaned call cleanup failed", extra={"error": str(e)})
            await asyncio.sleep(self._config.cleanup_interval)
