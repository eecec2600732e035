"""
Client call session state and display vocabulary.
"""

import asyncio
import enum
from dataclasses import dataclass, field
from datetime import datetime

from callhelm.calls.exceptions import TimeoutDetected


@dataclass(frozen=True)
class WatchdogConfig:
    """Watchdog timings, in seconds."""

    initiated_timeout: float = 30.0
    ringing_timeout: float = 45.0
    poll_interval: float = 2.0
    display_grace: float = 5.0
    cleanup_interval: float = 60.0
    cleanup_initial_delay: float = 5.0


class DisplayState(str, enum.Enum):
    IDLE = "idle"
    INITIATED = "initiated"
    RINGING = "ringing"
    ANSWERED = "answered"
    CONTACT_CONNECTED = "contact-connected"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    BUSY = "busy"
    FAILED = "failed"
    NO_ANSWER = "no-answer"
    ENDED = "ended"
    INITIATED_TIMEOUT = "initiated-timeout"
    RINGING_TIMEOUT = "ringing-timeout"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_DISPLAY_STATES

    @property
    def is_live(self) -> bool:
        return self in LIVE_DISPLAY_STATES


TERMINAL_DISPLAY_STATES = frozenset(
    {
        DisplayState.COMPLETED,
        DisplayState.BUSY,
        DisplayState.FAILED,
        DisplayState.NO_ANSWER,
        DisplayState.ENDED,
        DisplayState.INITIATED_TIMEOUT,
        DisplayState.RINGING_TIMEOUT,
    }
)

# Someone picked up; setup timeouts no longer apply.
LIVE_DISPLAY_STATES = frozenset(
    {
        DisplayState.ANSWERED,
        DisplayState.CONTACT_CONNECTED,
        DisplayState.IN_PROGRESS,
    }
)

DISPLAY_MESSAGES: dict[DisplayState, str] = {
    DisplayState.IDLE: "",
    DisplayState.INITIATED: "Initiating call...",
    DisplayState.RINGING: "Calling your phone...",
    DisplayState.ANSWERED: "You answered! Connecting to contact...",
    DisplayState.CONTACT_CONNECTED: "Contact answered! Both parties connected",
    DisplayState.IN_PROGRESS: "Call in progress",
    DisplayState.COMPLETED: "Call completed successfully",
    DisplayState.BUSY: "Line busy - please try again",
    DisplayState.FAILED: "Call failed - please try again",
    DisplayState.NO_ANSWER: "No answer - please try again",
    DisplayState.ENDED: "Call ended by user",
    DisplayState.INITIATED_TIMEOUT: "Connection timeout - Unable to establish call",
    DisplayState.RINGING_TIMEOUT: "Call timeout - No answer received",
}

# Status strings returned by the status endpoint (provider-native or platform).
STATUS_TO_DISPLAY: dict[str, DisplayState] = {
    "queued": DisplayState.INITIATED,
    "initiated": DisplayState.INITIATED,
    "ringing": DisplayState.RINGING,
    "answered": DisplayState.ANSWERED,
    "contact-connected": DisplayState.CONTACT_CONNECTED,
    "in-progress": DisplayState.IN_PROGRESS,
    "completed": DisplayState.COMPLETED,
    "busy": DisplayState.BUSY,
    "failed": DisplayState.FAILED,
    "canceled": DisplayState.FAILED,
    "no-answer": DisplayState.NO_ANSWER,
    "missed": DisplayState.NO_ANSWER,
    "ended": DisplayState.ENDED,
}

STAGE_TIMEOUT_STATES: dict[str, DisplayState] = {
    "initiated": DisplayState.INITIATED_TIMEOUT,
    "ringing": DisplayState.RINGING_TIMEOUT,
}


def display_state_for(status: str | None) -> DisplayState | None:
    return STATUS_TO_DISPLAY.get((status or "").strip().lower())


@dataclass
class ClientCallSession:
    """UI state of one user-initiated call.

    ``timer`` is the only stage timer handle; the watchdog cancels it before
    arming another one.
    ``active`` is cleared as soon as the call stops being live; the display
    may linger through the grace period afterwards.
    """

    call_id: str
    started_at: datetime
    state: DisplayState = DisplayState.INITIATED
    message: str = DISPLAY_MESSAGES[DisplayState.INITIATED]
    active: bool = True
    last_status: str | None = None
    timer_stage: str | None = None
    error: str | None = None
    timeout: TimeoutDetected | None = None
    timer: asyncio.Task | None = field(default=None, repr=False)
    poll_task: asyncio.Task | None = field(default=None, repr=False)
    reset_task: asyncio.Task | None = field(default=None, repr=False)

    def show(self, state: DisplayState, message: str | None = None) -> None:
        self.state = state
        self.message = message if message is not None else DISPLAY_MESSAGES[state]
