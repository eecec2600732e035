"""
Call-related exceptions.
"""

from callhelm.shared.exceptions import AppError, ConflictError, NotFoundError


class CallNotFoundError(NotFoundError):
    """Raised when a call is not found."""

    def __init__(self, call_id: str):
        self.call_id = call_id
        super().__init__(f"Call not found: {call_id}")


class StaleUpdate(ConflictError):
    """A valid write superseded by terminal stickiness or progression order.

    Not a fault: callers log it as ignored.
    """

    def __init__(self, call_id: str, current_status: str, reason: str):
        self.call_id = call_id
        self.current_status = current_status
        self.reason = reason
        super().__init__(
            f"Update to call {call_id} ignored: {reason}",
            details={"current_status": current_status},
        )


class ConcurrentUpdateError(ConflictError):
    """The conditional write lost its race on every retry."""

    def __init__(self, call_id: str, attempts: int):
        self.call_id = call_id
        self.attempts = attempts
        super().__init__(f"Call {call_id} changed concurrently {attempts} times")


class UnresolvedLeg(AppError):
    """No call record matches a webhook leg."""

    def __init__(self, leg_sid: str):
        self.leg_sid = leg_sid
        super().__init__(f"No call record for leg {leg_sid}")


class TimeoutDetected(AppError):
    """Watchdog-declared setup timeout; a liveness outcome, not a system fault."""

    def __init__(self, call_id: str, stage: str):
        self.call_id = call_id
        self.stage = stage
        super().__init__(f"Call {call_id} timed out at {stage} stage")
