"""
Client-side call watchdog: status polling, stage timeouts and the API
client it talks through.
"""

from callhelm.watchdog.client import CallApiClient
from callhelm.watchdog.session import ClientCallSession, DisplayState, WatchdogConfig
from callhelm.watchdog.watchdog import ClientCallWatchdog

__all__ = [
    "CallApiClient",
    "ClientCallSession",
    "ClientCallWatchdog",
    "DisplayState",
    "WatchdogConfig",
]
