"""
Call-leg status reconciliation: provider status vocabulary, leg attribution
and the status state machine.
"""

from callhelm.reconciliation.reconciler import (
    ReconcileDecision,
    ReconcileOutcome,
    StatusReconciler,
)
from callhelm.reconciliation.resolver import CallLegResolver, LegResolution

__all__ = [
    "CallLegResolver",
    "LegResolution",
    "ReconcileDecision",
    "ReconcileOutcome",
    "StatusReconciler",
]
