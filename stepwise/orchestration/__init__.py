"""
Run orchestration: lifecycle, active-run register and cancellation.
"""

from stepwise.orchestration.active_run import ActiveRun, ActiveRunRegister
from stepwise.orchestration.cancellation import CancellationToken
from stepwise.orchestration.orchestrator import (
    CANCELLED_MESSAGE,
    NO_STEPS_MESSAGE,
    BrowserSession,
    RunOrchestrator,
)

__all__ = [
    "ActiveRun",
    "ActiveRunRegister",
    "BrowserSession",
    "CancellationToken",
    "RunOrchestrator",
    "CANCELLED_MESSAGE",
    "NO_STEPS_MESSAGE",
]
