"""
Browser automation: runtime management and action execution.
"""

from stepwise.browser.executor import ActionExecutor, structural_selectors
from stepwise.browser.runtime import (
    ALL_BROWSERS,
    BrowserRuntimeManager,
    InstallProgressTracker,
    infer_phase,
    parse_progress,
)
from stepwise.browser.strategies import Attempt, run_fallback_chain
from stepwise.browser.urls import resolve_navigation_target, url_matches

__all__ = [
    "ALL_BROWSERS",
    "ActionExecutor",
    "Attempt",
    "BrowserRuntimeManager",
    "InstallProgressTracker",
    "infer_phase",
    "parse_progress",
    "resolve_navigation_target",
    "run_fallback_chain",
    "structural_selectors",
    "url_matches",
]
