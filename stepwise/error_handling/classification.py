"""
Reduce automation failures to a single user-facing message.
"""

import re
from enum import Enum
from typing import Union

from stepwise.core.types import BrowserName
from stepwise.error_handling.exceptions import StepwiseError

_MISSING_BROWSER = re.compile(
    r"executable doesn't exist|please run the following command|browser binaries",
    re.IGNORECASE,
)
_TIMEOUT = re.compile(r"timeout", re.IGNORECASE)
_NAVIGATION = re.compile(r"navigation|net::|ERR_|NS_ERROR", re.IGNORECASE)
_AMBIGUOUS = re.compile(r"strict mode violation", re.IGNORECASE)
_ABORT = re.compile(
    r"Target page, context or browser has been closed|aborted|has been closed",
    re.IGNORECASE,
)

TIMEOUT_MESSAGE = (
    "Step timed out before the page reached the expected state. "
    "Add `within 30s` to the Expect step or increase step timeout."
)
NAVIGATION_MESSAGE = (
    "Failed to open the project base URL. Check the URL and network access."
)
AMBIGUOUS_MESSAGE = (
    "Multiple matching elements were found. Narrow the step target text."
)


class FailureKind(str, Enum):
    """Categories a step failure can fall into."""

    STEPWISE = "stepwise"
    MISSING_BROWSER = "missing_browser"
    TIMEOUT = "timeout"
    NAVIGATION = "navigation"
    AMBIGUOUS_MATCH = "ambiguous_match"
    UNKNOWN = "unknown"


def error_message(error: BaseException) -> str:
    """First line of an exception's message (no call logs or stack detail)."""
    text = str(error).strip()
    if not text:
        return error.__class__.__name__
    return text.splitlines()[0].strip()


def is_missing_browser_message(message: str) -> bool:
    return bool(_MISSING_BROWSER.search(message))


def is_abort_artifact(error: BaseException) -> bool:
    """True for failures caused by resources being closed underneath a call."""
    return bool(_ABORT.search(str(error)))


def failure_kind(error: BaseException) -> FailureKind:
    if isinstance(error, StepwiseError):
        return FailureKind.STEPWISE

    raw = str(error)
    if is_missing_browser_message(raw):
        return FailureKind.MISSING_BROWSER
    if _TIMEOUT.search(raw):
        return FailureKind.TIMEOUT
    if _NAVIGATION.search(raw):
        return FailureKind.NAVIGATION
    if _AMBIGUOUS.search(raw):
        return FailureKind.AMBIGUOUS_MATCH
    return FailureKind.UNKNOWN


def classify_failure(error: BaseException, browser: Union[BrowserName, str]) -> str:
    """
    Map an exception raised while executing a run to a user-facing message.

    Args:
        error: The failure
        browser: Browser engine the run targets

    Returns:
        Single-line message safe to persist and emit
    """
    browser_name = browser.value if isinstance(browser, BrowserName) else str(browser)
    kind = failure_kind(error)

    if kind is FailureKind.STEPWISE:
        return error_message(error)
    if kind is FailureKind.MISSING_BROWSER:
        return (
            f"The {browser_name} browser runtime is not installed. "
            f"Click Install for {browser_name} and retry."
        )
    if kind is FailureKind.TIMEOUT:
        return TIMEOUT_MESSAGE
    if kind is FailureKind.NAVIGATION:
        return NAVIGATION_MESSAGE
    if kind is FailureKind.AMBIGUOUS_MATCH:
        return AMBIGUOUS_MESSAGE
    return f"Automation failed: {error_message(error)}"
