"""
Error handling for Stepwise.

This module provides the exception hierarchy and the classification of
automation failures into user-facing messages.
"""

from .exceptions import (
    StepwiseError,
    StepParseError,
    TargetNotFoundError,
    RunConflictError,
    RunSetupError,
    RecordNotFoundError,
    RecordValidationError,
    ScreenshotAccessError,
    BrowserInstallError,
    RunCancelledError,
)

from .classification import (
    AMBIGUOUS_MESSAGE,
    NAVIGATION_MESSAGE,
    TIMEOUT_MESSAGE,
    FailureKind,
    classify_failure,
    error_message,
    failure_kind,
    is_abort_artifact,
    is_missing_browser_message,
)

__all__ = [
    # Exceptions
    "StepwiseError",
    "StepParseError",
    "TargetNotFoundError",
    "RunConflictError",
    "RunSetupError",
    "RecordNotFoundError",
    "RecordValidationError",
    "ScreenshotAccessError",
    "BrowserInstallError",
    "RunCancelledError",

    # Classification
    "AMBIGUOUS_MESSAGE",
    "NAVIGATION_MESSAGE",
    "TIMEOUT_MESSAGE",
    "FailureKind",
    "classify_failure",
    "error_message",
    "failure_kind",
    "is_abort_artifact",
    "is_missing_browser_message",
]
