"""
Custom exception hierarchy for Stepwise error handling.

Every error that can reach a user is reduced to a single message string;
the structured fields are for logs.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class StepwiseError(Exception):
    """Base exception for all Stepwise errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None
        }


class StepParseError(StepwiseError):
    """Raised when step text cannot be turned into an action."""

    def __init__(
        self,
        message: str,
        raw_text: Optional[str] = None,
        step_order: Optional[int] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.raw_text = raw_text
        self.step_order = step_order
        self.details.update({
            "raw_text": raw_text,
            "step_order": step_order
        })


class TargetNotFoundError(StepwiseError):
    """Raised when no fallback strategy located the step target."""

    def __init__(
        self,
        message: str,
        target: str,
        attempts: Optional[List[str]] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.target = target
        self.attempts = attempts or []
        self.details.update({
            "target": target,
            "attempts": self.attempts
        })


class RunConflictError(StepwiseError):
    """Raised when a run is requested while another run is active."""

    def __init__(self, message: str = "A run is already in progress.", **kwargs):
        super().__init__(message, **kwargs)


class RunSetupError(StepwiseError):
    """Raised when a run cannot be created from its test case."""
    pass


class RecordNotFoundError(StepwiseError):
    """Raised when a referenced record does not exist."""

    def __init__(self, message: str, record_type: str, record_id: str, **kwargs):
        super().__init__(message, **kwargs)
        self.record_type = record_type
        self.record_id = record_id
        self.details.update({
            "record_type": record_type,
            "record_id": record_id
        })


class RecordValidationError(StepwiseError):
    """Raised when a record fails validation before being written."""
    pass


class ScreenshotAccessError(StepwiseError):
    """Raised when a screenshot path escapes the artifacts directory."""

    def __init__(self, message: str, path: str, **kwargs):
        super().__init__(message, **kwargs)
        self.path = path
        self.details.update({"path": path})


class BrowserInstallError(StepwiseError):
    """Raised when a browser engine could not be installed."""

    def __init__(
        self,
        message: str,
        browser: str,
        exit_code: Optional[int] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.browser = browser
        self.exit_code = exit_code
        self.details.update({
            "browser": browser,
            "exit_code": exit_code
        })


class RunCancelledError(StepwiseError):
    """Raised inside a run when its cancellation token has fired."""

    def __init__(self, message: str = "Run cancelled.", **kwargs):
        super().__init__(message, **kwargs)
