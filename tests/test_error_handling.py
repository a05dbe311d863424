"""
Tests for the exception hierarchy and failure classification.
"""

import pytest

from stepwise.core.types import BrowserName
from stepwise.error_handling import (
    AMBIGUOUS_MESSAGE,
    NAVIGATION_MESSAGE,
    TIMEOUT_MESSAGE,
    BrowserInstallError,
    FailureKind,
    RecordNotFoundError,
    RunConflictError,
    StepParseError,
    StepwiseError,
    TargetNotFoundError,
    classify_failure,
    error_message,
    failure_kind,
    is_abort_artifact,
)


class TestExceptions:
    """Tests for the exception hierarchy."""

    def test_base_error_to_dict(self):
        cause = ValueError("inner")
        error = StepwiseError("Outer", error_code="E1", details={"k": "v"}, cause=cause)

        data = error.to_dict()

        assert data["error_type"] == "StepwiseError"
        assert data["error_code"] == "E1"
        assert data["message"] == "Outer"
        assert data["details"] == {"k": "v"}
        assert data["cause"] == "inner"
        assert "timestamp" in data

    def test_default_error_code(self):
        assert RunConflictError().error_code == "RunConflictError"

    def test_subclass_details(self):
        error = TargetNotFoundError("Missing", target="Save", attempts=["label"])

        assert isinstance(error, StepwiseError)
        assert error.details == {"target": "Save", "attempts": ["label"]}

    def test_parse_error_details(self):
        error = StepParseError("Bad step", raw_text="x", step_order=2)

        assert error.details["step_order"] == 2

    def test_record_not_found(self):
        error = RecordNotFoundError("Project not found.", "project", "p-1")

        assert str(error) == "Project not found."
        assert error.details == {"record_type": "project", "record_id": "p-1"}

    def test_install_error(self):
        error = BrowserInstallError("failed", browser="webkit", exit_code=1)

        assert error.to_dict()["details"] == {"browser": "webkit", "exit_code": 1}


class TestClassifyFailure:
    """Tests for classify_failure."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("Timeout 10000ms exceeded.", TIMEOUT_MESSAGE),
            ("page.goto: net::ERR_CONNECTION_REFUSED at https://app.test", NAVIGATION_MESSAGE),
            ("NS_ERROR_UNKNOWN_HOST", NAVIGATION_MESSAGE),
            ("strict mode violation: resolved to 3 elements", AMBIGUOUS_MESSAGE),
            ("Something odd\n  call log:\n  - waiting", "Automation failed: Something odd"),
        ],
    )
    def test_messages(self, raw, expected):
        assert classify_failure(Exception(raw), BrowserName.CHROMIUM) == expected

    @pytest.mark.parametrize(
        "raw",
        [
            "browserType.launch: Executable doesn't exist at /ms-playwright/firefox",
            "Looks like Playwright was just installed. Please run the following command",
        ],
    )
    def test_missing_browser(self, raw):
        """Test missing-browser errors name the engine and the install action."""
        message = classify_failure(Exception(raw), "firefox")

        assert message == (
            "The firefox browser runtime is not installed. Click Install for firefox and retry."
        )

    def test_missing_browser_beats_timeout(self):
        raw = "Timeout while launching: Executable doesn't exist"

        assert failure_kind(Exception(raw)) == FailureKind.MISSING_BROWSER

    def test_own_errors_keep_message(self):
        """Test errors raised by the runner itself are shown as written."""
        error = TargetNotFoundError('Unable to locate clickable target "Go".', target="Go")

        assert classify_failure(error, BrowserName.WEBKIT) == 'Unable to locate clickable target "Go".'

    def test_empty_message_uses_type_name(self):
        assert classify_failure(RuntimeError(), BrowserName.CHROMIUM) == (
            "Automation failed: RuntimeError"
        )


class TestHelpers:
    def test_error_message_first_line(self):
        assert error_message(Exception("  first\nsecond")) == "first"

    def test_abort_artifacts(self):
        assert is_abort_artifact(Exception("Target page, context or browser has been closed"))
        assert is_abort_artifact(Exception("Navigation aborted"))
        assert not is_abort_artifact(Exception("Timeout 100ms exceeded"))
