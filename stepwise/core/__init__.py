"""
Core module exports.
"""

from stepwise.core.interfaces import BrowserRuntime, ConfigProvider, RunRecordStore
from stepwise.core.types import (
    ACTION_TYPES,
    Action,
    ActiveRunContext,
    BrowserInstallPhase,
    BrowserInstallState,
    BrowserInstallUpdate,
    BrowserName,
    ClickAction,
    DialogAction,
    DialogDecision,
    DownloadAction,
    EnterAction,
    ExecutionStep,
    ExpectAction,
    HoverAction,
    NavigateAction,
    ParseSource,
    PressAction,
    Project,
    Run,
    RunContext,
    RunEventType,
    RunStatus,
    RunUpdateEvent,
    SelectAction,
    SetCheckedAction,
    Step,
    StepParseResult,
    StepResult,
    StepStatus,
    TestCase,
    UploadAction,
    WaitForRequestAction,
    action_from_json,
    action_to_json,
)

__all__ = [
    # Interfaces
    "BrowserRuntime",
    "ConfigProvider",
    "RunRecordStore",
    # Actions
    "ACTION_TYPES",
    "Action",
    "ClickAction",
    "DialogAction",
    "DialogDecision",
    "DownloadAction",
    "EnterAction",
    "ExpectAction",
    "HoverAction",
    "NavigateAction",
    "PressAction",
    "SelectAction",
    "SetCheckedAction",
    "UploadAction",
    "WaitForRequestAction",
    "action_from_json",
    "action_to_json",
    # Records
    "ActiveRunContext",
    "BrowserInstallPhase",
    "BrowserInstallState",
    "BrowserInstallUpdate",
    "BrowserName",
    "ExecutionStep",
    "ParseSource",
    "Project",
    "Run",
    "RunContext",
    "RunEventType",
    "RunStatus",
    "RunUpdateEvent",
    "Step",
    "StepParseResult",
    "StepResult",
    "StepStatus",
    "TestCase",
]
