"""
Core data models and types for the Stepwise runner.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class BrowserName(str, Enum):
    """Browser engines a run can target."""

    CHROMIUM = "chromium"
    FIREFOX = "firefox"
    WEBKIT = "webkit"


class RunStatus(str, Enum):
    """Status of a run. A run is running from the moment it is created."""

    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.RUNNING


class StepStatus(str, Enum):
    """Status of a single step inside a run."""

    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ParseSource(str, Enum):
    """Which tier of the step grammar produced an action."""

    STRICT = "strict"
    FALLBACK = "fallback"


class DialogDecision(str, Enum):
    ACCEPT = "accept"
    DISMISS = "dismiss"


# Actions

class _ActionBase(BaseModel):
    model_config = ConfigDict(frozen=True)


class EnterAction(_ActionBase):
    """Type a value into a form field."""

    type: Literal["enter"] = "enter"
    target: str
    value: str


class ClickAction(_ActionBase):
    """Click an element, optionally after a delay."""

    type: Literal["click"] = "click"
    target: str
    delay_seconds: Optional[float] = Field(None, gt=0)


class NavigateAction(_ActionBase):
    """Open an absolute URL or a path relative to the project."""

    type: Literal["navigate"] = "navigate"
    target: str


class ExpectAction(_ActionBase):
    """Wait for text to become visible."""

    type: Literal["expect"] = "expect"
    assertion: str
    timeout_seconds: Optional[int] = Field(None, gt=0)


class SelectAction(_ActionBase):
    """Choose an option in a dropdown."""

    type: Literal["select"] = "select"
    target: str
    value: str


class SetCheckedAction(_ActionBase):
    """Check or uncheck a checkbox."""

    type: Literal["setChecked"] = "setChecked"
    target: str
    checked: bool


class HoverAction(_ActionBase):
    type: Literal["hover"] = "hover"
    target: str


class PressAction(_ActionBase):
    """Press a key, optionally focused on a field."""

    type: Literal["press"] = "press"
    key: str
    target: Optional[str] = None


class UploadAction(_ActionBase):
    """Attach files to a file input."""

    type: Literal["upload"] = "upload"
    target: str
    file_paths: List[str] = Field(..., min_length=1)


class DialogAction(_ActionBase):
    """Accept or dismiss the next browser dialog."""

    type: Literal["dialog"] = "dialog"
    action: DialogDecision
    prompt_text: Optional[str] = None


class WaitForRequestAction(_ActionBase):
    """Wait for a network response matching a URL pattern."""

    type: Literal["waitForRequest"] = "waitForRequest"
    url_pattern: str
    method: Optional[str] = None
    status: Optional[int] = Field(None, ge=100, le=599)
    trigger_click_target: Optional[str] = None
    timeout_seconds: Optional[int] = Field(None, gt=0)


class DownloadAction(_ActionBase):
    """Click a trigger and wait for the resulting download."""

    type: Literal["download"] = "download"
    trigger_click_target: str
    timeout_seconds: Optional[int] = Field(None, gt=0)


ACTION_MODELS = (
    EnterAction,
    ClickAction,
    NavigateAction,
    ExpectAction,
    SelectAction,
    SetCheckedAction,
    HoverAction,
    PressAction,
    UploadAction,
    DialogAction,
    WaitForRequestAction,
    DownloadAction,
)

ACTION_TYPES = tuple(model.model_fields["type"].default for model in ACTION_MODELS)

Action = Annotated[
    Union[
        EnterAction,
        ClickAction,
        NavigateAction,
        ExpectAction,
        SelectAction,
        SetCheckedAction,
        HoverAction,
        PressAction,
        UploadAction,
        DialogAction,
        WaitForRequestAction,
        DownloadAction,
    ],
    Field(discriminator="type"),
]

_ACTION_ADAPTER: TypeAdapter = TypeAdapter(Action)


def action_to_json(action: Action) -> str:
    """Serialize an action for storage, omitting unset optional fields."""
    return action.model_dump_json(exclude_none=True)


def action_from_json(payload: str) -> Action:
    """Validate stored action JSON back into its model."""
    return _ACTION_ADAPTER.validate_json(payload)


class StepParseResult(BaseModel):
    """Outcome of interpreting one raw step."""

    ok: bool
    action: Optional[Action] = None
    source: Optional[ParseSource] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, action: Action, source: ParseSource) -> "StepParseResult":
        return cls(ok=True, action=action, source=source)

    @classmethod
    def failure(cls, error: str) -> "StepParseResult":
        return cls(ok=False, error=error)


# Records

class Project(BaseModel):
    """An application under test."""

    id: str
    name: str
    base_url: str
    env_label: str = "local"
    metadata_json: str = "{}"
    created_at: datetime = Field(default_factory=utc_now)


class TestCase(BaseModel):
    """A titled, ordered list of steps owned by a project."""

    __test__ = False

    id: str
    project_id: str
    title: str
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Step(BaseModel):
    """A single authored step and its serialized action."""

    id: str
    test_case_id: str
    step_order: int = Field(..., ge=1)
    raw_text: str
    action_json: str


class ExecutionStep(Step):
    """A step whose action was re-validated for execution."""

    action: Action


class RunContext(BaseModel):
    """What a run needs to know about its test case and project."""

    test_case_id: str
    test_title: str
    project_id: str
    project_name: str
    base_url: str


class ActiveRunContext(BaseModel):
    run_id: str
    test_case_id: str
    project_id: str


class Run(BaseModel):
    """One execution of a test case."""

    id: str
    test_case_id: str
    browser: BrowserName
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime = Field(default_factory=utc_now)
    ended_at: Optional[datetime] = None


class StepResult(BaseModel):
    """Outcome of one step within one run."""

    id: str
    run_id: str
    step_id: str
    step_order: int = 0
    step_raw_text: str = ""
    status: StepStatus = StepStatus.PENDING
    error_text: Optional[str] = None
    screenshot_path: Optional[str] = None


# Events

class RunEventType(str, Enum):
    """Lifecycle events emitted for a run."""

    RUN_STARTED = "run-started"
    STEP_STARTED = "step-started"
    STEP_FINISHED = "step-finished"
    RUN_FINISHED = "run-finished"


class RunUpdateEvent(BaseModel):
    """A timestamped lifecycle event for one run."""

    run_id: str
    type: RunEventType
    timestamp: datetime = Field(default_factory=utc_now)
    run_status: Optional[RunStatus] = None
    step_id: Optional[str] = None
    step_order: Optional[int] = None
    step_status: Optional[StepStatus] = None
    step_result: Optional[StepResult] = None
    message: Optional[str] = None


class BrowserInstallPhase(str, Enum):
    STARTING = "starting"
    DOWNLOADING = "downloading"
    INSTALLING = "installing"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    FAILED = "failed"


class BrowserInstallUpdate(BaseModel):
    """One progress line from a browser install."""

    browser: BrowserName
    phase: BrowserInstallPhase
    progress: Optional[int] = Field(None, ge=0, le=100)
    message: str
    timestamp: datetime = Field(default_factory=utc_now)


class BrowserInstallState(BaseModel):
    """Install status of one browser engine."""

    browser: BrowserName
    installed: bool = False
    install_in_progress: bool = False
    executable_path: Optional[str] = None
    last_error: Optional[str] = None
