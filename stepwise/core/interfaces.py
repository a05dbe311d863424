"""
Core interfaces and abstract base classes for the Stepwise runner.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from stepwise.core.types import (
    ActiveRunContext,
    BrowserInstallState,
    BrowserName,
    Run,
    RunContext,
    RunStatus,
    Step,
    StepResult,
    StepStatus,
)


class RunRecordStore(ABC):
    """
    Durable Run/StepResult rows as seen by the run orchestrator.

    Every write except ``create_run`` is an independent statement. Writes
    against a row that no longer exists are no-ops.
    """

    @abstractmethod
    def get_run_context(self, test_case_id: str) -> RunContext:
        """
        Resolve the test title, owning project and base URL.

        Raises:
            RecordNotFoundError: If the test case does not exist
        """
        pass

    @abstractmethod
    def list_steps(self, test_case_id: str) -> List[Step]:
        """Steps of a test case ordered by step order."""
        pass

    @abstractmethod
    def create_run(self, run: Run, step_ids: Sequence[str]) -> None:
        """Persist a run and one pending result per step in one transaction."""
        pass

    @abstractmethod
    def get_run(self, run_id: str) -> Optional[Run]:
        pass

    @abstractmethod
    def list_runs(self, test_case_id: str) -> List[Run]:
        """Runs of a test case ordered by start time, oldest first."""
        pass

    @abstractmethod
    def update_run_status(
        self, run_id: str, status: RunStatus, ended_at: Optional[datetime]
    ) -> bool:
        """Set run status. Returns False when the run row is gone."""
        pass

    @abstractmethod
    def update_step_result(
        self,
        run_id: str,
        step_id: str,
        status: StepStatus,
        error_text: Optional[str],
        screenshot_path: Optional[str],
    ) -> Optional[StepResult]:
        """Update one step result and return it, or None when it is gone."""
        pass

    @abstractmethod
    def list_step_results(self, run_id: str) -> List[StepResult]:
        """
        Step results of a run ordered by step order.

        Results whose step row is missing report order 0 and a
        placeholder raw text instead of failing.
        """
        pass

    @abstractmethod
    def first_pending_step_id(self, run_id: str) -> Optional[str]:
        pass

    @abstractmethod
    def mark_pending_cancelled(self, run_id: str) -> int:
        """Cancel all pending results, keeping any existing error text."""
        pass

    @abstractmethod
    def find_running_context(self) -> Optional[ActiveRunContext]:
        """Most recently started run still marked running, if any."""
        pass


class BrowserRuntime(ABC):
    """Installs and launches browser engines."""

    @abstractmethod
    async def get_status(self, browser: BrowserName) -> BrowserInstallState:
        pass

    @abstractmethod
    async def get_statuses(self) -> List[BrowserInstallState]:
        pass

    @abstractmethod
    async def ensure_installed(self, browser: BrowserName) -> None:
        """Install the engine unless it is already present."""
        pass

    @abstractmethod
    async def install(self, browser: BrowserName) -> None:
        pass

    @abstractmethod
    async def launch(self, browser: BrowserName) -> Any:
        """
        Launch an isolated browser instance.

        Returns:
            A Playwright ``Browser`` (or an object with the same surface)
        """
        pass


class ConfigProvider(ABC):
    """Abstract interface for configuration management."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        pass

    @abstractmethod
    def get_required(self, key: str) -> Any:
        """Get required configuration value, raise if missing."""
        pass

    @abstractmethod
    def get_all(self) -> Dict[str, Any]:
        """Get all configuration values."""
        pass
