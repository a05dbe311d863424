"""
Run orchestrator: the lifecycle state machine for test runs.

A run is ``running`` from creation and ends in exactly one of ``passed``,
``failed`` or ``cancelled``. At most one run is active at a time.
"""

import asyncio
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from stepwise.artifacts.screenshots import ScreenshotStore
from stepwise.browser.executor import ActionExecutor
from stepwise.config.settings import Settings, get_settings
from stepwise.core.events import EventBus
from stepwise.core.interfaces import BrowserRuntime, RunRecordStore
from stepwise.core.types import (
    Action,
    ActiveRunContext,
    BrowserInstallState,
    BrowserName,
    ExecutionStep,
    Run,
    RunContext,
    RunEventType,
    RunStatus,
    RunUpdateEvent,
    StepResult,
    StepStatus,
    utc_now,
)
from stepwise.error_handling.classification import classify_failure
from stepwise.error_handling.exceptions import (
    RunCancelledError,
    RunConflictError,
    RunSetupError,
)
from stepwise.interpreter.resolution import resolve_execution_action
from stepwise.monitoring.logger import get_logger, log_performance_metric, log_run_event
from stepwise.orchestration.active_run import ActiveRun, ActiveRunRegister
from stepwise.orchestration.cancellation import CancellationToken

NO_STEPS_MESSAGE = "Test case has no steps. Add at least one step before running."
CANCELLED_MESSAGE = "Run cancelled immediately."


class BrowserSession:
    """Browser, context and page opened for one run."""

    def __init__(self) -> None:
        self.browser: Any = None
        self.context: Any = None
        self.page: Any = None
        self.logger = get_logger("orchestration.session")

    def close_soon(self) -> None:
        """Schedule closing of every open resource without waiting."""
        for resource in self._open_resources():
            task = asyncio.ensure_future(self._close_one(resource))
            task.add_done_callback(lambda t: t.cancelled() or t.exception())

    async def close(self) -> None:
        for resource in self._open_resources():
            await self._close_one(resource)

    def _open_resources(self) -> List[Any]:
        return [r for r in (self.page, self.context, self.browser) if r is not None]

    async def _close_one(self, resource: Any) -> None:
        try:
            await resource.close()
        except Exception as e:
            self.logger.debug(
                "Ignoring close failure",
                extra={"resource": type(resource).__name__, "error": str(e)},
            )


class RunOrchestrator:
    """
    Starts, executes, cancels and reports test runs.

    Store calls are synchronous, so the active-run check in ``start`` and
    the finalization in ``cancel`` never interleave with a running step loop.
    """

    def __init__(
        self,
        store: RunRecordStore,
        runtime: BrowserRuntime,
        settings: Optional[Settings] = None,
        executor: Optional[ActionExecutor] = None,
        screenshots: Optional[ScreenshotStore] = None,
        event_bus: Optional[EventBus[RunUpdateEvent]] = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            store: Durable run and step result records
            runtime: Browser install and launch
            settings: Optional settings instance
            executor: Action executor (built from settings when omitted)
            screenshots: Screenshot store (rooted at the artifacts directory when omitted)
            event_bus: Channel receiving run lifecycle events
        """
        self.settings = settings or get_settings()
        self.store = store
        self.runtime = runtime
        self.executor = executor or ActionExecutor(self.settings.navigation_wait_until)
        self.screenshots = screenshots or ScreenshotStore(
            self.settings.artifacts_dir, self.settings.thumbnail_max_size
        )
        self.events: EventBus[RunUpdateEvent] = event_bus or EventBus("run_updates")

        self.logger = get_logger("orchestration.orchestrator")
        self._active = ActiveRunRegister()
        self._tasks: Dict[str, asyncio.Task] = {}

    def subscribe(self, handler: Callable[[RunUpdateEvent], Any]) -> Callable[[], None]:
        """Receive run lifecycle events; returns an unsubscribe callable."""
        return self.events.subscribe(handler)

    # Lifecycle

    def start(
        self, test_case_id: str, browser: Union[BrowserName, str, None] = None
    ) -> Run:
        """
        Start a run of a test case and return it without waiting for it.

        Must be called with an event loop running; execution is scheduled
        as a task on it.

        Raises:
            RunConflictError: If another run is active
            RecordNotFoundError: If the test case does not exist
            StepParseError: If a stored step has no usable action
            RunSetupError: If the test case has no steps
        """
        if self._active.occupied:
            raise RunConflictError()

        browser_name = BrowserName(browser) if browser else self.settings.default_browser
        context = self.store.get_run_context(test_case_id)
        steps = self._execution_steps(test_case_id)
        if not steps:
            raise RunSetupError(NO_STEPS_MESSAGE, details={"test_case_id": test_case_id})

        run = Run(id=str(uuid.uuid4()), test_case_id=test_case_id, browser=browser_name)
        active = ActiveRun(
            run_id=run.id,
            test_case_id=test_case_id,
            project_id=context.project_id,
            token=CancellationToken(),
        )
        if not self._active.try_claim(active):
            raise RunConflictError()

        try:
            self.store.create_run(run, [step.id for step in steps])
        except Exception:
            self._active.release(run.id)
            raise

        self.logger.info(
            "Run started",
            extra={"run_id": run.id, "test_case_id": test_case_id, "browser": browser_name.value},
        )
        self._emit(
            run.id,
            RunEventType.RUN_STARTED,
            run_status=RunStatus.RUNNING,
            message=f"Running {len(steps)} step(s) for {context.test_title}.",
        )

        task = asyncio.ensure_future(self._execute_run(run, context, steps, active))
        self._tasks[run.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(run.id, None))
        return run

    def cancel(self, run_id: str) -> bool:
        """
        Cancel the active run.

        Returns:
            False unless ``run_id`` is the active run and was not already
            finalized
        """
        active = self._active.get(run_id)
        if active is None or not active.claim_finalization():
            return False

        active.token.cancel()
        self.store.update_run_status(run_id, RunStatus.CANCELLED, utc_now())
        self.store.mark_pending_cancelled(run_id)

        self.logger.info("Run cancelled", extra={"run_id": run_id})
        self._emit(
            run_id,
            RunEventType.RUN_FINISHED,
            run_status=RunStatus.CANCELLED,
            message=CANCELLED_MESSAGE,
        )
        self._active.release(run_id)
        return True

    async def wait_for_run(self, run_id: str) -> Optional[Run]:
        """Wait until a run's execution task has ended and return the run."""
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.shield(task)
        return self.status(run_id)

    async def shutdown(self) -> None:
        """Cancel the active run and wait for execution tasks to end."""
        current = self._active.current
        if current is not None:
            self.cancel(current.run_id)
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # Queries

    def status(self, run_id: str) -> Optional[Run]:
        return self.store.get_run(run_id)

    def history(self, test_case_id: str) -> List[Run]:
        return self.store.list_runs(test_case_id)

    def step_results(self, run_id: str) -> List[StepResult]:
        return self.store.list_step_results(run_id)

    def active_context(self) -> Optional[ActiveRunContext]:
        """
        Context of the active run.

        Falls back to a run still marked running in the store, which covers
        a restart after an unclean exit but cannot tell a live run from a
        stale row.
        """
        current = self._active.current
        if current is not None:
            return current.context()
        return self.store.find_running_context()

    def screenshot_data_url(self, screenshot_path: str) -> str:
        return self.screenshots.data_url(screenshot_path)

    def thumbnail_data_url(self, screenshot_path: str) -> str:
        return self.screenshots.thumbnail_data_url(screenshot_path)

    async def browser_statuses(self) -> List[BrowserInstallState]:
        return await self.runtime.get_statuses()

    async def install_browser(self, browser: Union[BrowserName, str]) -> BrowserInstallState:
        browser_name = BrowserName(browser)
        await self.runtime.install(browser_name)
        return await self.runtime.get_status(browser_name)

    # Execution

    def _execution_steps(self, test_case_id: str) -> List[ExecutionStep]:
        return [
            ExecutionStep(
                **step.model_dump(),
                action=resolve_execution_action(step.action_json, step.raw_text, step.step_order),
            )
            for step in self.store.list_steps(test_case_id)
        ]

    async def _execute_run(
        self,
        run: Run,
        context: RunContext,
        steps: List[ExecutionStep],
        active: ActiveRun,
    ) -> None:
        token = active.token
        session = BrowserSession()
        remove_teardown = token.add_callback(session.close_soon)
        loop = asyncio.get_running_loop()
        start_time = loop.time()

        failed = False
        terminal_message: Optional[str] = None

        try:
            await self._open_session(run, context, session, token, steps[0].action)
            failed, terminal_message = await self._run_steps(run, context, steps, session, token)
        except RunCancelledError:
            self.logger.debug("Run execution stopped by cancellation", extra={"run_id": run.id})
        except Exception as e:
            if token.cancelled:
                self.logger.debug(
                    "Ignoring failure after cancellation",
                    extra={"run_id": run.id, "error": str(e)},
                )
            else:
                failed = True
                terminal_message = classify_failure(e, run.browser)
                self.logger.error(
                    "Run setup failed",
                    extra={"run_id": run.id, "error": terminal_message},
                    exc_info=True,
                )
                self._fail_first_pending_step(run.id, terminal_message)
                self.store.mark_pending_cancelled(run.id)
        finally:
            remove_teardown()
            await session.close()
            self._finalize(run, context, active, failed, terminal_message)
            log_performance_metric(
                "run_execution",
                (loop.time() - start_time) * 1000,
                context={"run_id": run.id, "browser": run.browser.value},
            )

    async def _open_session(
        self,
        run: Run,
        context: RunContext,
        session: BrowserSession,
        token: CancellationToken,
        first_action: Action,
    ) -> None:
        """Install if needed, launch, open a page and load the base URL."""
        await token.wait_for(self.runtime.ensure_installed(run.browser))
        session.browser = await token.wait_for(self.runtime.launch(run.browser))
        session.context = await token.wait_for(
            session.browser.new_context(
                viewport={
                    "width": self.settings.browser_viewport_width,
                    "height": self.settings.browser_viewport_height,
                }
            )
        )
        session.page = await token.wait_for(session.context.new_page())
        self.executor.attach(session.page)
        self.executor.prepare(session.page, first_action)
        await token.wait_for(
            session.page.goto(
                context.base_url,
                wait_until=self.settings.navigation_wait_until,
                timeout=self.settings.step_timeout_ms,
            )
        )

    async def _run_steps(
        self,
        run: Run,
        context: RunContext,
        steps: List[ExecutionStep],
        session: BrowserSession,
        token: CancellationToken,
    ) -> Tuple[bool, Optional[str]]:
        """
        Execute steps in order.

        Returns:
            Whether any step failed, and the last failure message
        """
        timeout_ms = self.settings.step_timeout_ms
        failed = False
        terminal_message: Optional[str] = None

        for index, step in enumerate(steps):
            token.raise_if_cancelled()
            if index + 1 < len(steps):
                self.executor.prepare(session.page, steps[index + 1].action)
            self._emit(
                run.id,
                RunEventType.STEP_STARTED,
                step_id=step.id,
                step_order=step.step_order,
                step_status=StepStatus.PENDING,
            )

            try:
                await self.executor.execute(
                    session.page, step.action, timeout_ms, context.base_url, token
                )
                screenshot_path = await self.screenshots.capture(session.page, run.id, step)
            except RunCancelledError:
                raise
            except Exception as e:
                if token.cancelled:
                    raise RunCancelledError() from e

                failed = True
                error_text = classify_failure(e, run.browser)
                terminal_message = error_text
                self.logger.warning(
                    "Step failed",
                    extra={"run_id": run.id, "step_order": step.step_order, "error": error_text},
                    exc_info=True,
                )

                failure_screenshot = await self._capture_safe(session.page, run.id, step)
                token.raise_if_cancelled()
                result = self.store.update_step_result(
                    run.id, step.id, StepStatus.FAILED, error_text, failure_screenshot
                )
                self._emit(
                    run.id,
                    RunEventType.STEP_FINISHED,
                    step_id=step.id,
                    step_order=step.step_order,
                    step_status=StepStatus.FAILED,
                    step_result=result,
                    message=error_text,
                )

                if not self.settings.continue_on_failure:
                    self.store.mark_pending_cancelled(run.id)
                    break
                continue

            token.raise_if_cancelled()
            result = self.store.update_step_result(
                run.id, step.id, StepStatus.PASSED, None, screenshot_path
            )
            self._emit(
                run.id,
                RunEventType.STEP_FINISHED,
                step_id=step.id,
                step_order=step.step_order,
                step_status=StepStatus.PASSED,
                step_result=result,
            )

        return failed, terminal_message

    async def _capture_safe(self, page: Any, run_id: str, step: ExecutionStep) -> Optional[str]:
        """Screenshot after a failure; a capture error never masks the step error."""
        try:
            return await self.screenshots.capture(page, run_id, step)
        except Exception as e:
            self.logger.debug(
                "Failure screenshot not captured",
                extra={"run_id": run_id, "step_id": step.id, "error": str(e)},
            )
            return None

    def _fail_first_pending_step(self, run_id: str, error_text: str) -> None:
        step_id = self.store.first_pending_step_id(run_id)
        if step_id is None:
            return

        result = self.store.update_step_result(
            run_id, step_id, StepStatus.FAILED, error_text, None
        )
        self._emit(
            run_id,
            RunEventType.STEP_FINISHED,
            step_id=step_id,
            step_order=result.step_order if result else None,
            step_status=StepStatus.FAILED,
            step_result=result,
            message=error_text,
        )

    def _finalize(
        self,
        run: Run,
        context: RunContext,
        active: ActiveRun,
        failed: bool,
        terminal_message: Optional[str],
    ) -> None:
        if not active.claim_finalization():
            # Already finalized by cancel
            self._active.release(run.id)
            return

        status = RunStatus.FAILED if failed else RunStatus.PASSED
        self.store.update_run_status(run.id, status, utc_now())

        if terminal_message is None:
            outcome = "failed" if failed else "passed"
            terminal_message = f"Run {outcome} for {context.project_name}."

        self.logger.info(
            "Run finished",
            extra={"run_id": run.id, "run_status": status.value},
        )
        self._emit(
            run.id,
            RunEventType.RUN_FINISHED,
            run_status=status,
            message=terminal_message,
        )
        self._active.release(run.id)

    def _emit(self, run_id: str, event_type: RunEventType, **fields: Any) -> None:
        event = RunUpdateEvent(run_id=run_id, type=event_type, **fields)
        log_run_event(event)
        self.events.publish(event)
