"""
Browser runtime manager: install status, de-duplicated installs, launch.
"""

import asyncio
import re
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from playwright.async_api import Browser, Playwright, async_playwright

from stepwise.config.settings import Settings, get_settings
from stepwise.core.events import EventBus
from stepwise.core.interfaces import BrowserRuntime
from stepwise.core.types import (
    BrowserInstallPhase,
    BrowserInstallState,
    BrowserInstallUpdate,
    BrowserName,
)
from stepwise.error_handling.exceptions import BrowserInstallError
from stepwise.monitoring.logger import get_logger, log_performance_metric

ALL_BROWSERS: Tuple[BrowserName, ...] = (
    BrowserName.CHROMIUM,
    BrowserName.FIREFOX,
    BrowserName.WEBKIT,
)

CHROMIUM_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-dev-shm-usage",
]

_PERCENTAGE = re.compile(r"(\d{1,3})%")
_LINE_BREAK = re.compile(r"\r\n|\n|\r")
_DOWNLOADING = re.compile(r"download", re.IGNORECASE)
_INSTALLING = re.compile(r"extract|unpack|decompress|copy", re.IGNORECASE)
_VERIFYING = re.compile(r"verif|valid|done|installed|complete", re.IGNORECASE)

InstallCommand = Callable[[BrowserName], Sequence[str]]


def infer_phase(line: str) -> BrowserInstallPhase:
    """Guess the install phase from one installer output line."""
    if _DOWNLOADING.search(line):
        return BrowserInstallPhase.DOWNLOADING
    if _INSTALLING.search(line):
        return BrowserInstallPhase.INSTALLING
    if _VERIFYING.search(line):
        return BrowserInstallPhase.VERIFYING
    return BrowserInstallPhase.INSTALLING


def parse_progress(line: str) -> Optional[int]:
    """Explicit ``NN%`` in a line, clamped to [0, 100]."""
    match = _PERCENTAGE.search(line)
    if not match:
        return None
    return max(0, min(100, int(match.group(1))))


class InstallProgressTracker:
    """
    Turns installer output lines into phase/progress pairs.

    Lines without an explicit percentage get a synthetic value that grows
    by 2 per line, never exceeds 96 and never falls behind the highest
    explicit percentage seen so far.
    """

    SYNTHETIC_START = 3
    SYNTHETIC_STEP = 2
    SYNTHETIC_CAP = 96

    def __init__(self) -> None:
        self.fallback_progress = self.SYNTHETIC_START

    def consume(self, line: str) -> Tuple[BrowserInstallPhase, int]:
        phase = infer_phase(line)
        parsed = parse_progress(line)

        if parsed is None:
            self.fallback_progress = min(
                self.SYNTHETIC_CAP, self.fallback_progress + self.SYNTHETIC_STEP
            )
            return phase, self.fallback_progress

        self.fallback_progress = max(self.fallback_progress, parsed)
        return phase, parsed


def playwright_install_command(browser: BrowserName) -> List[str]:
    return [sys.executable, "-m", "playwright", "install", browser.value]


class BrowserRuntimeManager(BrowserRuntime):
    """Playwright-backed browser runtime."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        event_bus: Optional[EventBus[BrowserInstallUpdate]] = None,
        install_command: Optional[InstallCommand] = None,
        headless: Optional[bool] = None,
    ) -> None:
        """
        Initialize the runtime manager.

        Args:
            settings: Optional settings instance
            event_bus: Channel receiving install progress updates
            install_command: Builds the installer argv for a browser
            headless: Launch browsers headless (defaults to settings)
        """
        self.settings = settings or get_settings()
        self.events: EventBus[BrowserInstallUpdate] = event_bus or EventBus("browser_install")
        self.install_command = install_command or playwright_install_command
        self.headless = headless if headless is not None else self.settings.browser_headless

        self.logger = get_logger("browser.runtime")
        self._playwright: Optional[Playwright] = None
        self._states: Dict[BrowserName, BrowserInstallState] = {}
        self._install_tasks: Dict[BrowserName, asyncio.Task] = {}

    def subscribe(self, handler: Callable[[BrowserInstallUpdate], Any]) -> Callable[[], None]:
        """Receive install progress updates; returns an unsubscribe callable."""
        return self.events.subscribe(handler)

    async def _get_playwright(self) -> Playwright:
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        return self._playwright

    def _state(self, browser: BrowserName) -> BrowserInstallState:
        state = self._states.get(browser)
        if state is None:
            state = BrowserInstallState(browser=browser)
            self._states[browser] = state
        return state

    async def executable_path(self, browser: BrowserName) -> Optional[str]:
        playwright = await self._get_playwright()
        try:
            return getattr(playwright, browser.value).executable_path
        except Exception as e:
            self.logger.debug(
                "Executable path unavailable",
                extra={"browser": browser.value, "error": str(e)},
            )
            return None

    async def get_status(self, browser: BrowserName) -> BrowserInstallState:
        state = self._state(browser)
        path = await self.executable_path(browser)
        state.executable_path = path
        state.installed = bool(path) and Path(path).exists()
        state.install_in_progress = browser in self._install_tasks
        return state.model_copy()

    async def get_statuses(self) -> List[BrowserInstallState]:
        return [await self.get_status(browser) for browser in ALL_BROWSERS]

    async def ensure_installed(self, browser: BrowserName) -> None:
        status = await self.get_status(browser)
        if status.installed:
            return
        await self.install(browser)

    async def install(self, browser: BrowserName) -> None:
        """
        Install a browser engine.

        Concurrent calls for the same browser share one install task and
        its outcome. Cancelling a caller never cancels the shared task.

        Raises:
            BrowserInstallError: If the installer fails
        """
        in_flight = self._install_tasks.get(browser)
        if in_flight is not None:
            self._emit(
                browser,
                BrowserInstallPhase.INSTALLING,
                None,
                f"{browser.value} install already in progress.",
            )
            await asyncio.shield(in_flight)
            return

        self._emit(browser, BrowserInstallPhase.STARTING, 0, f"Starting {browser.value} install...")
        self._state(browser).install_in_progress = True

        task = asyncio.ensure_future(self._tracked_install(browser))
        # Mark failures retrieved; they are reported through install events
        task.add_done_callback(lambda t: t.cancelled() or t.exception())
        self._install_tasks[browser] = task
        await asyncio.shield(task)

    async def _tracked_install(self, browser: BrowserName) -> None:
        state = self._state(browser)
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        try:
            await self._run_install(browser)
        except Exception as e:
            message = str(e) or "Failed to install browser."
            state.last_error = message
            self._emit(browser, BrowserInstallPhase.FAILED, None, message)
            self.logger.error(
                "Browser install failed", extra={"browser": browser.value, "error": message}
            )
            if isinstance(e, BrowserInstallError):
                raise
            raise BrowserInstallError(message, browser=browser.value, cause=e) from e
        else:
            state.last_error = None
            self._emit(browser, BrowserInstallPhase.COMPLETED, 100, f"{browser.value} installed.")
            log_performance_metric(
                "browser_install",
                (loop.time() - start_time) * 1000,
                context={"browser": browser.value},
            )
        finally:
            state.install_in_progress = False
            self._install_tasks.pop(browser, None)

    async def _run_install(self, browser: BrowserName) -> None:
        command = list(self.install_command(browser))
        self.logger.info("Installing browser", extra={"browser": browser.value, "command": command})

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                stdin=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise BrowserInstallError(
                f"Playwright browser install failed to start: {e}",
                browser=browser.value,
                cause=e,
            ) from e

        tracker = InstallProgressTracker()
        output: List[str] = []
        buffer = ""

        while True:
            chunk = await process.stdout.read(4096)
            if not chunk:
                break
            text = chunk.decode("utf-8", errors="replace")
            output.append(text)
            parts = _LINE_BREAK.split(buffer + text)
            buffer = parts.pop()
            for line in parts:
                self._consume_line(browser, tracker, line)

        if buffer.strip():
            self._consume_line(browser, tracker, buffer)

        exit_code = await process.wait()
        if exit_code != 0:
            details = "".join(output).strip()
            raise BrowserInstallError(
                details or f"Playwright install exited with code {exit_code}.",
                browser=browser.value,
                exit_code=exit_code,
            )

    def _consume_line(
        self, browser: BrowserName, tracker: InstallProgressTracker, line: str
    ) -> None:
        trimmed = line.strip()
        if not trimmed:
            return
        phase, progress = tracker.consume(trimmed)
        self._emit(browser, phase, progress, trimmed)

    def _emit(
        self,
        browser: BrowserName,
        phase: BrowserInstallPhase,
        progress: Optional[int],
        message: str,
    ) -> None:
        self.events.publish(
            BrowserInstallUpdate(browser=browser, phase=phase, progress=progress, message=message)
        )

    async def launch(self, browser: BrowserName) -> Browser:
        """Launch an isolated browser instance."""
        playwright = await self._get_playwright()
        browser_type = getattr(playwright, browser.value)

        self.logger.info(
            "Launching browser",
            extra={"browser": browser.value, "headless": self.headless},
        )
        if browser == BrowserName.CHROMIUM:
            return await browser_type.launch(headless=self.headless, args=CHROMIUM_LAUNCH_ARGS)
        return await browser_type.launch(headless=self.headless)

    async def stop(self) -> None:
        """Stop the Playwright driver."""
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
            self.logger.info("Browser runtime stopped")
