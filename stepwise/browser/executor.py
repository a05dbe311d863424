"""
Action executor: performs one parsed action against a Playwright page.
"""

import asyncio
import re
import weakref
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional

from stepwise.browser.dialogs import DialogResponder
from stepwise.browser.strategies import Attempt, run_fallback_chain
from stepwise.browser.urls import resolve_navigation_target, url_matches
from stepwise.core.types import (
    ACTION_TYPES,
    Action,
    ClickAction,
    DialogAction,
    DownloadAction,
    EnterAction,
    ExpectAction,
    HoverAction,
    NavigateAction,
    PressAction,
    SelectAction,
    SetCheckedAction,
    UploadAction,
    WaitForRequestAction,
)
from stepwise.error_handling.exceptions import StepwiseError
from stepwise.monitoring.logger import get_logger, log_performance_metric

if TYPE_CHECKING:
    from stepwise.orchestration.cancellation import CancellationToken

MAX_WAIT_MS = 600_000
MIN_EXPECT_TIMEOUT_MS = 1000
KEYBOARD_TYPE_DELAY_MS = 15
CLICKABLE_ROLES = ("button", "link", "menuitem")
DEFAULT_WAIT_UNTIL = "domcontentloaded"

Handler = Callable[..., Awaitable[None]]


def text_matcher(text: str) -> re.Pattern:
    """Case-insensitive literal match for locator text."""
    return re.compile(re.escape(text), re.IGNORECASE)


def css_attribute_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def structural_selectors(target: str) -> List[str]:
    """
    CSS candidates for identifier-like targets.

    ``.x`` and ``#x`` are used as written; a bare token is tried as a test
    id and as an element id. Targets containing whitespace are prose and
    yield no structural candidates.
    """
    value = target.strip()
    if not value or re.search(r"\s", value):
        return []
    if value.startswith((".", "#")) and len(value) > 1:
        return [value]
    escaped = css_attribute_value(value)
    return [
        f'[data-testid="{escaped}"]',
        f'[data-test-id="{escaped}"]',
        f'[id="{escaped}"]',
    ]


def structural_selector(target: str) -> Optional[str]:
    """All structural candidates as one selector list, or None for prose."""
    selectors = structural_selectors(target)
    return ", ".join(selectors) if selectors else None


def timeout_override_ms(timeout_seconds: Optional[int], default_ms: int) -> int:
    """Action-level timeout clamped to [1s, 10min], else the step timeout."""
    if not timeout_seconds:
        return default_ms
    return max(MIN_EXPECT_TIMEOUT_MS, min(MAX_WAIT_MS, int(round(timeout_seconds * 1000))))


def click_delay_ms(delay_seconds: Optional[float]) -> int:
    if not delay_seconds:
        return 0
    return max(0, min(MAX_WAIT_MS, int(round(delay_seconds * 1000))))


class ActionExecutor:
    """
    Executes actions using ordered fallback strategies.

    Every action variant has exactly one handler; construction fails if a
    variant is missing so new actions cannot silently go unexecuted.
    """

    def __init__(self, navigation_wait_until: str = DEFAULT_WAIT_UNTIL) -> None:
        self.navigation_wait_until = navigation_wait_until
        self.logger = get_logger("browser.executor")
        self._responders: "weakref.WeakKeyDictionary[Any, DialogResponder]" = (
            weakref.WeakKeyDictionary()
        )

        self._handlers: Dict[str, Handler] = {
            "enter": self._enter,
            "click": self._click,
            "navigate": self._navigate,
            "expect": self._expect,
            "select": self._select,
            "setChecked": self._set_checked,
            "hover": self._hover,
            "press": self._press,
            "upload": self._upload,
            "dialog": self._dialog,
            "waitForRequest": self._wait_for_request,
            "download": self._download,
        }

        missing = set(ACTION_TYPES) - set(self._handlers)
        unknown = set(self._handlers) - set(ACTION_TYPES)
        if missing or unknown:
            raise RuntimeError(
                f"Action handlers out of sync: missing={sorted(missing)} unknown={sorted(unknown)}"
            )

    def attach(self, page: Any) -> DialogResponder:
        """Start listening for dialogs on a page; idempotent."""
        responder = self._responders.get(page)
        if responder is None:
            responder = DialogResponder(page)
            self._responders[page] = responder
        return responder

    def prepare(self, page: Any, upcoming: Action) -> None:
        """
        Get ready for the action after the one about to run.

        A dialog step is armed ahead of time because its dialog is usually
        opened by the preceding step.
        """
        if isinstance(upcoming, DialogAction):
            self.attach(page).arm(upcoming)

    @property
    def handled_types(self) -> List[str]:
        return sorted(self._handlers)

    async def execute(
        self,
        page: Any,
        action: Action,
        timeout_ms: int,
        base_url: str,
        token: Optional["CancellationToken"] = None,
    ) -> None:
        """
        Perform an action on a page.

        Args:
            page: Playwright page
            action: Action to perform
            timeout_ms: Step timeout budget in milliseconds
            base_url: Project base URL for relative navigation
            token: Cancellation token of the owning run

        Raises:
            TargetNotFoundError: If no strategy located the target
            RunCancelledError: If the run was cancelled
        """
        handler = self._handlers[action.type]
        if token is not None:
            token.raise_if_cancelled()

        self.logger.debug(
            f"Executing {action.type} action",
            extra={"action_type": action.type, "timeout_ms": timeout_ms},
        )
        loop = asyncio.get_running_loop()
        start_time = loop.time()

        await handler(page, action, timeout_ms, base_url, token)

        elapsed_ms = (loop.time() - start_time) * 1000
        log_performance_metric(
            "action_execution", elapsed_ms, context={"action_type": action.type}
        )

    # Core actions

    async def _enter(
        self, page: Any, action: EnterAction, timeout_ms: int, base_url: str, token
    ) -> None:
        matcher = text_matcher(action.target)
        value = action.value

        async def type_after_text_click(t: int) -> None:
            await page.get_by_text(matcher).first.click(timeout=t)
            await page.keyboard.type(value, delay=KEYBOARD_TYPE_DELAY_MS)

        await run_fallback_chain(
            [
                Attempt("label", lambda t: page.get_by_label(matcher).first.fill(value, timeout=t)),
                Attempt(
                    "textbox-role",
                    lambda t: page.get_by_role("textbox", name=matcher).first.fill(value, timeout=t),
                ),
                Attempt(
                    "placeholder",
                    lambda t: page.get_by_placeholder(matcher).first.fill(value, timeout=t),
                ),
                Attempt("text-then-keyboard", type_after_text_click),
            ],
            timeout_ms,
            action.target,
            failure_message=f'Unable to locate input field "{action.target}".',
            token=token,
        )

    async def _click(
        self, page: Any, action: ClickAction, timeout_ms: int, base_url: str, token
    ) -> None:
        delay_ms = click_delay_ms(action.delay_seconds)
        if delay_ms > 0:
            if token is not None:
                await token.sleep(delay_ms / 1000)
            else:
                await asyncio.sleep(delay_ms / 1000)

        await self._click_target(page, action.target, timeout_ms, token)

    async def _click_target(self, page: Any, target: str, timeout_ms: int, token) -> None:
        await run_fallback_chain(
            self._pointer_attempts(page, target, lambda loc, t: loc.click(timeout=t)),
            timeout_ms,
            target,
            failure_message=f'Unable to locate clickable target "{target}".',
            token=token,
        )

    def _pointer_attempts(
        self, page: Any, target: str, act: Callable[[Any, int], Awaitable[Any]]
    ) -> List[Attempt]:
        """Structural selectors, then clickable roles, then plain text."""
        matcher = text_matcher(target)
        attempts: List[Attempt] = []
        selector = structural_selector(target)
        if selector:
            explicit = target.strip().startswith((".", "#"))

            async def structural(t: int) -> None:
                locator = page.locator(selector)
                # A bare token that matches nothing yet is prose, not an id
                if not explicit and await locator.count() == 0:
                    raise LookupError(f"No element matches {selector}")
                await act(locator.first, t)

            attempts.append(Attempt("structural", structural))
        attempts.extend(
            Attempt(
                f"role:{role}",
                lambda t, r=role: act(page.get_by_role(r, name=matcher).first, t),
            )
            for role in CLICKABLE_ROLES
        )
        attempts.append(Attempt("text", lambda t: act(page.get_by_text(matcher).first, t)))
        return attempts

    async def _navigate(
        self, page: Any, action: NavigateAction, timeout_ms: int, base_url: str, token
    ) -> None:
        destination = resolve_navigation_target(action.target, page.url, base_url)
        self.logger.info("Navigating", extra={"url": destination})
        await page.goto(destination, wait_until=self.navigation_wait_until, timeout=timeout_ms)

    async def _expect(
        self, page: Any, action: ExpectAction, timeout_ms: int, base_url: str, token
    ) -> None:
        wait_ms = timeout_override_ms(action.timeout_seconds, timeout_ms)
        await page.get_by_text(text_matcher(action.assertion)).first.wait_for(
            state="visible", timeout=wait_ms
        )

    # Form controls

    async def _select(
        self, page: Any, action: SelectAction, timeout_ms: int, base_url: str, token
    ) -> None:
        field = text_matcher(action.target)
        option = text_matcher(action.value)
        value = action.value

        async def custom_dropdown(t: int) -> None:
            await page.get_by_text(field).first.click(timeout=t)
            await page.get_by_role("option", name=option).first.click(timeout=t)

        await run_fallback_chain(
            [
                Attempt(
                    "label-by-label",
                    lambda t: page.get_by_label(field).first.select_option(label=value, timeout=t),
                ),
                Attempt(
                    "label-by-value",
                    lambda t: page.get_by_label(field).first.select_option(value=value, timeout=t),
                ),
                Attempt(
                    "combobox-role",
                    lambda t: page.get_by_role("combobox", name=field).first.select_option(
                        label=value, timeout=t
                    ),
                ),
                Attempt("custom-dropdown", custom_dropdown),
            ],
            timeout_ms,
            action.target,
            failure_message=f'Unable to select "{action.value}" in "{action.target}".',
            token=token,
        )

    async def _set_checked(
        self, page: Any, action: SetCheckedAction, timeout_ms: int, base_url: str, token
    ) -> None:
        matcher = text_matcher(action.target)

        def toggle(locator: Any, t: int) -> Awaitable[None]:
            if action.checked:
                return locator.check(timeout=t)
            return locator.uncheck(timeout=t)

        await run_fallback_chain(
            [
                Attempt("label", lambda t: toggle(page.get_by_label(matcher).first, t)),
                Attempt(
                    "checkbox-role",
                    lambda t: toggle(page.get_by_role("checkbox", name=matcher).first, t),
                ),
                Attempt("text", lambda t: toggle(page.get_by_text(matcher).first, t)),
            ],
            timeout_ms,
            action.target,
            failure_message=f'Unable to locate checkbox "{action.target}".',
            token=token,
        )

    async def _hover(
        self, page: Any, action: HoverAction, timeout_ms: int, base_url: str, token
    ) -> None:
        await run_fallback_chain(
            self._pointer_attempts(page, action.target, lambda loc, t: loc.hover(timeout=t)),
            timeout_ms,
            action.target,
            failure_message=f'Unable to locate hover target "{action.target}".',
            token=token,
        )

    async def _press(
        self, page: Any, action: PressAction, timeout_ms: int, base_url: str, token
    ) -> None:
        if not action.target:
            await page.keyboard.press(action.key)
            return

        matcher = text_matcher(action.target)
        key = action.key
        await run_fallback_chain(
            [
                Attempt("label", lambda t: page.get_by_label(matcher).first.press(key, timeout=t)),
                Attempt(
                    "textbox-role",
                    lambda t: page.get_by_role("textbox", name=matcher).first.press(key, timeout=t),
                ),
                Attempt(
                    "placeholder",
                    lambda t: page.get_by_placeholder(matcher).first.press(key, timeout=t),
                ),
            ],
            timeout_ms,
            action.target,
            failure_message=f'Unable to locate field "{action.target}" to press {key}.',
            token=token,
        )

    async def _upload(
        self, page: Any, action: UploadAction, timeout_ms: int, base_url: str, token
    ) -> None:
        matcher = text_matcher(action.target)
        files = list(action.file_paths)
        named_input = f'input[type="file"][name="{css_attribute_value(action.target)}"]'

        await run_fallback_chain(
            [
                Attempt("label", lambda t: page.get_by_label(matcher).first.set_input_files(files, timeout=t)),
                Attempt(
                    "named-file-input",
                    lambda t: page.locator(named_input).first.set_input_files(files, timeout=t),
                ),
                Attempt(
                    "first-file-input",
                    lambda t: page.locator('input[type="file"]').first.set_input_files(files, timeout=t),
                ),
            ],
            timeout_ms,
            action.target,
            failure_message=f'Unable to locate file input "{action.target}".',
            token=token,
        )

    # Event-driven actions

    async def _dialog(
        self, page: Any, action: DialogAction, timeout_ms: int, base_url: str, token
    ) -> None:
        await self.attach(page).answer(action, timeout_ms, token)

    async def _wait_for_request(
        self, page: Any, action: WaitForRequestAction, timeout_ms: int, base_url: str, token
    ) -> None:
        wait_ms = timeout_override_ms(action.timeout_seconds, timeout_ms)

        def matches(response: Any) -> bool:
            if not url_matches(action.url_pattern, response.url):
                return False
            if action.method and response.request.method.upper() != action.method.upper():
                return False
            if action.status is not None and response.status != action.status:
                return False
            return True

        await self._armed_wait(
            page,
            page.wait_for_event("response", predicate=matches, timeout=wait_ms),
            action.trigger_click_target,
            timeout_ms,
            token,
        )

    async def _download(
        self, page: Any, action: DownloadAction, timeout_ms: int, base_url: str, token
    ) -> None:
        wait_ms = timeout_override_ms(action.timeout_seconds, timeout_ms)
        download = await self._armed_wait(
            page,
            page.wait_for_event("download", timeout=wait_ms),
            action.trigger_click_target,
            timeout_ms,
            token,
        )

        failure = await download.failure()
        if failure:
            raise StepwiseError(f"Download failed: {failure}", error_code="DOWNLOAD_FAILED")

    async def _armed_wait(
        self,
        page: Any,
        event_wait: Awaitable[Any],
        trigger_click_target: Optional[str],
        timeout_ms: int,
        token,
    ) -> Any:
        """Arm an event wait, run the optional trigger click, then await the event."""
        waiter = asyncio.ensure_future(event_wait)
        # Let the waiter register its listener before the trigger fires
        await asyncio.sleep(0)

        try:
            if trigger_click_target:
                await self._click_target(page, trigger_click_target, timeout_ms, token)
            if token is not None:
                return await token.wait_for(waiter)
            return await waiter
        except BaseException:
            if not waiter.done():
                waiter.cancel()
            elif not waiter.cancelled():
                waiter.exception()
            raise
