"""
Browser dialog handling.

Playwright dismisses a dialog immediately when a page has no ``dialog``
listener, and stalls the triggering action when a listener never answers.
A dialog step therefore has to be armed before the step that opens the
dialog runs; the responder keeps one armed decision per page and applies
it to the next dialog that appears.
"""

import asyncio
from typing import Any, Optional, Set

from stepwise.core.types import DialogAction, DialogDecision
from stepwise.monitoring.logger import get_logger


class DialogResponder:
    """Answers dialogs on one page with the decision of a dialog step."""

    def __init__(self, page: Any) -> None:
        self.logger = get_logger("browser.dialogs")
        self._decision: Optional[DialogAction] = None
        self._answered: Optional[asyncio.Future] = None
        self._handlers: Set[asyncio.Future] = set()
        page.on("dialog", lambda dialog: self._track(asyncio.ensure_future(self._handle(dialog))))

    @property
    def armed(self) -> bool:
        return self._answered is not None

    def arm(self, action: DialogAction) -> None:
        """Apply ``action`` to the next dialog; a no-op while already armed."""
        if self._answered is not None:
            return
        self._decision = action
        self._answered = asyncio.get_running_loop().create_future()

    def disarm(self) -> None:
        answered = self._answered
        self._decision = None
        self._answered = None
        if answered is not None and not answered.done():
            answered.cancel()

    async def answer(self, action: DialogAction, timeout_ms: int, token=None) -> None:
        """
        Wait until a dialog has been answered for ``action``.

        Returns at once when the dialog already appeared during an earlier
        step.

        Raises:
            TimeoutError: If no dialog appeared in time
        """
        self.arm(action)
        answered = self._answered

        waiter = asyncio.wait_for(asyncio.shield(answered), timeout_ms / 1000)
        try:
            await (token.wait_for(waiter) if token is not None else waiter)
        except asyncio.TimeoutError:
            raise TimeoutError(f"Timeout {timeout_ms}ms exceeded while waiting for a browser dialog")
        finally:
            self.disarm()

    def _track(self, handler: asyncio.Future) -> None:
        self._handlers.add(handler)
        handler.add_done_callback(self._handlers.discard)

    async def _handle(self, dialog: Any) -> None:
        decision, answered = self._decision, self._answered
        if decision is None or answered is None or answered.done():
            self.logger.info(
                "Dismissing unexpected browser dialog",
                extra={"dialog_type": getattr(dialog, "type", None)},
            )
            await dialog.dismiss()
            return

        self._decision = None
        try:
            if decision.action == DialogDecision.DISMISS:
                await dialog.dismiss()
            elif decision.prompt_text is not None:
                await dialog.accept(decision.prompt_text)
            else:
                await dialog.accept()
        except Exception as e:
            if not answered.done():
                answered.set_exception(e)
            return

        if not answered.done():
            answered.set_result(decision.action)
