"""
Cooperative cancellation for a single run.
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, List, TypeVar

from stepwise.error_handling.exceptions import RunCancelledError
from stepwise.monitoring.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class CancellationToken:
    """
    Cancellation signal threaded through every suspension point of a run.

    ``cancel()`` flips the flag and synchronously runs the registered
    teardown callbacks, which force-close browser resources so that
    in-flight automation calls fail fast.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._callbacks: List[Callable[[], Any]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> bool:
        """
        Signal cancellation.

        Returns:
            False if the token was already cancelled
        """
        if self._event.is_set():
            return False

        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Cancellation callback failed")
        return True

    def add_callback(self, callback: Callable[[], Any]) -> Callable[[], None]:
        """
        Register a teardown callback; runs immediately if already cancelled.

        Returns:
            Callable removing the callback
        """
        if self._event.is_set():
            callback()
            return lambda: None

        self._callbacks.append(callback)

        def remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return remove

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RunCancelledError()

    async def wait_for(self, awaitable: Awaitable[T]) -> T:
        """
        Await an operation unless the token fires first.

        Raises:
            RunCancelledError: If cancelled before the operation completes
        """
        self.raise_if_cancelled()

        task = asyncio.ensure_future(awaitable)
        cancel_waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait(
                {task, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            cancel_waiter.cancel()

        if task.done():
            return task.result()

        task.cancel()
        task.add_done_callback(_close_late_result)
        raise RunCancelledError()

    async def sleep(self, seconds: float) -> None:
        """Sleep, waking early with RunCancelledError on cancellation."""
        if seconds <= 0:
            self.raise_if_cancelled()
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise RunCancelledError()

def _close_late_result(task: "asyncio.Future[Any]") -> None:
    """Close a resource that finished launching after its caller gave up."""
    if task.cancelled() or task.exception() is not None:
        return
    close = getattr(task.result(), "close", None)
    if close is None:
        return

    logger.info("Closing resource that completed after cancellation")
    try:
        closing = close()
    except Exception:
        logger.exception("Closing late resource failed")
        return
    if inspect.isawaitable(closing):
        asyncio.ensure_future(closing).add_done_callback(_log_close_failure)


def _log_close_failure(future: "asyncio.Future[Any]") -> None:
    if not future.cancelled() and future.exception() is not None:
        logger.error(
            "Closing late resource failed",
            exc_info=future.exception(),
        )
