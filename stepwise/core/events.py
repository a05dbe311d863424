"""
Publish/subscribe channel for run lifecycle and browser install events.
"""

import asyncio
import inspect
from typing import Any, Callable, Generic, List, Set, TypeVar

from stepwise.monitoring.logger import get_logger

logger = get_logger(__name__)

E = TypeVar("E")

EventHandler = Callable[[E], Any]
Unsubscribe = Callable[[], None]


class EventBus(Generic[E]):
    """
    Ordered fan-out of events to subscribers.

    Handlers are called synchronously in subscription order, so every
    subscriber observes events in publish order. Coroutine handlers are
    scheduled on the running loop. A failing handler is logged and never
    affects the publisher or other subscribers.
    """

    def __init__(self, name: str = "events") -> None:
        self.name = name
        self._subscribers: List[EventHandler] = []
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, handler: EventHandler) -> Unsubscribe:
        """
        Register a handler.

        Args:
            handler: Callable (or coroutine function) receiving each event

        Returns:
            Callable that removes the subscription; calling it twice is harmless
        """
        self._subscribers.append(handler)
        logger.debug(f"Subscription added on {self.name}")

        def unsubscribe() -> None:
            if handler in self._subscribers:
                self._subscribers.remove(handler)
                logger.debug(f"Subscription removed on {self.name}")

        return unsubscribe

    def publish(self, event: E) -> None:
        """Deliver an event to all current subscribers."""
        for handler in list(self._subscribers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    self._schedule(result)
            except Exception:
                logger.exception(f"Event handler failed on {self.name}")

    def _schedule(self, awaitable: Any) -> None:
        task = asyncio.ensure_future(awaitable)
        self._pending.add(task)
        task.add_done_callback(self._on_handler_done)

    def _on_handler_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                f"Async event handler failed on {self.name}",
                exc_info=task.exception(),
            )

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
