"""
Declarative selector fallback chains.

A chain is an ordered list of attempts. Each attempt receives a timeout
carved out of whatever budget remains, so no single candidate can consume
the whole step timeout.
"""

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, List, Optional, Sequence

from stepwise.error_handling.classification import error_message, is_abort_artifact
from stepwise.error_handling.exceptions import RunCancelledError, TargetNotFoundError
from stepwise.monitoring.logger import get_logger

if TYPE_CHECKING:
    from stepwise.orchestration.cancellation import CancellationToken

logger = get_logger(__name__)

MIN_ATTEMPT_TIMEOUT_MS = 1000


@dataclass(frozen=True)
class Attempt:
    """One candidate strategy; ``run`` receives its timeout in milliseconds."""

    label: str
    run: Callable[[int], Awaitable[Any]]


def attempt_timeout_ms(remaining_ms: int) -> int:
    return max(MIN_ATTEMPT_TIMEOUT_MS, remaining_ms // 3)


async def run_fallback_chain(
    attempts: Sequence[Attempt],
    budget_ms: int,
    target: str,
    failure_message: Optional[str] = None,
    token: Optional["CancellationToken"] = None,
    clock: Callable[[], float] = time.monotonic,
) -> str:
    """
    Try attempts in order until one succeeds.

    Args:
        attempts: Candidate strategies, most specific first
        budget_ms: Total timeout budget shared by the chain
        target: Step target text, named in the failure
        failure_message: Message used when every attempt fails
        token: Cancellation token checked before each attempt
        clock: Monotonic clock in seconds

    Returns:
        Label of the attempt that succeeded

    Raises:
        TargetNotFoundError: If every attempt failed
        RunCancelledError: If the run was cancelled
    """
    deadline = clock() + budget_ms / 1000
    failures: List[str] = []

    for attempt in attempts:
        if token is not None:
            token.raise_if_cancelled()

        remaining_ms = max(0, int((deadline - clock()) * 1000))
        timeout_ms = attempt_timeout_ms(remaining_ms)

        try:
            await attempt.run(timeout_ms)
        except RunCancelledError:
            raise
        except Exception as e:
            if is_abort_artifact(e) or (token is not None and token.cancelled):
                raise
            failures.append(attempt.label)
            logger.debug(
                f"Fallback attempt failed: {attempt.label}",
                extra={"target": target, "timeout_ms": timeout_ms, "error": error_message(e)},
            )
            continue

        logger.debug(
            f"Fallback attempt succeeded: {attempt.label}",
            extra={"target": target, "failed_attempts": len(failures)},
        )
        return attempt.label

    raise TargetNotFoundError(
        failure_message or f'Unable to locate target "{target}".',
        target=target,
        attempts=failures,
    )
