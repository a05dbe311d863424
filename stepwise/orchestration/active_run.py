"""
Single-slot register holding the active run.
"""

from dataclasses import dataclass, field
from typing import Optional

from stepwise.core.types import ActiveRunContext
from stepwise.orchestration.cancellation import CancellationToken


@dataclass
class ActiveRun:
    """In-memory handle of the run currently executing."""

    run_id: str
    test_case_id: str
    project_id: str
    token: CancellationToken = field(default_factory=CancellationToken)
    _finalized: bool = field(default=False, init=False, repr=False)

    @property
    def finalized(self) -> bool:
        return self._finalized

    def claim_finalization(self) -> bool:
        """
        Claim the right to finalize this run.

        Exactly one caller (cancel or normal completion) ever gets True.
        """
        if self._finalized:
            return False
        self._finalized = True
        return True

    def context(self) -> ActiveRunContext:
        return ActiveRunContext(
            run_id=self.run_id,
            test_case_id=self.test_case_id,
            project_id=self.project_id,
        )


class ActiveRunRegister:
    """
    Holds at most one ActiveRun.

    ``try_claim`` and ``release`` are compare-and-set operations; neither
    suspends, so on a single event loop they are atomic.
    """

    def __init__(self) -> None:
        self._current: Optional[ActiveRun] = None

    @property
    def current(self) -> Optional[ActiveRun]:
        return self._current

    @property
    def occupied(self) -> bool:
        return self._current is not None

    def try_claim(self, run: ActiveRun) -> bool:
        if self._current is not None:
            return False
        self._current = run
        return True

    def release(self, run_id: str) -> bool:
        """Clear the slot if it still holds ``run_id``."""
        if self._current is None or self._current.run_id != run_id:
            return False
        self._current = None
        return True

    def get(self, run_id: str) -> Optional[ActiveRun]:
        if self._current is not None and self._current.run_id == run_id:
            return self._current
        return None
