"""Per-call time budget for batch handlers."""
from __future__ import annotations

import time
from collections.abc import Callable

from src.core.config import settings


class TimeBudget:
    """
    Tracks the remaining server-side time for one request.

    Handlers check ``expired()`` between rows or chunks and stop early,
    leaving the rest of the work for the next call.
    """

    def __init__(
        self,
        seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.seconds = settings.CALL_TIME_BUDGET_SECONDS if seconds is None else seconds
        self._clock = clock
        self._started = clock()

    @property
    def elapsed(self) -> float:
        return self._clock() - self._started

    @property
    def remaining(self) -> float:
        return max(0.0, self.seconds - self.elapsed)

    def expired(self) -> bool:
        return self.elapsed >= self.seconds
