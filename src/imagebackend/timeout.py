"""Timeout class for bounded wait loops."""

from __future__ import annotations

import asyncio
from datetime import timedelta

from safir.datetime import current_datetime

__all__ = ["Timeout"]


class Timeout:
    """Track a cumulative wall-clock budget on a series of operations.

    The builder reconciler waits on a slowly-converging cluster in several
    loops, each of which must give up once an overall budget has been spent.
    The budget is measured from the creation of this object, so a slow
    individual step consumes time from the shared budget rather than getting
    its own deadline.

    Parameters
    ----------
    operation
        Human-readable name of operation, for log messages.
    timeout
        Duration of the budget.
    """

    def __init__(self, operation: str, timeout: timedelta) -> None:
        self._operation = operation
        self._timeout = timeout
        self._start = current_datetime(microseconds=True)

    @property
    def operation(self) -> str:
        """Name of the operation being timed."""
        return self._operation

    @property
    def timeout(self) -> timedelta:
        """Total budget."""
        return self._timeout

    def elapsed(self) -> float:
        """Elapsed time since the timeout started.

        Returns
        -------
        float
            Seconds elapsed since the object was created.
        """
        now = current_datetime(microseconds=True)
        return (now - self._start).total_seconds()

    def expired(self) -> bool:
        """Whether more than the full budget has elapsed."""
        return self.elapsed() > self._timeout.total_seconds()

    def left(self) -> float:
        """Return the amount of time remaining in seconds.

        Returns
        -------
        float
            Time remaining in the budget, never negative.
        """
        return max(self._timeout.total_seconds() - self.elapsed(), 0.0)

    async def sleep(self, interval: timedelta) -> None:
        """Pause between attempts without sleeping past the budget.

        The pause is an ordinary `asyncio.sleep`, so cancelling the task
        running the wait loop aborts it immediately.

        Parameters
        ----------
        interval
            Desired delay before the next attempt.
        """
        delay = min(interval.total_seconds(), self.left())
        await asyncio.sleep(delay)
