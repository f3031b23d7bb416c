"""Periodic refresh of the image list."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import timedelta

from aiojobs import Scheduler
from structlog.stdlib import BoundLogger

__all__ = ["ImagePoller"]


class ImagePoller:
    """Refresh the image list on a timer while watching is enabled.

    When enabled, a refresh runs immediately and then at a fixed rate. Each
    refresh is spawned as its own background job and the next tick does not
    wait for it, so a slow refresh can overlap the next one. Whichever
    overlapping refresh finishes last determines the cached list.

    Disabling stops the timer at once, but refreshes already in flight run
    to completion. Only `aclose` cancels them.

    Parameters
    ----------
    refresh
        Async function that refreshes the image list.
    interval
        Time between refreshes.
    logger
        Logger to use.
    """

    def __init__(
        self,
        refresh: Callable[[], Awaitable[None]],
        interval: timedelta,
        logger: BoundLogger,
    ) -> None:
        self._refresh = refresh
        self._interval = interval
        self._logger = logger
        self._scheduler: Scheduler | None = None
        self._ticker: asyncio.Task[None] | None = None

    @property
    def enabled(self) -> bool:
        """Whether the refresh timer is running."""
        return self._ticker is not None

    def set_watch_enabled(self, enabled: bool) -> None:
        """Start or stop the refresh timer.

        Enabling an already running timer and disabling a stopped one do
        nothing. Must be called with an event loop running.

        Parameters
        ----------
        enabled
            Whether the image list should be refreshed periodically.
        """
        if enabled and not self._ticker:
            self._logger.debug("Starting image refresh timer")
            loop = asyncio.get_running_loop()
            self._ticker = loop.create_task(self._tick())
        elif not enabled and self._ticker:
            self._logger.debug("Stopping image refresh timer")
            self._ticker.cancel()
            self._ticker = None

    async def aclose(self) -> None:
        """Stop the timer and cancel any refreshes in flight."""
        self.set_watch_enabled(False)
        if self._scheduler:
            await self._scheduler.close()
            self._scheduler = None

    async def _tick(self) -> None:
        if not self._scheduler:
            self._scheduler = Scheduler()
        while True:
            await self._scheduler.spawn(self._refresh_once())
            await asyncio.sleep(self._interval.total_seconds())

    async def _refresh_once(self) -> None:
        try:
            await self._refresh()
        except Exception:
            self._logger.exception("Uncaught exception refreshing images")
