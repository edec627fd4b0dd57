"""Periodic re-fetch of PR comments.

At most one refresh runs at a time: a tick that fires while the previous
refresh is still in flight is skipped with a warning.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class AutoRefresher:
    """Runs *on_refresh* every *interval_minutes* on the running event loop."""

    def __init__(
        self,
        on_refresh: Callable[[], Awaitable[object]],
        interval_minutes: int = 0,
        on_complete: Callable[[], None] | None = None,
        on_error: Callable[[BaseException], None] | None = None,
    ) -> None:
        self._on_refresh = on_refresh
        self._on_complete = on_complete
        self._on_error = on_error
        self.interval_minutes = interval_minutes
        self._task: asyncio.Task[None] | None = None
        self._refreshing = False

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def in_progress(self) -> bool:
        return self._refreshing

    def start(self) -> None:
        """Start the timer. A non-positive interval leaves auto-refresh off."""
        if self.interval_minutes <= 0:
            logger.info("Auto-refresh disabled (interval is 0)")
            return
        self.stop()
        logger.info("Starting auto-refresh with %d minute interval", self.interval_minutes)
        self._task = asyncio.get_running_loop().create_task(self._run(self.interval_minutes * 60))

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
            logger.info("Auto-refresh stopped")

    async def aclose(self) -> None:
        """Stop the timer and wait for the loop task to finish."""
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def set_interval(self, minutes: int) -> None:
        """Change the interval, restarting the timer if it was running."""
        was_active = self.is_active
        self.interval_minutes = minutes
        if minutes <= 0:
            self.stop()
        elif was_active:
            self.start()

    async def _run(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            await self.refresh_once()

    async def refresh_once(self) -> bool:
        """Run one refresh now. Returns False if skipped because one is running."""
        if self._refreshing:
            logger.warning("Refresh already in progress, skipping")
            return False

        self._refreshing = True
        logger.info("Auto-refresh: fetching comments...")
        try:
            await self._on_refresh()
        except Exception as exc:
            logger.warning("Auto-refresh failed: %s", exc)
            if self._on_error is not None:
                self._on_error(exc)
        else:
            if self._on_complete is not None:
                self._on_complete()
            logger.info("Auto-refresh completed")
        finally:
            self._refreshing = False
        return True

    def status_text(self) -> str:
        if self.interval_minutes > 0 and self.is_active:
            return f"PR: {self.interval_minutes}m"
        return "PR: Off"
