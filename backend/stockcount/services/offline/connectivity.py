"""Connectivity monitor that schedules a sync when the device comes back online."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from stockcount.core.config import settings

logger = logging.getLogger("sync")


class ConnectivityMonitor:
    """Tracks online/offline state and debounces the offline -> online edge.

    A transition to online schedules ``on_online`` after ``settle_delay``
    seconds. Going offline again before the delay elapses cancels it, so a
    flapping connection triggers at most one sync once it settles. A sync
    that has already started is never cancelled; it runs to completion and
    records its own outcomes.
    """

    def __init__(
        self,
        on_online: Callable[[], Awaitable[object]],
        settle_delay: Optional[float] = None,
        online: bool = True,
    ):
        self.on_online = on_online
        self.settle_delay = settings.sync_settle_delay_seconds if settle_delay is None else settle_delay
        self._online = online
        self._pending: Optional[asyncio.Task] = None
        self._in_flight: Optional[asyncio.Task] = None

    @property
    def online(self) -> bool:
        return self._online

    @property
    def sync_pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    @property
    def syncing(self) -> bool:
        return self._in_flight is not None

    def set_online(self, online: bool) -> None:
        was_online = self._online
        self._online = online
        if online and not was_online:
            self._cancel_pending()
            self._pending = asyncio.get_running_loop().create_task(self._settle_then_sync())
            logger.info("Connection restored; sync scheduled in %.1fs", self.settle_delay)
        elif not online and was_online:
            self._cancel_pending()
            logger.info("Connection lost; working offline")

    def _cancel_pending(self) -> None:
        # Only the settle wait is cancellable; an in-flight sync runs to completion
        task = self._pending
        if task is not None and not task.done() and task is not self._in_flight:
            task.cancel()
        self._pending = None

    async def _settle_then_sync(self) -> None:
        await asyncio.sleep(self.settle_delay)
        if not self._online:
            return
        task = asyncio.current_task()
        self._in_flight = task
        try:
            await self.on_online()
        except Exception:
            logger.exception("Automatic sync after reconnect failed")
        finally:
            if self._in_flight is task:
                self._in_flight = None

    async def close(self) -> None:
        """Cancel a pending settle wait and wait for any in-flight sync."""
        tasks = {t for t in (self._pending, self._in_flight) if t is not None}
        self._cancel_pending()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
