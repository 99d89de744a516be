"""Coalescing scheduler for background resyncs."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

EVENT_SYNC_DEBOUNCE_SECONDS = 0.22

SyncJob = Callable[[], Awaitable[None]]


class SyncState(str, Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    RUNNING_DIRTY = "running_dirty"


class ResyncScheduler:
    """Runs at most one sync at a time and folds bursts into one trailing run.

    ``request()`` arms a debounce timer. A request that arrives while a run
    is in flight marks the run dirty, and a dirty run re-arms the timer when
    it finishes instead of starting a concurrent run.

    Transitions::

        IDLE          --request-->  SCHEDULED
        SCHEDULED     --timer----->  RUNNING
        RUNNING       --request-->  RUNNING_DIRTY
        RUNNING       --finish--->  IDLE
        RUNNING_DIRTY --finish--->  SCHEDULED
    """

    def __init__(self, run: SyncJob, delay: float = EVENT_SYNC_DEBOUNCE_SECONDS):
        self._run = run
        self.delay = delay
        self._state = SyncState.IDLE
        self._timer: asyncio.TimerHandle | None = None
        self._task: asyncio.Task | None = None
        self.run_count = 0

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state in (SyncState.RUNNING, SyncState.RUNNING_DIRTY)

    def request(self) -> None:
        """Ask for a resync after the debounce delay."""
        if self._state == SyncState.IDLE:
            self._arm()
        elif self._state == SyncState.RUNNING:
            self._state = SyncState.RUNNING_DIRTY

    async def run_now(self) -> bool:
        """Run the sync immediately.

        Returns False when a run is already in flight; the request then
        becomes that run's trailing re-run.
        """
        if self.is_running:
            self._state = SyncState.RUNNING_DIRTY
            return False
        self._disarm()
        await self._start(self._run, dirty=False)
        return True

    async def try_run(self, job: SyncJob | None = None) -> bool:
        """Run ``job`` (default: the sync) unless a run is in flight.

        A debounce that was pending when the job started is kept as a
        trailing run.
        """
        if self.is_running:
            return False
        was_scheduled = self._disarm()
        await self._start(job or self._run, dirty=was_scheduled)
        return True

    async def flush(self) -> None:
        """Run anything pending now and wait until the scheduler is idle."""
        while True:
            if self._task is not None and not self._task.done():
                await asyncio.shield(self._task)
            elif self._state == SyncState.SCHEDULED:
                self._disarm()
                await self._start(self._run, dirty=False)
            else:
                return

    def cancel(self) -> None:
        """Drop the pending timer and any trailing run. A run in flight finishes."""
        self._disarm()
        if self._state == SyncState.RUNNING_DIRTY:
            self._state = SyncState.RUNNING

    # ------------------------------------------------------------------

    def _arm(self) -> None:
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.delay, self._on_timer)
        self._state = SyncState.SCHEDULED

    def _disarm(self) -> bool:
        was_scheduled = self._state == SyncState.SCHEDULED
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if was_scheduled:
            self._state = SyncState.IDLE
        return was_scheduled

    def _on_timer(self) -> None:
        self._timer = None
        if self._state != SyncState.SCHEDULED:
            return
        self._task = asyncio.ensure_future(self._execute(self._run))
        self._state = SyncState.RUNNING

    async def _start(self, job: SyncJob, dirty: bool) -> None:
        self._state = SyncState.RUNNING_DIRTY if dirty else SyncState.RUNNING
        task = asyncio.ensure_future(self._execute(job))
        self._task = task
        await asyncio.shield(task)

    async def _execute(self, job: SyncJob) -> None:
        self.run_count += 1
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Background sync failed: %s", exc)
            logger.debug("Background sync failure details", exc_info=True)
        finally:
            if self._state == SyncState.RUNNING_DIRTY:
                self._arm()
            elif self._state == SyncState.RUNNING:
                self._state = SyncState.IDLE
