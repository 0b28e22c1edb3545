"""Cancellable delayed callbacks on top of the bot's job queue."""

import logging
from typing import Awaitable, Callable, Protocol

from telegram.ext import CallbackContext, Job, JobQueue

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


class TimerHandle(Protocol):
    def cancel(self) -> None:
        """Cancel the timer. A no-op once it has fired or been cancelled."""


class Timers(Protocol):
    def call_later(
        self, delay: float, callback: TimerCallback, name: str | None = None
    ) -> TimerHandle:
        """Run callback once after delay seconds."""


class JobHandle:
    """Handle of a one-shot job."""

    def __init__(self) -> None:
        self.job: Job | None = None
        self.fired = False
        self.cancelled = False

    def cancel(self) -> None:
        if self.fired or self.cancelled:
            return
        self.cancelled = True
        if self.job is not None:
            self.job.schedule_removal()


class JobQueueTimers:
    """Timers backed by python-telegram-bot's JobQueue."""

    def __init__(self, job_queue: JobQueue):
        self._job_queue = job_queue

    def call_later(
        self, delay: float, callback: TimerCallback, name: str | None = None
    ) -> JobHandle:
        handle = JobHandle()

        async def run(context: CallbackContext) -> None:
            if handle.cancelled:
                return
            handle.fired = True
            await callback()

        handle.job = self._job_queue.run_once(run, when=max(delay, 0.0), name=name)
        logger.debug(f"Timer {name or '?'} armed for {delay:.0f}s")
        return handle
