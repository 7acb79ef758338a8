"""Expiry clock module."""
import asyncio
import contextlib
from asyncio import CancelledError, Task
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Optional

from loguru import logger
from paydesk.checkout.util import get_now

ExpireCallback = Callable[[], None]
"""Called once when the deadline passes."""

TickCallback = Callable[[timedelta], None]
"""Called on each tick with the remaining time."""


def get_remaining(now: datetime, expires_at: datetime) -> timedelta:
    """Get the time left until ``expires_at``, never negative."""
    remaining = expires_at - now
    return remaining if remaining > timedelta(0) else timedelta(0)


def format_countdown(remaining: timedelta) -> str:
    """Format the remaining time as ``MM:SS``."""
    seconds = int(remaining.total_seconds())
    minutes, seconds = divmod(max(seconds, 0), 60)
    return f"{minutes:02d}:{seconds:02d}"


class ExpiryClock:
    """Countdown to a checkout's expiry deadline.

    The remaining time is recomputed from the wall clock on every tick, so the
    countdown stays correct if the process is suspended. The expire callback is
    called exactly once per :meth:`start`, after which no more ticks happen.

    Warning:
        Not thread-safe. Must be used from within the event loop.
    """

    interval: float
    """Seconds between ticks."""

    _task: Optional[Task]
    _deadline: Optional[datetime]

    def __init__(
        self,
        on_expire: ExpireCallback,
        *,
        interval: float = 1.0,
        on_tick: Optional[TickCallback] = None,
    ):
        self.interval = interval
        self._on_expire = on_expire
        self._on_tick = on_tick
        self._task = None
        self._deadline = None
        self._fired = False

    @property
    def deadline(self) -> Optional[datetime]:
        """The current deadline."""
        return self._deadline

    @property
    def running(self) -> bool:
        """Whether the clock is ticking."""
        return self._task is not None and not self._task.done()

    @property
    def expired(self) -> bool:
        """Whether the deadline has passed."""
        if self._fired:
            return True
        return self._deadline is not None and self.remaining == timedelta(0)

    @property
    def remaining(self) -> Optional[timedelta]:
        """The time left, or None if no deadline is set."""
        if self._deadline is None:
            return None
        return get_remaining(get_now(), self._deadline)

    def start(self, deadline: datetime) -> Task:
        """Start counting down to ``deadline``.

        Restarts the clock if it is already running. A deadline that has already
        fired does not fire again.
        """
        self.stop()
        self._fired = self._fired and deadline == self._deadline
        self._deadline = deadline
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(deadline))
        return self._task

    def stop(self):
        """Stop the clock. Does nothing if it is not running."""
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()

    def reset(self):
        """Stop the clock and forget the deadline."""
        self.stop()
        self._deadline = None
        self._fired = False

    async def close(self):
        """Stop the clock and wait for its task to finish."""
        task = self._task
        self.stop()
        if task is not None:
            with contextlib.suppress(CancelledError):
                await task

    async def _run(self, deadline: datetime):
        while True:
            remaining = get_remaining(get_now(), deadline)
            if remaining <= timedelta(0):
                self._fire()
                return

            if self._on_tick is not None:
                self._on_tick(remaining)

            await asyncio.sleep(min(self.interval, remaining.total_seconds()))

    def _fire(self):
        if self._fired:
            return
        self._fired = True
        logger.debug(f"Checkout deadline {self._deadline} passed")
        self._on_expire()
