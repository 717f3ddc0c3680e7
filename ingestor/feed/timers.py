"""
Cancellable timers owned by the components that need them.

- PeriodicTimer: fire every ``period_s`` after ``initial_delay_s``
- DailyTimer: fire once a day at a UTC wall-clock time

Callbacks are awaited on the timer task; they are expected to dispatch work
and return quickly. A raising callback is logged and the timer keeps going.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]


def seconds_until_next(at: dt.time, now: Optional[dt.datetime] = None) -> float:
    """Seconds from ``now`` (UTC) until the next occurrence of ``at``; a full day if it is exactly now."""
    now = now or dt.datetime.now(dt.timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=dt.timezone.utc)
    target = now.replace(hour=at.hour, minute=at.minute, second=at.second, microsecond=at.microsecond)
    if target <= now:
        target += dt.timedelta(days=1)
    return (target - now).total_seconds()


class _BaseTimer:
    def __init__(self, callback: TimerCallback, name: str) -> None:
        self._callback = callback
        self._name = name
        self._task: Optional[asyncio.Task[None]] = None
        self._fired = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def fired(self) -> int:
        return self._fired

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name=f"timer_{self._name}")

    async def stop(self) -> None:
        """Cancel the timer and wait for its task to finish."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        if task is asyncio.current_task():
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _fire(self) -> None:
        self._fired += 1
        try:
            await self._callback()
        except Exception as e:
            logger.error(f"[{self._name}] Timer callback failed: {e}", exc_info=True)

    async def _run(self) -> None:
        raise NotImplementedError


class PeriodicTimer(_BaseTimer):
    def __init__(
        self,
        callback: TimerCallback,
        period_s: float,
        initial_delay_s: float = 0.0,
        name: str = "periodic",
    ) -> None:
        super().__init__(callback, name)
        self._period_s = period_s
        self._initial_delay_s = initial_delay_s

    @property
    def period_s(self) -> float:
        return self._period_s

    async def _run(self) -> None:
        await asyncio.sleep(self._initial_delay_s)
        loop = asyncio.get_running_loop()
        next_at = loop.time()
        while True:
            await self._fire()
            # Fixed rate; a slow callback skips missed ticks instead of bursting
            next_at += self._period_s
            now = loop.time()
            if next_at < now:
                next_at = now
            await asyncio.sleep(next_at - now)


class DailyTimer(_BaseTimer):
    def __init__(
        self,
        callback: TimerCallback,
        at: dt.time = dt.time(0, 0),
        name: str = "daily",
    ) -> None:
        super().__init__(callback, name)
        self._at = at

    @property
    def at(self) -> dt.time:
        return self._at

    async def _run(self) -> None:
        while True:
            delay = seconds_until_next(self._at)
            if self._fired and delay < 1.0:
                # Woke a hair early; today's run already happened
                delay += 24 * 3600
            logger.debug(f"[{self._name}] Next run in {delay:.0f}s")
            await asyncio.sleep(delay)
            await self._fire()
