"""Asyncio timer that fires a callback on a cron schedule."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Awaitable, Callable

from croniter import croniter
from loguru import logger

from dashsnap.cron.types import normalize_cron_expression

CronCallback = Callable[[], Awaitable[None]]


class CronTimer:
    """
    Runs ``callback`` at every fire time of a cron expression.

    The callback is fixed at construction; changing parameters means
    building a new timer. Each firing runs as its own task so a slow
    callback never delays the next computation of the fire time.
    """

    def __init__(self, cron_expression: str, callback: CronCallback, name: str = "") -> None:
        self.cron_expression = cron_expression
        self.callback = callback
        self.name = name or cron_expression
        self._task: asyncio.Task | None = None
        self._firings: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def next_fire_time(self, now: datetime | None = None) -> datetime:
        base = now or datetime.now()
        return croniter(normalize_cron_expression(self.cron_expression), base).get_next(datetime)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    @property
    def firings(self) -> set[asyncio.Task]:
        """Callback tasks spawned by this timer that have not finished yet."""
        return set(self._firings)

    def stop(self) -> None:
        """
        Cancel the timer loop so no new firing is scheduled.

        Firings already spawned keep running to completion; see ``firings``.
        """
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        last_fire: datetime | None = None
        while True:
            now = datetime.now()
            # An early wakeup must not fire the same slot twice.
            base = max(now, last_fire) if last_fire is not None else now
            fire_at = self.next_fire_time(base)
            await asyncio.sleep(max((fire_at - now).total_seconds(), 0))
            last_fire = fire_at
            self._fire()

    def _fire(self) -> None:
        task = asyncio.get_running_loop().create_task(self.callback())
        self._firings.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._firings.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Cron callback for {self.name} failed: {error}")
