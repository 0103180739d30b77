"""Live cron timers mirrored from schedule definitions."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from types import MappingProxyType
from typing import Mapping

from loguru import logger

from dashsnap.cron.timer import CronCallback, CronTimer
from dashsnap.cron.types import CronJobRecord, Schedule, validate_cron_expression


class CronJobManager:
    """
    Owns the mapping from schedule id to live timer.

    Upserts always stop and rebuild the timer, so a callback can never
    keep firing with parameters from an earlier version of its schedule.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, CronJobRecord] = {}

    @property
    def jobs(self) -> Mapping[str, CronJobRecord]:
        return MappingProxyType(self._jobs)

    @property
    def job_count(self) -> int:
        return len(self._jobs)

    def upsert(self, schedule: Schedule, callback: CronCallback) -> bool:
        """
        Create or replace the timer for a schedule.

        Returns:
            False if the cron expression is invalid; any existing timer for
            the schedule is left running in that case.
        """
        if not validate_cron_expression(schedule.cron):
            logger.error(f"Invalid cron expression for {schedule.display_name}: {schedule.cron}")
            return False

        existing = self._jobs.get(schedule.id)
        if existing is not None:
            existing.timer.stop()

        timer = CronTimer(schedule.cron, callback, name=schedule.display_name)
        timer.start()
        self._jobs[schedule.id] = CronJobRecord(
            schedule_id=schedule.id,
            cron_expression=schedule.cron,
            timer=timer,
        )
        logger.info(f"Scheduled: {schedule.display_name} ({schedule.cron})")
        return True

    def remove(self, schedule_id: str, name: str | None = None) -> bool:
        record = self._jobs.pop(schedule_id, None)
        if record is None:
            return False
        record.timer.stop()
        logger.info(f"Stopped job: {name or schedule_id}")
        return True

    def prune_missing(self, active_ids: Iterable[str]) -> int:
        """Stop and drop every timer whose schedule id is not active."""
        active = set(active_ids)
        pruned = 0
        for schedule_id in list(self._jobs):
            if schedule_id not in active:
                self._jobs.pop(schedule_id).timer.stop()
                logger.info(f"Removed deleted schedule job: {schedule_id}")
                pruned += 1
        return pruned

    def stop_all(self) -> set[asyncio.Task]:
        """
        Stop every timer.

        Returns:
            Firings still in flight, for the caller to await.
        """
        in_flight: set[asyncio.Task] = set()
        for record in self._jobs.values():
            record.timer.stop()
            in_flight |= record.timer.firings
        self._jobs.clear()
        logger.info("All cron jobs stopped")
        return in_flight
