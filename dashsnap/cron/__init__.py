"""Cron scheduling module."""

from dashsnap.cron.manager import CronJobManager
from dashsnap.cron.store import ScheduleStore
from dashsnap.cron.timer import CronTimer
from dashsnap.cron.types import CronJobRecord, ImageFormat, Schedule, validate_cron_expression

__all__ = [
    "CronJobManager",
    "CronJobRecord",
    "CronTimer",
    "ImageFormat",
    "Schedule",
    "ScheduleStore",
    "validate_cron_expression",
]
