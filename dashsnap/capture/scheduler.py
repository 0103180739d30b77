"""End-to-end capture orchestration for cron firings and manual triggers."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Any

import httpx
from loguru import logger

from dashsnap.browser.errors import (
    BrowserRecoveryFailedError,
    CannotOpenPageError,
    CaptureExecutionError,
    DashsnapError,
    ScheduleNotFoundError,
)
from dashsnap.browser.navigation import NavigationController
from dashsnap.browser.session import BrowserSessionManager, SessionHandle
from dashsnap.capture.retention import cleanup_old_screenshots
from dashsnap.capture.storage import save_screenshot
from dashsnap.config.schema import BrowserConfig, SchedulerConfig
from dashsnap.cron.manager import CronJobManager
from dashsnap.cron.store import ScheduleStore
from dashsnap.cron.types import Schedule
from dashsnap.delivery.webhook import DeliveryOutcome, deliver
from dashsnap.imaging.encoder import EncodeOptions, encode
from dashsnap.utils.helpers import format_error

NETWORK_ERROR_CODES = (
    "ERR_NAME_NOT_RESOLVED",
    "ERR_CONNECTION_REFUSED",
    "ERR_INTERNET_DISCONNECTED",
    "ERR_NETWORK_CHANGED",
    "ERR_CONNECTION_RESET",
    "ERR_ADDRESS_UNREACHABLE",
)


def is_network_error(error: BaseException) -> bool:
    """True for navigation failures caused by the network rather than the server."""
    if not isinstance(error, CannotOpenPageError):
        return False
    if error.is_network_error:
        return True
    return any(code in str(error) for code in NETWORK_ERROR_CODES)


@dataclass
class CaptureResult:
    """Structured outcome of one capture."""

    success: bool
    schedule_id: str
    saved_path: Path | None = None
    delivery: DeliveryOutcome | None = None
    timings: dict[str, int] = field(default_factory=dict)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "scheduleId": self.schedule_id,
            "savedPath": str(self.saved_path) if self.saved_path else None,
            "delivery": self.delivery.to_dict() if self.delivery else None,
            "timings": self.timings,
        }
        if self.error:
            data["error"] = self.error
        return data


class CaptureScheduler:
    """
    Runs captures one at a time through the shared browser session.

    Cron firings and manual triggers take the same path; the session's
    lock is the only queue.
    """

    def __init__(
        self,
        session: BrowserSessionManager,
        navigator: NavigationController,
        store: ScheduleStore,
        output_dir: Path,
        config: SchedulerConfig | None = None,
        browser_config: BrowserConfig | None = None,
        header_height: int = 56,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.session = session
        self.navigator = navigator
        self.store = store
        self.output_dir = Path(output_dir)
        self.config = config or SchedulerConfig()
        self.browser_config = browser_config or BrowserConfig()
        self.header_height = header_height
        self.http_client = http_client
        self.cron = CronJobManager()
        self._reload_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        logger.info("Starting scheduler...")
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.reload()
        self._reload_task = asyncio.create_task(self._reload_loop())

    async def stop(self) -> None:
        logger.info("Stopping scheduler...")
        if self._reload_task:
            self._reload_task.cancel()
            try:
                await self._reload_task
            except asyncio.CancelledError:
                pass
            self._reload_task = None
        in_flight = self.cron.stop_all()
        if in_flight:
            logger.info(f"Waiting for {len(in_flight)} running capture(s) to finish...")
            await asyncio.gather(*in_flight, return_exceptions=True)

    def reload(self) -> int:
        """
        Mirror the schedules file into live timers.

        Returns:
            Number of schedules with a live timer after the reload.
        """
        schedules = self.store.load()
        enabled = [s for s in schedules if s.enabled]
        logger.info(f"Loaded {len(schedules)} schedule(s), {len(enabled)} enabled")

        active_ids = set()
        for schedule in schedules:
            if not schedule.enabled:
                self.cron.remove(schedule.id, schedule.display_name)
                continue
            target = "webhook" if schedule.webhook_url else "file only"
            logger.debug(f"  {schedule.display_name} [{schedule.cron}] -> {target}")
            if self.cron.upsert(schedule, partial(self._run_schedule, schedule)):
                active_ids.add(schedule.id)
            elif schedule.id in self.cron.jobs:
                active_ids.add(schedule.id)

        self.cron.prune_missing(active_ids)
        return self.cron.job_count

    async def _reload_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.reload_interval_s)
            try:
                self.reload()
            except Exception as e:
                logger.error(f"Schedule reload failed: {e}")

    async def _run_schedule(self, schedule: Schedule) -> None:
        logger.info(f"Cron triggered: {schedule.display_name}")
        try:
            result = await self.execute(schedule)
        except BrowserRecoveryFailedError as e:
            logger.critical(f"Schedule {schedule.display_name} aborted, browser unrecoverable: {e}")
            return
        if not result.success:
            logger.error(f"Schedule {schedule.display_name} failed: {result.error}")

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_now(self, schedule_id: str) -> CaptureResult:
        """
        Run a schedule immediately.

        Raises:
            ScheduleNotFoundError: If the id is not in the store.
            CaptureExecutionError: If the capture did not succeed.
        """
        schedule = self.store.get(schedule_id)
        if schedule is None:
            raise ScheduleNotFoundError(schedule_id)

        logger.info(f"Manual execution: {schedule.display_name}")
        result = await self.execute(schedule)
        if not result.success:
            raise CaptureExecutionError(result)
        return result

    async def execute(self, schedule: Schedule) -> CaptureResult:
        """
        Capture, encode, save, deliver and clean up for one schedule.

        Navigation and page failures come back as ``success=False``;
        a terminal recovery failure is raised.
        """
        start = time.monotonic()
        timings: dict[str, int] = {}
        logger.info(f"Running: {schedule.display_name}")

        try:
            raw = await self._capture_with_retry(schedule)
        except BrowserRecoveryFailedError:
            raise
        except DashsnapError as e:
            logger.error(f"Capture failed for {schedule.display_name}: {e}")
            return CaptureResult(success=False, schedule_id=schedule.id, timings=timings, error=str(e))
        timings["capture"] = _elapsed_ms(start)

        try:
            step = time.monotonic()
            image = await asyncio.to_thread(encode, raw, self._encode_options(schedule))
            timings["encode"] = _elapsed_ms(step)
            saved_path = save_screenshot(self.output_dir, schedule.display_name, image, schedule.format.value)
            logger.info(f"Saved: {saved_path}")
        except (OSError, ValueError) as e:
            logger.error(f"Encoding or saving failed for {schedule.display_name}: {e}")
            return CaptureResult(
                success=False, schedule_id=schedule.id, timings=timings, error=format_error(e)
            )

        delivery = None
        if schedule.webhook_url:
            step = time.monotonic()
            delivery = await deliver(
                image,
                schedule.webhook_url,
                schedule.webhook_headers,
                schedule.format.value,
                client=self.http_client,
            )
            timings["delivery"] = _elapsed_ms(step)

        self._cleanup()
        timings["total"] = _elapsed_ms(start)
        logger.info(f"Completed: {schedule.display_name} in {timings['total']}ms")
        return CaptureResult(
            success=True,
            schedule_id=schedule.id,
            saved_path=saved_path,
            delivery=delivery,
            timings=timings,
        )

    async def _capture_with_retry(self, schedule: Schedule) -> bytes:
        attempts = max(self.config.max_retries, 1)
        attempt = 1
        while True:
            try:
                return await self.session.run(partial(self._capture_page, schedule))
            except CannotOpenPageError as e:
                if not is_network_error(e) or attempt >= attempts:
                    raise
                logger.error(f"Network error on attempt {attempt}/{attempts} for {schedule.display_name}: {e}")
                logger.info(f"Retrying in {self.config.retry_delay_s}s...")
                await asyncio.sleep(self.config.retry_delay_s)
                attempt += 1

    async def _capture_page(self, schedule: Schedule, handle: SessionHandle) -> bytes:
        session = handle.session
        page = handle.page
        session.page_error_detected = False

        header = round(self.header_height * schedule.zoom)
        width, height = schedule.viewport.width, schedule.viewport.height
        viewport = {"width": width, "height": height + header}
        if page.viewport_size != viewport:
            await page.set_viewport_size(viewport)

        first_navigation = session.is_first_navigation
        navigation = await self.navigator.navigate(session, schedule.dashboard_path)
        await self.navigator.wait_for_load(session, self.browser_config.load_timeout_ms)
        settle_ms = await self.navigator.apply_page_settings(
            session,
            zoom=schedule.zoom,
            lang=schedule.lang,
            theme=schedule.theme,
            dark=schedule.dark,
            first_navigation=first_navigation,
        )

        if schedule.wait is not None and schedule.wait > 0:
            await asyncio.sleep(schedule.wait / 1000)
        else:
            timeout_ms = max(navigation.wait_time_ms + settle_ms, self.browser_config.stable_timeout_ms)
            stability = await self.navigator.wait_for_stable(session, timeout_ms)
            if not stability.stable:
                await asyncio.sleep(self.config.fallback_delay_ms / 1000)

        clip = {"x": 0, "y": header, "width": width, "height": height}
        if schedule.crop is not None and schedule.crop.active:
            crop = schedule.crop
            clip = {"x": crop.x, "y": header + crop.y, "width": crop.width, "height": crop.height}

        return await page.screenshot(type="png", clip=clip)

    def _encode_options(self, schedule: Schedule) -> EncodeOptions:
        return EncodeOptions(
            format=schedule.format,
            rotate=schedule.rotate,
            invert=schedule.invert,
            dithering=schedule.dithering,
        )

    def _cleanup(self) -> None:
        enabled = sum(1 for s in self.store.load() if s.enabled)
        max_files = max(enabled, 1) * self.config.retention_multiplier
        result = cleanup_old_screenshots(self.output_dir, max_files)
        if result.error:
            logger.warning(f"Screenshot cleanup failed: {result.error}")
        elif result.deleted_count:
            logger.info(f"Cleanup: Deleted {result.deleted_count} old file(s)")


def _elapsed_ms(since: float) -> int:
    return int((time.monotonic() - since) * 1000)
