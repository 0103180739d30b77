"""Tests for CaptureScheduler."""

import asyncio
import json
from pathlib import Path

import httpx
import pytest

from conftest import FakeLauncher
from dashsnap.browser.errors import (
    BrowserRecoveryFailedError,
    CaptureExecutionError,
    ScheduleNotFoundError,
)
from dashsnap.browser.health import HealthMonitor
from dashsnap.browser.navigation import STABILITY_METRICS_JS, NavigationController
from dashsnap.browser.recovery import RecoveryManager
from dashsnap.browser.session import BrowserSessionManager
from dashsnap.capture.scheduler import CaptureScheduler, is_network_error
from dashsnap.browser.errors import CannotOpenPageError
from dashsnap.config.schema import BrowserConfig, SchedulerConfig
from dashsnap.cron.store import ScheduleStore


def _write_schedules(path: Path, schedules: list[dict]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(schedules))


def _schedule(schedule_id: str = "kitchen", **kwargs) -> dict:
    data = {
        "id": schedule_id,
        "name": f"{schedule_id.title()} Display",
        "cron": "*/5 * * * *",
        "dashboard_path": f"/lovelace/{schedule_id}",
        "viewport": {"width": 400, "height": 300},
    }
    data.update(kwargs)
    return data


def _build(
    tmp_path: Path,
    launcher: FakeLauncher,
    schedules: list[dict],
    http_client: httpx.AsyncClient | None = None,
    max_recovery_attempts: int = 3,
) -> CaptureScheduler:
    store = ScheduleStore(tmp_path / "schedules.json")
    _write_schedules(store.path, schedules)

    health = HealthMonitor()
    recovery = RecoveryManager(health, max_attempts=max_recovery_attempts, backoff_base=0.0)
    session = BrowserSessionManager(launcher, health=health, recovery=recovery)
    navigator = NavigationController("http://ha:8123", token="t", default_wait_ms=0, cold_start_extra_ms=0)
    return CaptureScheduler(
        session,
        navigator,
        store,
        tmp_path / "output",
        config=SchedulerConfig(retry_delay_s=0, fallback_delay_ms=0, reload_interval_s=3600),
        browser_config=BrowserConfig(load_timeout_ms=200, stable_timeout_ms=500),
        http_client=http_client,
    )


def test_is_network_error():
    assert is_network_error(CannotOpenPageError(0, "http://ha/"))
    assert is_network_error(CannotOpenPageError(0, "http://ha/", "ERR_CONNECTION_REFUSED"))
    assert not is_network_error(CannotOpenPageError(502, "http://ha/"))
    assert not is_network_error(RuntimeError("net::ERR_NAME_NOT_RESOLVED"))


@pytest.mark.asyncio
async def test_execute_saves_screenshot(tmp_path, launcher):
    scheduler = _build(tmp_path, launcher, [_schedule()])
    schedule = scheduler.store.get("kitchen")

    result = await scheduler.execute(schedule)

    assert result.success is True
    assert result.error is None
    assert result.saved_path.exists()
    assert result.saved_path.name.startswith("Kitchen_Display_")
    assert result.saved_path.suffix == ".png"
    assert result.delivery is None
    assert {"capture", "encode", "total"} <= set(result.timings)

    page = launcher.sessions[0].page
    assert page.viewport_size == {"width": 400, "height": 356}
    assert page.screenshots[0]["clip"] == {"x": 0, "y": 56, "width": 400, "height": 300}
    assert page.gotos == ["http://ha:8123/lovelace/kitchen"]


@pytest.mark.asyncio
async def test_execute_applies_zoom_and_crop(tmp_path, launcher):
    scheduler = _build(tmp_path, launcher, [_schedule(
        zoom=2,
        crop={"enabled": True, "x": 10, "y": 20, "width": 100, "height": 50},
        format="jpeg",
    )])

    result = await scheduler.execute(scheduler.store.get("kitchen"))

    assert result.success is True
    assert result.saved_path.suffix == ".jpeg"
    page = launcher.sessions[0].page
    assert page.viewport_size == {"width": 400, "height": 412}
    assert page.screenshots[0]["clip"] == {"x": 10, "y": 132, "width": 100, "height": 50}


@pytest.mark.asyncio
async def test_execute_delivers_to_webhook(tmp_path, launcher):
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(request)
        return httpx.Response(200, text="ok")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        scheduler = _build(
            tmp_path,
            launcher,
            [_schedule(webhook_url="http://device.local/upload", webhook_headers={"X-Key": "abc"}, format="bmp")],
            http_client=client,
        )
        result = await scheduler.execute(scheduler.store.get("kitchen"))

    assert result.success is True
    assert result.delivery.success is True
    assert received[0].headers["Content-Type"] == "image/bmp"
    assert received[0].headers["X-Key"] == "abc"
    assert received[0].content[:2] == b"BM"


@pytest.mark.asyncio
async def test_delivery_failure_does_not_fail_capture(tmp_path, launcher):
    transport = httpx.MockTransport(lambda request: httpx.Response(500, text="boom"))
    async with httpx.AsyncClient(transport=transport) as client:
        scheduler = _build(tmp_path, launcher, [_schedule(webhook_url="http://device.local/upload")], http_client=client)
        result = await scheduler.execute(scheduler.store.get("kitchen"))

    assert result.success is True
    assert result.saved_path.exists()
    assert result.delivery.success is False
    assert result.delivery.status == 500


@pytest.mark.asyncio
async def test_navigation_failure_becomes_result(tmp_path):
    launcher = FakeLauncher(configure=lambda page, index: setattr(page, "goto_status", 404))
    scheduler = _build(tmp_path, launcher, [_schedule()])

    result = await scheduler.execute(scheduler.store.get("kitchen"))

    assert result.success is False
    assert "Unable to open page" in result.error
    assert len(launcher.sessions[0].page.gotos) == 1
    assert scheduler.session.recovery.total_recoveries == 0


@pytest.mark.asyncio
async def test_network_errors_are_retried(tmp_path):
    def configure(page, index):
        page.goto_error = RuntimeError("net::ERR_CONNECTION_REFUSED at http://ha:8123/lovelace/kitchen")

    launcher = FakeLauncher(configure=configure)
    scheduler = _build(tmp_path, launcher, [_schedule()])

    result = await scheduler.execute(scheduler.store.get("kitchen"))

    assert result.success is False
    assert "ERR_CONNECTION_REFUSED" in result.error
    assert len(launcher.sessions[0].page.gotos) == 3


@pytest.mark.asyncio
async def test_crash_is_recovered_transparently(tmp_path):
    def configure(page, index):
        if index == 0:
            page.screenshot_error = RuntimeError("Target page, context or browser has been closed")

    launcher = FakeLauncher(configure=configure)
    scheduler = _build(tmp_path, launcher, [_schedule()])

    result = await scheduler.execute(scheduler.store.get("kitchen"))

    assert result.success is True
    assert scheduler.session.recovery.total_recoveries == 1
    assert launcher.sessions[1].page.gotos == ["http://ha:8123/lovelace/kitchen"]


@pytest.mark.asyncio
async def test_recovery_exhaustion_propagates(tmp_path):
    launcher = FakeLauncher()

    def configure(page, index):
        page.screenshot_error = RuntimeError("Browser has been closed")
        launcher.fail_next = 10

    launcher.configure = configure
    scheduler = _build(tmp_path, launcher, [_schedule()], max_recovery_attempts=2)

    with pytest.raises(BrowserRecoveryFailedError):
        await scheduler.execute(scheduler.store.get("kitchen"))


@pytest.mark.asyncio
async def test_execute_now_not_found_vs_execution_error(tmp_path):
    launcher = FakeLauncher(configure=lambda page, index: setattr(page, "goto_status", 500))
    scheduler = _build(tmp_path, launcher, [_schedule()])

    with pytest.raises(ScheduleNotFoundError) as not_found:
        await scheduler.execute_now("missing-id")
    assert "Schedule not found: missing-id" in str(not_found.value)

    with pytest.raises(CaptureExecutionError) as failed:
        await scheduler.execute_now("kitchen")
    assert failed.value.result.success is False
    assert "(500)" in str(failed.value)


@pytest.mark.asyncio
async def test_execute_now_success(tmp_path, launcher):
    scheduler = _build(tmp_path, launcher, [_schedule()])
    result = await scheduler.execute_now("kitchen")
    assert result.success is True
    assert result.to_dict()["scheduleId"] == "kitchen"


@pytest.mark.asyncio
async def test_concurrent_captures_share_one_browser(tmp_path, launcher):
    scheduler = _build(tmp_path, launcher, [_schedule(), _schedule("hallway")])

    results = await asyncio.gather(
        scheduler.execute(scheduler.store.get("kitchen")),
        scheduler.execute_now("hallway"),
    )

    assert all(r.success for r in results)
    assert launcher.launches == 1
    page = launcher.sessions[0].page
    assert len(page.screenshots) == 2


@pytest.mark.asyncio
async def test_retention_keeps_two_per_enabled_schedule(tmp_path, launcher):
    scheduler = _build(tmp_path, launcher, [_schedule(), _schedule("hallway", enabled=False)])
    schedule = scheduler.store.get("kitchen")

    for _ in range(4):
        assert (await scheduler.execute(schedule)).success

    assert len(list((tmp_path / "output").iterdir())) == 2


@pytest.mark.asyncio
async def test_reload_mirrors_store(tmp_path, launcher):
    scheduler = _build(tmp_path, launcher, [
        _schedule("kitchen"),
        _schedule("hallway", enabled=False),
        _schedule("broken", cron="whenever"),
    ])

    try:
        assert scheduler.reload() == 1
        assert set(scheduler.cron.jobs) == {"kitchen"}

        _write_schedules(scheduler.store.path, [_schedule("hallway")])
        assert scheduler.reload() == 1
        assert set(scheduler.cron.jobs) == {"hallway"}
    finally:
        scheduler.cron.stop_all()


@pytest.mark.asyncio
async def test_reload_keeps_existing_timer_on_invalid_edit(tmp_path, launcher):
    scheduler = _build(tmp_path, launcher, [_schedule()])
    try:
        scheduler.reload()
        record = scheduler.cron.jobs["kitchen"]

        _write_schedules(scheduler.store.path, [_schedule(cron="whenever")])
        scheduler.reload()

        assert scheduler.cron.jobs["kitchen"] is record
    finally:
        scheduler.cron.stop_all()


@pytest.mark.asyncio
async def test_start_and_stop(tmp_path, launcher):
    scheduler = _build(tmp_path, launcher, [_schedule()])

    await scheduler.start()
    assert (tmp_path / "output").is_dir()
    assert scheduler.cron.job_count == 1

    await scheduler.stop()
    assert scheduler.cron.job_count == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("wait", [0, -1, None])
async def test_non_positive_wait_uses_stability_check(tmp_path, launcher, wait):
    scheduler = _build(tmp_path, launcher, [_schedule(wait=wait)])

    result = await scheduler.execute(scheduler.store.get("kitchen"))

    assert result.success is True
    assert launcher.sessions[0].page.scripts(STABILITY_METRICS_JS)


@pytest.mark.asyncio
async def test_explicit_wait_skips_stability_check(tmp_path, launcher):
    scheduler = _build(tmp_path, launcher, [_schedule(wait=50)])

    result = await scheduler.execute(scheduler.store.get("kitchen"))

    assert result.success is True
    assert launcher.sessions[0].page.scripts(STABILITY_METRICS_JS) == []


@pytest.mark.asyncio
async def test_stray_entries_do_not_break_reload_or_capture(tmp_path, launcher):
    scheduler = _build(tmp_path, launcher, [_schedule(), "garbage"])
    try:
        assert scheduler.reload() == 1
        result = await scheduler.execute(scheduler.store.get("kitchen"))
        assert result.success is True
    finally:
        scheduler.cron.stop_all()


@pytest.mark.asyncio
async def test_stop_waits_for_running_capture(tmp_path, launcher):
    scheduler = _build(tmp_path, launcher, [_schedule(cron="* * * * * *")])
    started = asyncio.Event()
    finished = []
    real_execute = scheduler.execute

    async def slow_execute(schedule):
        started.set()
        await asyncio.sleep(0.2)
        result = await real_execute(schedule)
        finished.append(result.success)
        return result

    scheduler.execute = slow_execute
    await scheduler.start()
    await asyncio.wait_for(started.wait(), timeout=2.5)

    await scheduler.stop()

    assert finished and finished[0] is True
    assert scheduler.cron.job_count == 0
