"""Tests for RecoveryManager."""

from unittest.mock import AsyncMock

import pytest

from conftest import FakeLauncher, FakePage, UnresponsivePage
from dashsnap.browser.errors import BrowserRecoveryFailedError
from dashsnap.browser.health import HealthMonitor
from dashsnap.browser.recovery import RecoveryManager


def _manager(max_attempts: int = 3) -> tuple[RecoveryManager, HealthMonitor]:
    health = HealthMonitor(max_failures=3)
    return RecoveryManager(health, max_attempts=max_attempts, backoff_base=0.0), health


def test_backoff_doubles_and_caps():
    recovery = RecoveryManager(HealthMonitor(), backoff_base=1.0, backoff_max=30.0)
    assert [recovery.backoff(n) for n in range(1, 6)] == [2.0, 4.0, 8.0, 16.0, 30.0]


@pytest.mark.asyncio
async def test_recover_first_attempt():
    recovery, health = _manager()
    health.record_failure()
    health.record_failure()
    launcher = FakeLauncher()
    teardown = AsyncMock()

    session = await recovery.recover(teardown, launcher.launch)

    assert session.is_connected()
    assert session.is_first_navigation is True
    assert recovery.total_recoveries == 1
    assert recovery.recovering is False
    assert health.consecutive_failures == 0
    teardown.assert_awaited_once()


@pytest.mark.asyncio
async def test_teardown_errors_are_ignored():
    recovery, _ = _manager()
    teardown = AsyncMock(side_effect=RuntimeError("already gone"))

    session = await recovery.recover(teardown, FakeLauncher().launch)

    assert session.is_connected()
    assert recovery.total_recoveries == 1


@pytest.mark.asyncio
async def test_retries_failed_launches():
    recovery, _ = _manager(max_attempts=3)
    launcher = FakeLauncher(fail_next=2)
    teardown = AsyncMock()

    session = await recovery.recover(teardown, launcher.launch)

    assert session.is_connected()
    assert launcher.launches == 3
    assert teardown.await_count == 3
    assert recovery.total_recoveries == 1


@pytest.mark.asyncio
async def test_disconnected_launch_counts_as_failure():
    recovery, _ = _manager(max_attempts=2)
    launcher = FakeLauncher()
    calls = 0

    async def launch():
        nonlocal calls
        calls += 1
        session = await launcher.launch()
        if calls == 1:
            session.browser.connected = False
        return session

    session = await recovery.recover(AsyncMock(), launch)
    assert calls == 2
    assert session.is_connected()


@pytest.mark.asyncio
async def test_exhaustion_raises_terminal_error():
    recovery, health = _manager(max_attempts=3)
    launcher = FakeLauncher(fail_next=10)
    health.record_failure()

    with pytest.raises(BrowserRecoveryFailedError) as exc_info:
        await recovery.recover(AsyncMock(), launcher.launch)

    assert exc_info.value.attempts == 3
    assert "launch failed" in str(exc_info.value.last_error)
    assert launcher.launches == 3
    assert recovery.total_recoveries == 0
    assert recovery.recovering is False
    assert health.consecutive_failures == 1


@pytest.mark.asyncio
async def test_stats():
    recovery, _ = _manager()
    await recovery.recover(AsyncMock(), FakeLauncher().launch)
    assert recovery.stats() == {"totalRecoveries": 1, "recovering": False}


@pytest.mark.asyncio
async def test_unresponsive_launch_counts_as_failure():
    health = HealthMonitor()
    recovery = RecoveryManager(health, max_attempts=2, backoff_base=0.0, ping_timeout=0.1)
    launcher = FakeLauncher()
    launcher.page_factory = UnresponsivePage

    def configure(page, index):
        launcher.page_factory = FakePage

    launcher.configure = configure

    session = await recovery.recover(AsyncMock(), launcher.launch)

    assert launcher.launches == 2
    assert session is launcher.sessions[1]
    assert recovery.total_recoveries == 1


@pytest.mark.asyncio
async def test_unresponsive_relaunches_exhaust_recovery():
    recovery = RecoveryManager(HealthMonitor(), max_attempts=2, backoff_base=0.0, ping_timeout=0.05)
    launcher = FakeLauncher()
    launcher.page_factory = UnresponsivePage

    with pytest.raises(BrowserRecoveryFailedError) as exc_info:
        await recovery.recover(AsyncMock(), launcher.launch)

    assert "not responding" in str(exc_info.value.last_error)
