"""Browser crash recovery with bounded retries."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Awaitable, Callable

from loguru import logger

from dashsnap.browser.errors import BrowserRecoveryFailedError
from dashsnap.browser.health import HealthMonitor

if TYPE_CHECKING:
    from dashsnap.browser.launcher import BrowserSession


class RecoveryManager:
    """
    Restores a usable browser session after a crash.

    Each attempt tears down whatever is left of the old session (errors
    ignored), waits an exponential backoff on retries, then relaunches.
    A relaunch that does not come up connected, or does not answer a
    trivial evaluate within ``ping_timeout``, counts as a failed attempt.
    """

    def __init__(
        self,
        health: HealthMonitor,
        max_attempts: int = 5,
        backoff_base: float = 1.0,
        backoff_max: float = 30.0,
        ping_timeout: float = 2.0,
    ) -> None:
        self.health = health
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.ping_timeout = ping_timeout
        self._recoveries = 0
        self._recovering = False

    @property
    def total_recoveries(self) -> int:
        return self._recoveries

    @property
    def recovering(self) -> bool:
        return self._recovering

    def backoff(self, attempt: int) -> float:
        """Delay in seconds before the given (1-based) retry."""
        return min(self.backoff_base * 2**attempt, self.backoff_max)

    async def recover(
        self,
        teardown: Callable[[], Awaitable[None]],
        launch: Callable[[], Awaitable[BrowserSession]],
    ) -> BrowserSession:
        """
        Run a teardown + relaunch cycle.

        Args:
            teardown: Closes the current session, if any.
            launch: Starts a fresh session and returns it.

        Returns:
            The new, connected session.

        Raises:
            BrowserRecoveryFailedError: If every attempt failed.
        """
        self._recovering = True
        attempts = 0
        last_error: BaseException | None = None
        logger.info("Starting browser recovery...")

        try:
            while attempts < self.max_attempts:
                attempts += 1
                logger.info(f"Recovery attempt {attempts}/{self.max_attempts}")

                try:
                    await teardown()
                except Exception as e:
                    logger.warning(f"Ignoring teardown error during recovery: {e}")

                if attempts > 1:
                    await asyncio.sleep(self.backoff(attempts - 1))

                try:
                    session = await launch()
                    if not session.is_connected():
                        raise RuntimeError("Browser not connected after relaunch")
                    if not await session.ping(self.ping_timeout):
                        raise RuntimeError("Browser not responding after relaunch")
                except Exception as e:
                    last_error = e
                    logger.error(f"Recovery attempt {attempts} failed: {e}")
                    continue

                self._recoveries += 1
                self.health.reset()
                session.is_first_navigation = True
                logger.info(f"Recovery succeeded after {attempts} attempt(s)")
                return session

            raise BrowserRecoveryFailedError(self.max_attempts, last_error)
        finally:
            self._recovering = False

    def stats(self) -> dict:
        return {
            "totalRecoveries": self._recoveries,
            "recovering": self._recovering,
        }
