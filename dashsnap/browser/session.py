"""Single-owner browser session with serialized access and crash recovery."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol, TypeVar

from loguru import logger

from dashsnap.browser.errors import (
    BrowserCrashError,
    BrowserHealthCheckError,
    BrowserRecoveryFailedError,
    CannotOpenPageError,
    PageCorruptedError,
)
from dashsnap.browser.health import HealthMonitor
from dashsnap.browser.launcher import BrowserSession
from dashsnap.browser.recovery import RecoveryManager

T = TypeVar("T")

CRASH_MARKERS = (
    "Target closed",
    "Target page, context or browser has been closed",
    "Browser has been closed",
    "browser has disconnected",
    "Session closed",
    "Protocol error",
    "Connection closed",
)


class SessionState(str, Enum):
    """Lifecycle states of the browser session."""

    UNINITIALIZED = "uninitialized"
    LAUNCHING = "launching"
    READY = "ready"
    BUSY = "busy"
    RECOVERING = "recovering"
    FAILED = "failed"
    SHUTTING_DOWN = "shutting_down"


class OperationOutcome(Enum):
    """Outcome reported when releasing the session."""

    SUCCESS = "success"
    FAILURE = "failure"
    NONE = "none"


class ErrorClass(Enum):
    """How an operation error should be handled."""

    CRASH = "crash"
    NAVIGATION = "navigation"


class Launcher(Protocol):
    async def launch(self) -> BrowserSession: ...

    async def close(self, session: BrowserSession) -> None: ...


@dataclass(frozen=True)
class SessionHandle:
    """Grants exclusive use of the session until released."""

    session: BrowserSession
    token: int

    @property
    def page(self) -> Any:
        return self.session.page


class BrowserSessionManager:
    """
    Owns the one browser process and page.

    Every page operation funnels through acquire_for_operation()/release()
    (or run(), which wraps both). The FIFO lock guarantees at most one
    in-flight operation, and recovery runs while the lock is held so no
    caller can touch a half torn-down session.
    """

    def __init__(
        self,
        launcher: Launcher,
        health: HealthMonitor | None = None,
        recovery: RecoveryManager | None = None,
        restart_after_captures: int = 0,
        shutdown_timeout: float = 30.0,
    ) -> None:
        self.launcher = launcher
        self.health = health or HealthMonitor()
        self.recovery = recovery or RecoveryManager(self.health)
        self.restart_after_captures = restart_after_captures
        self.shutdown_timeout = shutdown_timeout

        self._lock = asyncio.Lock()
        self._state = SessionState.UNINITIALIZED
        self._session: BrowserSession | None = None
        self._token = 0
        self._active_token: int | None = None
        self._success_count = 0
        self._failure: BrowserRecoveryFailedError | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._state is SessionState.BUSY

    @property
    def last_failure(self) -> BrowserRecoveryFailedError | None:
        return self._failure

    # ------------------------------------------------------------------
    # Acquisition
    # ------------------------------------------------------------------

    async def acquire_for_operation(self) -> SessionHandle:
        """
        Wait for exclusive use of the session.

        Launches lazily on first use and recovers first when the session is
        dead or judged unhealthy.

        Raises:
            BrowserRecoveryFailedError: If the session is in the terminal
                failed state or recovery failed while preparing it.
        """
        await self._lock.acquire()
        try:
            await self._prepare()
        except BaseException:
            self._lock.release()
            raise

        self._state = SessionState.BUSY
        self.health.record_attempt()
        return self._new_handle()

    async def release(self, handle: SessionHandle, outcome: OperationOutcome = OperationOutcome.NONE) -> None:
        """
        Return the session to READY and let the next waiter in.

        A handle outlived by a forced shutdown is still accepted so its
        holder can give the lock back.
        """
        if handle.token != self._active_token:
            raise RuntimeError("Released a session handle that is not current")
        self._active_token = None

        try:
            if outcome is OperationOutcome.SUCCESS:
                self.health.record_success()
                if self._state is SessionState.BUSY:
                    await self._maybe_restart_after_success()
            elif outcome is OperationOutcome.FAILURE:
                self.health.record_failure()
            else:
                self.health.record_idle()
        finally:
            if self._state is SessionState.BUSY:
                self._state = SessionState.READY
            self._lock.release()

    async def run(self, operation: Callable[[SessionHandle], Awaitable[T]]) -> T:
        """
        Run one page operation with exclusive access.

        Crash-class errors trigger a recovery cycle under the lock and the
        operation is retried once on the fresh session. Navigation errors are
        re-raised with the session left READY.
        """
        handle = await self.acquire_for_operation()
        try:
            result = await operation(handle)
        except Exception as err:
            if self.classify(err) is ErrorClass.NAVIGATION:
                await self.release(handle, OperationOutcome.FAILURE)
                raise
            if self._state is not SessionState.BUSY:
                await self.release(handle, OperationOutcome.FAILURE)
                raise self._as_crash(err) from err
            handle = await self._recover_after_crash(err)
            try:
                result = await operation(handle)
            except Exception as retry_err:
                logger.error(f"Retry failed after recovery: {retry_err}")
                await self.release(handle, OperationOutcome.FAILURE)
                if self.classify(retry_err) is ErrorClass.NAVIGATION:
                    raise
                raise self._as_crash(retry_err) from retry_err

        await self.release(handle, OperationOutcome.SUCCESS)
        return result

    # ------------------------------------------------------------------
    # Error classification
    # ------------------------------------------------------------------

    def classify(self, error: BaseException) -> ErrorClass:
        """
        Decide how an operation error is handled.

        Navigation failures leave the browser usable. Everything else,
        including errors we do not recognize, is treated as a crash.
        """
        if isinstance(error, CannotOpenPageError):
            return ErrorClass.NAVIGATION
        return ErrorClass.CRASH

    def _as_crash(self, error: BaseException) -> Exception:
        """Wrap an operation error; page errors only mean corruption when the target is still alive."""
        if isinstance(error, (BrowserCrashError, PageCorruptedError, BrowserHealthCheckError)):
            return error
        session = self._session
        if session is not None and session.page_error_detected and not self.is_crash_message(error):
            return PageCorruptedError(f"Operation failed with page errors: {error}")
        return BrowserCrashError(error)

    @staticmethod
    def is_crash_message(error: BaseException) -> bool:
        """True when an error message names a lost browser target."""
        message = str(error)
        return any(marker in message for marker in CRASH_MARKERS)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def relaunch(self) -> None:
        """Leave the FAILED state by running a fresh recovery cycle."""
        async with self._lock:
            self._failure = None
            await self._recover("manual relaunch")

    async def shutdown(self) -> None:
        """
        Close the browser and return to UNINITIALIZED.

        Waits up to ``shutdown_timeout`` for an in-flight operation to
        release the session, then tears down regardless.
        """
        acquired = False
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=self.shutdown_timeout)
            acquired = True
        except asyncio.TimeoutError:
            logger.warning(f"Browser still busy after {self.shutdown_timeout}s, forcing shutdown")

        self._state = SessionState.SHUTTING_DOWN
        try:
            await self._teardown()
        finally:
            self._state = SessionState.UNINITIALIZED
            self._failure = None
            if acquired:
                self._lock.release()
        logger.info("Browser session shut down")

    def stats(self) -> dict:
        """Combined health and recovery snapshot for monitoring."""
        status = self.health.check()
        data = {
            "state": self._state.value,
            **status.to_dict(),
            **self.health.stats(),
            **self.recovery.stats(),
        }
        if self._session is not None:
            data["browserUptime"] = round(self._session.uptime, 3)
        if self._state is SessionState.FAILED:
            data["healthy"] = False
            data["reason"] = str(self._failure) if self._failure else "recovery failed"
        return data

    def is_healthy(self) -> bool:
        return self._state is not SessionState.FAILED and self.health.check().healthy

    # ------------------------------------------------------------------
    # Internals (lock must be held)
    # ------------------------------------------------------------------

    def _new_handle(self) -> SessionHandle:
        assert self._session is not None
        self._token += 1
        self._active_token = self._token
        return SessionHandle(session=self._session, token=self._token)

    async def _prepare(self) -> None:
        if self._state is SessionState.FAILED:
            raise self._failure or BrowserRecoveryFailedError(self.recovery.max_attempts, None)

        if self._session is None and self._state in (SessionState.UNINITIALIZED, SessionState.SHUTTING_DOWN):
            await self._initial_launch()
            return

        if self._session is None or not self._session.is_connected():
            await self._recover("browser disconnected")
            return

        status = self.health.check()
        if not status.healthy:
            unhealthy = BrowserHealthCheckError(status.reason or "unhealthy")
            logger.warning(str(unhealthy))
            try:
                await self._recover(str(unhealthy))
            except BrowserRecoveryFailedError as e:
                raise e from unhealthy

    async def _initial_launch(self) -> None:
        self._state = SessionState.LAUNCHING
        try:
            self._session = await self.launcher.launch()
        except Exception as e:
            logger.error(f"Initial browser launch failed: {e}")
            await self._recover(f"launch failed: {e}")
            return
        self._state = SessionState.READY

    async def _recover_after_crash(self, err: BaseException) -> SessionHandle:
        crash = self._as_crash(err)
        logger.error(f"Browser error detected: {type(crash).__name__} - {crash}")
        self.health.record_failure()
        try:
            await self._recover(str(crash))
        except BaseException:
            self._active_token = None
            self._lock.release()
            raise
        self._state = SessionState.BUSY
        self.health.record_attempt()
        return self._new_handle()

    async def _recover(self, reason: str) -> None:
        self._state = SessionState.RECOVERING
        logger.warning(f"Recovering browser session: {reason}")
        try:
            self._session = await self.recovery.recover(self._teardown, self._launch_session)
        except BrowserRecoveryFailedError as e:
            self._state = SessionState.FAILED
            self._failure = e
            logger.critical(f"Browser recovery failed completely: {e}")
            raise
        self._state = SessionState.READY

    async def _launch_session(self) -> BrowserSession:
        self._session = await self.launcher.launch()
        return self._session

    async def _teardown(self) -> None:
        session, self._session = self._session, None
        if session is not None:
            await self.launcher.close(session)

    async def _maybe_restart_after_success(self) -> None:
        if self.restart_after_captures <= 0:
            return
        self._success_count += 1
        if self._success_count < self.restart_after_captures:
            return
        logger.info(f"Proactive browser restart after {self._success_count} successful operations")
        self._success_count = 0
        try:
            await self._teardown()
        except Exception as e:
            logger.warning(f"Error during proactive restart: {e}")
        self._state = SessionState.UNINITIALIZED
