"""Exceptions raised by the browser session and capture pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from dashsnap.capture.scheduler import CaptureResult


class DashsnapError(Exception):
    """Base class for all dashsnap errors."""


class CannotOpenPageError(DashsnapError):
    """
    Raised when a dashboard page cannot be opened.

    Covers non-2xx responses as well as DNS and connection failures.
    The browser itself is still usable afterwards.
    """

    def __init__(self, status: int, page_path: str, network_error: str | None = None) -> None:
        if network_error:
            message = f"Unable to open page: {page_path} (Network error: {network_error})"
        else:
            message = f"Unable to open page: {page_path} ({status})"
        super().__init__(message)
        self.status = status
        self.page_path = page_path
        self.network_error = network_error

    @property
    def is_network_error(self) -> bool:
        """True when the failure happened below HTTP (no status code)."""
        return self.status == 0


class BrowserCrashError(DashsnapError):
    """Raised when the browser process or page target is gone."""

    def __init__(self, original_error: BaseException) -> None:
        super().__init__(f"Browser crashed: {original_error}")
        self.original_error = original_error


class PageCorruptedError(DashsnapError):
    """Raised when the page is reachable but in a known-bad state."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Page corrupted: {reason}")
        self.reason = reason


class BrowserHealthCheckError(DashsnapError):
    """Raised when the health monitor judges the browser unusable."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Browser health check failed: {reason}")
        self.reason = reason


class BrowserRecoveryFailedError(DashsnapError):
    """
    Raised when recovery gave up after its maximum number of attempts.

    This is terminal for the session: it stays failed until an explicit
    relaunch, and the operator (or process supervisor) must step in.
    """

    def __init__(self, attempts: int, last_error: BaseException | None) -> None:
        detail = str(last_error) if last_error is not None else "unknown error"
        super().__init__(f"Browser recovery failed after {attempts} attempts: {detail}")
        self.attempts = attempts
        self.last_error = last_error


class ScheduleNotFoundError(DashsnapError):
    """Raised when a schedule id is not present in the store."""

    def __init__(self, schedule_id: str) -> None:
        super().__init__(f"Schedule not found: {schedule_id}")
        self.schedule_id = schedule_id


class CaptureExecutionError(DashsnapError):
    """Raised by manual execution when a capture did not succeed."""

    def __init__(self, result: CaptureResult | Any) -> None:
        error = getattr(result, "error", None) or "capture failed"
        super().__init__(error)
        self.result = result
