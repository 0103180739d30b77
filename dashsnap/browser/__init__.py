"""Browser session lifecycle, recovery and navigation."""

from dashsnap.browser.errors import (
    BrowserCrashError,
    BrowserHealthCheckError,
    BrowserRecoveryFailedError,
    CannotOpenPageError,
    CaptureExecutionError,
    DashsnapError,
    PageCorruptedError,
    ScheduleNotFoundError,
)
from dashsnap.browser.health import HealthMonitor, HealthStatus
from dashsnap.browser.launcher import BrowserSession, ChromiumLauncher
from dashsnap.browser.navigation import NavigationController, NavigationResult, StabilityResult
from dashsnap.browser.recovery import RecoveryManager
from dashsnap.browser.session import (
    BrowserSessionManager,
    ErrorClass,
    OperationOutcome,
    SessionHandle,
    SessionState,
)

__all__ = [
    "BrowserCrashError",
    "BrowserHealthCheckError",
    "BrowserRecoveryFailedError",
    "BrowserSession",
    "BrowserSessionManager",
    "CannotOpenPageError",
    "CaptureExecutionError",
    "ChromiumLauncher",
    "DashsnapError",
    "ErrorClass",
    "HealthMonitor",
    "HealthStatus",
    "NavigationController",
    "NavigationResult",
    "OperationOutcome",
    "PageCorruptedError",
    "RecoveryManager",
    "ScheduleNotFoundError",
    "SessionHandle",
    "SessionState",
    "StabilityResult",
]
