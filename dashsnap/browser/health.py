"""Passive browser health tracking."""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone

from loguru import logger


@dataclass(frozen=True)
class HealthStatus:
    """Read-only verdict returned by HealthMonitor.check()."""

    healthy: bool
    last_success_age: float
    consecutive_failures: int
    reason: str | None = None

    def to_dict(self) -> dict:
        data = {
            "healthy": self.healthy,
            "lastSuccessAge": round(self.last_success_age, 3),
            "consecutiveFailures": self.consecutive_failures,
        }
        if self.reason:
            data["reason"] = self.reason
        return data


class HealthMonitor:
    """
    Judges browser liveness from recorded facts.

    The session manager records the start of every page operation and its
    outcome. The verdict is unhealthy when failures pile up, when failures
    keep coming with no success inside the staleness window, or when an
    operation has been outstanding for longer than that window (a silent
    hang). An idle browser is never considered stale.
    """

    def __init__(self, max_failures: int = 3, stale_after: float = 300.0) -> None:
        self.max_failures = max_failures
        self.stale_after = stale_after
        self._last_success = time.time()
        self._in_flight_since: float | None = None
        self._failures = 0

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    @property
    def last_success(self) -> float:
        return self._last_success

    def record_attempt(self) -> None:
        """Mark the start of a page operation."""
        self._in_flight_since = time.time()

    def record_success(self) -> None:
        self._last_success = time.time()
        self._in_flight_since = None
        self._failures = 0

    def record_failure(self) -> bool:
        """
        Record a failed operation.

        Returns:
            True when the failure threshold has been reached.
        """
        self._in_flight_since = None
        self._failures += 1
        logger.debug(f"Browser failure recorded ({self._failures}/{self.max_failures})")
        return self._failures >= self.max_failures

    def record_idle(self) -> None:
        """Close an operation that neither succeeded nor failed."""
        self._in_flight_since = None

    def reset(self) -> None:
        """Clear the failure streak (used after a successful recovery)."""
        self._failures = 0
        self._last_success = time.time()
        self._in_flight_since = None

    def check(self) -> HealthStatus:
        """Return the current verdict without side effects."""
        now = time.time()
        age = now - self._last_success

        if self._failures >= self.max_failures:
            return HealthStatus(
                healthy=False,
                last_success_age=age,
                consecutive_failures=self._failures,
                reason=f"{self._failures} consecutive failures",
            )

        if self._failures > 0 and age > self.stale_after:
            return HealthStatus(
                healthy=False,
                last_success_age=age,
                consecutive_failures=self._failures,
                reason=f"No success in {int(age)}s",
            )

        if self._in_flight_since is not None and now - self._in_flight_since > self.stale_after:
            return HealthStatus(
                healthy=False,
                last_success_age=age,
                consecutive_failures=self._failures,
                reason=f"Operation outstanding for {int(now - self._in_flight_since)}s",
            )

        return HealthStatus(healthy=True, last_success_age=age, consecutive_failures=self._failures)

    def stats(self) -> dict:
        """Snapshot of the recorded facts for monitoring."""
        return {
            "lastSuccessfulRequest": datetime.fromtimestamp(self._last_success, tz=timezone.utc).isoformat(),
            "timeSinceSuccess": round(time.time() - self._last_success, 3),
            "consecutiveFailures": self._failures,
        }
