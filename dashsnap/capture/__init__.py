"""Capture orchestration, saving and retention."""

from dashsnap.capture.retention import CleanupResult, cleanup_old_screenshots
from dashsnap.capture.scheduler import CaptureResult, CaptureScheduler
from dashsnap.capture.storage import save_screenshot

__all__ = [
    "CaptureResult",
    "CaptureScheduler",
    "CleanupResult",
    "cleanup_old_screenshots",
    "save_screenshot",
]
