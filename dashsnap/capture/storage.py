"""Writing encoded screenshots to the output directory."""

from __future__ import annotations

from pathlib import Path

from dashsnap.utils.helpers import filename_timestamp, sanitize_name


def save_screenshot(output_dir: Path, schedule_name: str, image: bytes, fmt: str) -> Path:
    """Write ``<safe_name>_<timestamp>.<fmt>`` and return its path."""
    filename = f"{sanitize_name(schedule_name)}_{filename_timestamp()}.{fmt}"
    path = Path(output_dir) / filename
    path.write_bytes(image)
    return path
