"""Least-recently-modified eviction of saved screenshots."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_FILE_PATTERN = re.compile(r"\.(png|jpeg|jpg|bmp)$", re.IGNORECASE)


@dataclass
class CleanupResult:
    total_files: int = 0
    deleted_count: int = 0
    deleted_files: list[str] = field(default_factory=list)
    error: str | None = None


def cleanup_old_screenshots(
    output_dir: Path,
    max_files: int,
    file_pattern: re.Pattern[str] | str = DEFAULT_FILE_PATTERN,
) -> CleanupResult:
    """
    Delete the oldest matching files until at most ``max_files`` remain.

    Files are ordered by modification time; ties keep directory order.
    Filesystem errors are reported in the result, never raised.
    """
    pattern = re.compile(file_pattern) if isinstance(file_pattern, str) else file_pattern
    try:
        files = [p for p in Path(output_dir).iterdir() if p.is_file() and pattern.search(p.name)]
        files.sort(key=lambda p: p.stat().st_mtime)

        deleted: list[str] = []
        for path in files[: max(len(files) - max_files, 0)]:
            path.unlink()
            deleted.append(path.name)

        return CleanupResult(total_files=len(files), deleted_count=len(deleted), deleted_files=deleted)
    except OSError as e:
        return CleanupResult(error=str(e))
