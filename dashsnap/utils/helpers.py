"""Common utility functions."""

import re
from datetime import datetime, timezone


def truncate_output(text: str, max_length: int = 200) -> str:
    """
    Truncate text for log output.

    Args:
        text: Text to truncate.
        max_length: Maximum allowed length.

    Returns:
        The first ``max_length`` characters, with a marker if truncated.
    """
    if len(text) <= max_length:
        return text
    return text[:max_length] + f"... [truncated {len(text) - max_length} chars]"


def sanitize_name(name: str) -> str:
    """
    Sanitize a schedule name for use in a filename.

    Args:
        name: Raw schedule name.

    Returns:
        Name with every non-alphanumeric character replaced by ``_``.
    """
    return re.sub(r"[^a-zA-Z0-9]", "_", name)


def filename_timestamp(now: datetime | None = None) -> str:
    """ISO-8601 UTC timestamp with ``:`` and ``.`` replaced for filenames."""
    moment = now or datetime.now(timezone.utc)
    iso = moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return re.sub(r"[:.]", "-", iso)


def format_error(error: BaseException) -> str:
    """
    Format an exception for display.

    Args:
        error: The exception to format.

    Returns:
        Human-readable error string.
    """
    error_type = type(error).__name__
    return f"{error_type}: {str(error)}"
