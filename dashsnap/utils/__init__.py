"""Utility functions module."""

from dashsnap.utils.helpers import filename_timestamp, format_error, sanitize_name, truncate_output
from dashsnap.utils.logging import setup_logging

__all__ = ["truncate_output", "sanitize_name", "filename_timestamp", "format_error", "setup_logging"]
