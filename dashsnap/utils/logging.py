"""Loguru sink configuration."""

import sys

from loguru import logger

LOG_FORMAT = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan> - {message}"


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    rotation: str = "10 MB",
    retention: int = 3,
) -> None:
    """Replace the default sink with stderr plus an optional rotating file."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)
    if log_file:
        logger.add(
            log_file,
            level=level.upper(),
            format=LOG_FORMAT,
            rotation=rotation,
            retention=retention,
            enqueue=True,
        )
