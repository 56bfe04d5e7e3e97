"""Loguru configuration."""

import sys

from loguru import logger

from taskgraph.core.config import Settings, get_settings

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)


def configure_logging(settings: Settings | None = None) -> None:
    """Configure loguru based on settings.

    Replaces the default handler with a stderr sink and, when
    ``log_file`` is set, a daily rotating file sink.
    """
    settings = settings or get_settings()
    logger.remove()  # Remove default handler

    level = "DEBUG" if settings.debug else settings.log_level

    logger.add(
        sys.stderr,
        level=level,
        format=LOG_FORMAT,
        colorize=True,
    )

    if settings.log_file:
        settings.log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(settings.log_file),
            rotation="1 day",
            retention="7 days",
            level=level,
            format=LOG_FORMAT,
        )

    logger.debug(f"Logging configured at level {level}")
