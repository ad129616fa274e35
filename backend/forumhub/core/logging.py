"""
Logging setup.

ForumHub logs through loguru's global ``logger``; this only swaps the
default sink for one at the configured level.
"""

import sys

from loguru import logger

from forumhub.core.config import settings

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def setup_logging(level: str | None = None) -> int:
    """
    Configure the stderr sink.

    Args:
        level: Log level name, defaults to settings.log_level
               (DEBUG when settings.debug is on)

    Returns:
        Handler id of the new sink
    """
    if level is None:
        level = "DEBUG" if settings.debug else settings.log_level

    logger.remove()
    return logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)
